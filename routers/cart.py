from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from pymongo.database import Database

import cart
from database import get_db
from routers import ok
from security import Principal, protect

router = APIRouter(prefix="/api/v1/cart", tags=["cart"])


class CartItemPayload(BaseModel):
    product_id: str
    quantity: int = 1


class CartUpdatePayload(BaseModel):
    product_id: str
    quantity: int


class CartReplacePayload(BaseModel):
    items: List[CartItemPayload]


@router.get("/me")
def get_my_cart(principal: Principal = Depends(protect), database: Database = Depends(get_db)):
    return ok(cart.get_cart(database, principal.id))


@router.put("/me")
def replace_my_cart(payload: CartReplacePayload, principal: Principal = Depends(protect),
                    database: Database = Depends(get_db)):
    data, message = cart.replace_cart(database, principal.id, [i.model_dump() for i in payload.items])
    return ok(data, message=message)


@router.post("/me/items")
def add_item(payload: CartItemPayload, principal: Principal = Depends(protect),
             database: Database = Depends(get_db)):
    data, message = cart.add_item(database, principal.id, payload.product_id, payload.quantity)
    return ok(data, message=message)


@router.patch("/me/items")
def update_item(payload: CartUpdatePayload, principal: Principal = Depends(protect),
                database: Database = Depends(get_db)):
    data, message = cart.update_item(database, principal.id, payload.product_id, payload.quantity)
    return ok(data, message=message)


@router.delete("/me")
def clear_my_cart(principal: Principal = Depends(protect), database: Database = Depends(get_db)):
    return ok(cart.clear_cart(database, principal.id))
