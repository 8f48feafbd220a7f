from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, HTTPException
from pymongo.database import Database

from catalog import attach_owners
from database import find_by_id, get_db, now, to_obj_id
from routers import ok
from security import Principal, require_user

router = APIRouter(prefix="/api/v1/wishlist", tags=["wishlist"])


def wishlist_ids(database: Database, principal: Principal) -> list:
    user = database["user"].find_one({"_id": to_obj_id(principal.id)}, {"wishlist": 1})
    return list((user or {}).get("wishlist", []))


@router.get("")
def get_wishlist(principal: Principal = Depends(require_user), database: Database = Depends(get_db)):
    oids = []
    for product_id in wishlist_ids(database, principal):
        try:
            oids.append(ObjectId(product_id))
        except (InvalidId, TypeError):
            continue
    products = {str(p["_id"]): p for p in database["product"].find({"_id": {"$in": oids}})}
    # keep wishlist order; deleted products drop out
    ordered = [products[str(oid)] for oid in oids if str(oid) in products]
    data = attach_owners(database, ordered)
    return ok(data, count=len(data))


@router.post("/{product_id}", status_code=201)
def add_to_wishlist(product_id: str, principal: Principal = Depends(require_user),
                    database: Database = Depends(get_db)):
    find_by_id(database, "product", product_id, "Product not found")
    if product_id in wishlist_ids(database, principal):
        raise HTTPException(status_code=400, detail="Product already in wishlist")
    database["user"].update_one({"_id": to_obj_id(principal.id)},
                                {"$push": {"wishlist": product_id}, "$set": {"updated_at": now()}})
    return ok({"product_id": product_id, "in_wishlist": True}, message="Product added to wishlist")


@router.delete("/{product_id}")
def remove_from_wishlist(product_id: str, principal: Principal = Depends(require_user),
                         database: Database = Depends(get_db)):
    if product_id not in wishlist_ids(database, principal):
        raise HTTPException(status_code=404, detail="Product not in wishlist")
    database["user"].update_one({"_id": to_obj_id(principal.id)},
                                {"$pull": {"wishlist": product_id}, "$set": {"updated_at": now()}})
    return ok({"product_id": product_id, "in_wishlist": False}, message="Product removed from wishlist")


@router.get("/check/{product_id}")
def check_wishlist(product_id: str, principal: Principal = Depends(require_user),
                   database: Database = Depends(get_db)):
    return ok({"product_id": product_id, "in_wishlist": product_id in wishlist_ids(database, principal)})


@router.delete("")
def clear_wishlist(principal: Principal = Depends(require_user), database: Database = Depends(get_db)):
    database["user"].update_one({"_id": to_obj_id(principal.id)},
                                {"$set": {"wishlist": [], "updated_at": now()}})
    return ok([], message="Wishlist cleared")
