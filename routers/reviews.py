import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import refresh_ratings
from database import (
    create_document, find_by_id, get_db, get_documents, now, page_params, pagination, serialize, to_obj_id,
)
from routers import ok
from schemas import Review
from security import Principal, authorize, protect

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/reviews", tags=["reviews"])


class ReviewPayload(BaseModel):
    product_id: str
    order_id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=1, max_length=1000)
    images: list = Field(default_factory=list)


class ReviewUpdatePayload(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    comment: Optional[str] = Field(None, min_length=1, max_length=1000)


class ResponsePayload(BaseModel):
    comment: str = Field(..., min_length=1, max_length=1000)


class ModerationPayload(BaseModel):
    status: Literal["approved", "rejected", "pending"]


def qualifying_order(database: Database, user_id: str, product_id: str, order_id: Optional[str]) -> Optional[dict]:
    query = {"user_id": user_id, "status": "delivered", "items.product_id": product_id}
    if order_id:
        query["_id"] = to_obj_id(order_id)
    return database["order"].find_one(query)


def review_stats(database: Database, product_id: str) -> dict:
    distribution = {str(i): 0 for i in range(1, 6)}
    ratings = [r["rating"] for r in database["review"].find({"product_id": product_id, "status": "approved"},
                                                            {"rating": 1})]
    for rating in ratings:
        distribution[str(rating)] += 1
    return {
        "count": len(ratings),
        "average": round(sum(ratings) / len(ratings), 1) if ratings else 0,
        "distribution": distribution,
    }


def with_author(database: Database, review: dict) -> dict:
    view = serialize(review)
    user = database["user"].find_one({"_id": to_obj_id(review["user_id"])}, {"name": 1, "avatar": 1})
    view["user"] = serialize(user)
    return view


@router.get("/product/{product_id}")
def product_reviews(product_id: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=50),
                    database: Database = Depends(get_db)):
    query = {"product_id": product_id, "status": "approved"}
    total = database["review"].count_documents(query)
    docs = get_documents(database, "review", query, sort=[("created_at", -1)], **page_params(page, limit))
    return ok([with_author(database, d) for d in docs], pagination=pagination(page, limit, total),
              stats=review_stats(database, product_id))


@router.get("/{review_id}")
def get_review(review_id: str, database: Database = Depends(get_db)):
    return ok(with_author(database, find_by_id(database, "review", review_id, "Review not found")))


@router.post("", status_code=201)
def create_review(payload: ReviewPayload, principal: Principal = Depends(protect),
                  database: Database = Depends(get_db)):
    find_by_id(database, "product", payload.product_id, "Product not found")
    order = qualifying_order(database, principal.id, payload.product_id, payload.order_id)
    if not order:
        raise HTTPException(status_code=400, detail="You can only review products from delivered orders")
    if database["review"].find_one({"user_id": principal.id, "product_id": payload.product_id}):
        raise HTTPException(status_code=400, detail="You have already reviewed this product")
    review = Review(
        product_id=payload.product_id, user_id=principal.id, order_id=str(order["_id"]),
        rating=payload.rating, title=payload.title, comment=payload.comment, images=payload.images,
        status="pending", verified=True,
    )
    review_id = create_document(database, "review", review)
    logger.info("Review %s created for product %s by %s", review_id, payload.product_id, principal.id)
    return ok(with_author(database, find_by_id(database, "review", review_id)))


@router.put("/{review_id}")
def update_review(review_id: str, payload: ReviewUpdatePayload, principal: Principal = Depends(protect),
                  database: Database = Depends(get_db)):
    review = find_by_id(database, "review", review_id, "Review not found")
    if review["user_id"] != principal.id:
        raise HTTPException(status_code=403, detail="Not authorized to update this review")
    if review.get("status") == "approved":
        raise HTTPException(status_code=400, detail="Approved reviews cannot be edited")
    changes = payload.model_dump(exclude_none=True)
    changes["updated_at"] = now()
    updated = database["review"].find_one_and_update({"_id": review["_id"]}, {"$set": changes},
                                                     return_document=ReturnDocument.AFTER)
    return ok(serialize(updated))


@router.delete("/{review_id}")
def delete_review(review_id: str, principal: Principal = Depends(protect), database: Database = Depends(get_db)):
    review = find_by_id(database, "review", review_id, "Review not found")
    if review["user_id"] != principal.id and not principal.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to delete this review")
    database["review"].delete_one({"_id": review["_id"]})
    refresh_ratings(database, review["product_id"])
    return ok(None, message="Review deleted successfully")


@router.post("/{review_id}/helpful")
def toggle_helpful(review_id: str, principal: Principal = Depends(protect), database: Database = Depends(get_db)):
    review = find_by_id(database, "review", review_id, "Review not found")
    users = list((review.get("helpful") or {}).get("users", []))
    if principal.id in users:
        users.remove(principal.id)
    else:
        users.append(principal.id)
    database["review"].update_one({"_id": review["_id"]},
                                  {"$set": {"helpful": {"count": len(users), "users": users}}})
    return ok({"helpful_count": len(users), "is_helpful": principal.id in users})


@router.post("/{review_id}/response")
def add_response(review_id: str, payload: ResponsePayload,
                 principal: Principal = Depends(authorize("vendor", "seller", "admin")),
                 database: Database = Depends(get_db)):
    review = find_by_id(database, "review", review_id, "Review not found")
    product = find_by_id(database, "product", review["product_id"], "Product not found")
    owner = product.get("vendor_id") == principal.id or (
        product.get("seller_id") and product.get("seller_id") == principal.seller_id)
    if not owner and not principal.is_admin:
        raise HTTPException(status_code=403, detail="Not authorized to respond to this review")
    response = {"comment": payload.comment, "responded_by": principal.id, "responded_at": now()}
    updated = database["review"].find_one_and_update({"_id": review["_id"]}, {"$set": {"response": response}},
                                                     return_document=ReturnDocument.AFTER)
    return ok(serialize(updated))


@router.put("/{review_id}/moderate")
def moderate_review(review_id: str, payload: ModerationPayload,
                    admin: Principal = Depends(authorize("admin")), database: Database = Depends(get_db)):
    review = find_by_id(database, "review", review_id, "Review not found")
    updated = database["review"].find_one_and_update(
        {"_id": review["_id"]}, {"$set": {"status": payload.status, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    refresh_ratings(database, review["product_id"])
    logger.info("Admin %s set review %s to %s", admin.id, review_id, payload.status)
    return ok(serialize(updated))
