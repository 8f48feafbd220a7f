import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import normalize_images, product_view, validate_product
from database import create_document, find_by_id, get_db, get_documents, now, page_params, pagination
from routers import ok
from routers.products import apply_image_changes, read_product_payload
from security import Principal, require_seller
from storage import destroy_image, save_uploads

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/seller/products", tags=["seller-products"])


def own_product(database: Database, principal: Principal, product_id: str) -> dict:
    product = find_by_id(database, "product", product_id, "Product not found")
    if product.get("seller_id") != principal.seller_id:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def save_images(database: Database, product: dict, images: list) -> dict:
    return database["product"].find_one_and_update(
        {"_id": product["_id"]},
        {"$set": {"images": normalize_images(images), "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )


@router.get("")
def list_my_products(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                     status: Optional[str] = None, search: Optional[str] = None,
                     principal: Principal = Depends(require_seller), database: Database = Depends(get_db)):
    query: dict = {"seller_id": principal.seller_id}
    if status:
        query["status"] = status
    if search:
        query["name"] = {"$regex": re.escape(search), "$options": "i"}
    total = database["product"].count_documents(query)
    docs = get_documents(database, "product", query, sort=[("created_at", -1)], **page_params(page, limit))
    return ok([product_view(d) for d in docs], pagination=pagination(page, limit, total))


@router.get("/analytics")
def analytics(principal: Principal = Depends(require_seller), database: Database = Depends(get_db)):
    products = list(database["product"].find({"seller_id": principal.seller_id}))
    overview = {
        "total_products": len(products),
        "active_products": sum(1 for p in products if p.get("status") == "active"),
        "draft_products": sum(1 for p in products if p.get("status") == "draft"),
        "inactive_products": sum(1 for p in products if p.get("status") == "inactive"),
        "total_sales": round(sum(float((p.get("sales") or {}).get("total", 0)) for p in products), 2),
        "total_units_sold": sum(int((p.get("sales") or {}).get("count", 0)) for p in products),
        "average_rating": round(
            sum(float((p.get("ratings") or {}).get("average", 0)) for p in products) / len(products), 1
        ) if products else 0,
    }
    categories: dict = {}
    for p in products:
        entry = categories.setdefault(p.get("category"), {"category": p.get("category"), "count": 0,
                                                          "total_sales": 0.0})
        entry["count"] += 1
        entry["total_sales"] = round(entry["total_sales"] + float((p.get("sales") or {}).get("total", 0)), 2)
    top = sorted(products, key=lambda p: (p.get("sales") or {}).get("count", 0), reverse=True)[:5]
    return ok({
        "overview": overview,
        "top_products": [product_view(p) for p in top],
        "category_stats": sorted(categories.values(), key=lambda c: c["count"], reverse=True),
    })


@router.get("/{product_id}")
def get_my_product(product_id: str, principal: Principal = Depends(require_seller),
                   database: Database = Depends(get_db)):
    return ok(product_view(own_product(database, principal, product_id)))


@router.post("", status_code=201)
async def create_my_product(request: Request, principal: Principal = Depends(require_seller),
                            database: Database = Depends(get_db)):
    fields, files = await read_product_payload(request)
    data = validate_product(fields)
    if files:
        data["images"] = normalize_images(data["images"] + await save_uploads(files, "products"))
    data["seller_id"] = principal.seller_id
    data["location"] = principal.seller.get("geo")
    product_id = create_document(database, "product", data)
    logger.info("Seller %s created product %s", principal.seller_id, product_id)
    return ok(product_view(find_by_id(database, "product", product_id)))


@router.put("/{product_id}")
async def update_my_product(product_id: str, request: Request, principal: Principal = Depends(require_seller),
                            database: Database = Depends(get_db)):
    product = own_product(database, principal, product_id)
    fields, files = await read_product_payload(request)
    fields.pop("location", None)
    changes = validate_product(fields, existing=product)
    await apply_image_changes(product, changes, files)
    changes["updated_at"] = now()
    updated = database["product"].find_one_and_update({"_id": product["_id"]}, {"$set": changes},
                                                      return_document=ReturnDocument.AFTER)
    return ok(product_view(updated))


@router.delete("/{product_id}")
def delete_my_product(product_id: str, principal: Principal = Depends(require_seller),
                      database: Database = Depends(get_db)):
    product = own_product(database, principal, product_id)
    for img in product.get("images", []):
        destroy_image(img.get("public_id"))
    database["product"].delete_one({"_id": product["_id"]})
    logger.info("Seller %s deleted product %s", principal.seller_id, product_id)
    return ok(None, message="Product deleted successfully")


@router.post("/{product_id}/images")
async def add_images(product_id: str, request: Request, principal: Principal = Depends(require_seller),
                     database: Database = Depends(get_db)):
    product = own_product(database, principal, product_id)
    _, files = await read_product_payload(request)
    if not files:
        raise HTTPException(status_code=400, detail="No images uploaded")
    uploaded = await save_uploads(files, "products")
    return ok(product_view(save_images(database, product, product.get("images", []) + uploaded)))


@router.delete("/{product_id}/images")
def delete_image(product_id: str, public_id: str = Query(...), principal: Principal = Depends(require_seller),
                 database: Database = Depends(get_db)):
    product = own_product(database, principal, product_id)
    images = product.get("images", [])
    remaining = [img for img in images if img.get("public_id") != public_id]
    if len(remaining) == len(images):
        raise HTTPException(status_code=404, detail="Image not found")
    destroy_image(public_id)
    return ok(product_view(save_images(database, product, remaining)))


@router.put("/{product_id}/images/primary")
def set_primary_image(product_id: str, public_id: str = Query(...), principal: Principal = Depends(require_seller),
                      database: Database = Depends(get_db)):
    product = own_product(database, principal, product_id)
    images = product.get("images", [])
    if not any(img.get("public_id") == public_id for img in images):
        raise HTTPException(status_code=404, detail="Image not found")
    flagged = [{**img, "is_primary": img.get("public_id") == public_id} for img in images]
    return ok(product_view(save_images(database, product, flagged)))
