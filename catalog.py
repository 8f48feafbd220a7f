"""
Catalog queries

Product listing filters (price, rating, delivery, radius around a point or a
seller pincode), the $geoNear pipeline used for distance sorting, owner
summaries and the derived rating/sales aggregates.
"""

import json
import logging
import re
from typing import Dict, List, Mapping, Optional, Tuple, get_args

from fastapi import HTTPException
from pydantic import ValidationError
from pymongo.database import Database

from database import now, serialize, to_obj_id
from schemas import DeliveryOption, Product

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6378.1
DELIVERY_OPTIONS = get_args(DeliveryOption)
SORTS = {
    "newest": [("created_at", -1)],
    "oldest": [("created_at", 1)],
    "price_low": [("price", 1)],
    "price_high": [("price", -1)],
    "rating": [("ratings.average", -1)],
    "popular": [("sales.count", -1)],
}


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (name or "").lower())
    return slug.strip("-")


def normalize_images(images: List[dict]) -> List[dict]:
    """Leave exactly one primary image (the first flagged one, else the first image)."""
    if not images:
        return []
    primary = next((i for i, img in enumerate(images) if img.get("is_primary")), 0)
    return [{**img, "is_primary": i == primary} for i, img in enumerate(images)]


def stock_flags(doc: dict) -> Dict[str, bool]:
    inventory = doc.get("inventory") or {}
    track = inventory.get("track_quantity", True) is not False
    quantity = int(inventory.get("quantity") or 0)
    threshold = int(inventory.get("low_stock_threshold", 10))
    return {
        "is_in_stock": not track or quantity > 0 or bool(inventory.get("allow_backorder")),
        "is_low_stock": track and quantity <= threshold,
    }


def product_view(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    view = serialize(doc)
    view.update(stock_flags(doc))
    images = doc.get("images") or []
    primary = next((img for img in images if img.get("is_primary")), images[0] if images else None)
    view["primary_image"] = primary["url"] if primary else None
    return view


def geo_point(lat: float, lng: float) -> dict:
    return {"type": "Point", "coordinates": [float(lng), float(lat)]}


def within_radius(lat: float, lng: float, radius_km: float) -> dict:
    return {"$geoWithin": {"$centerSphere": [[float(lng), float(lat)], float(radius_km) / EARTH_RADIUS_KM]}}


def seller_ids_for_pincode(database: Database, pincode: str) -> List[str]:
    cursor = database["seller"].find(
        {"address.pincode": pincode, "is_approved": True, "is_suspended": {"$ne": True}},
        {"_id": 1},
    )
    return [str(s["_id"]) for s in cursor]


def build_product_filter(category: Optional[str] = None, min_price: Optional[float] = None,
                         max_price: Optional[float] = None, min_rating: Optional[float] = None,
                         delivery: Optional[str] = None, status: Optional[str] = "active") -> dict:
    query: dict = {}
    if status:
        query["status"] = status
    if category:
        query["category"] = category
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    if min_rating is not None:
        query["ratings.average"] = {"$gte": min_rating}
    if delivery in DELIVERY_OPTIONS:
        query[f"delivery_options.{delivery}"] = True
    return query


def build_distance_pipeline(lat: float, lng: float, radius_km: float, query: dict,
                            skip: int, limit: int) -> List[dict]:
    # $geoNear has to be the first stage; the other filters ride along in its query
    return [
        {"$geoNear": {
            "near": geo_point(lat, lng),
            "distanceField": "distance",
            "maxDistance": float(radius_km) * 1000,
            "spherical": True,
            "query": query,
        }},
        {"$skip": skip},
        {"$limit": limit},
    ]


def search_products(database: Database, page: int = 1, limit: int = 20, category: Optional[str] = None,
                    min_price: Optional[float] = None, max_price: Optional[float] = None,
                    min_rating: Optional[float] = None, sort: str = "newest",
                    delivery: Optional[str] = None, lat: Optional[float] = None,
                    lng: Optional[float] = None, pincode: Optional[str] = None,
                    radius_km: float = 5) -> Tuple[List[dict], int]:
    query = build_product_filter(category, min_price, max_price, min_rating, delivery)
    has_point = lat is not None and lng is not None
    skip = (page - 1) * limit

    if has_point and sort == "distance":
        total = database["product"].count_documents({**query, "location": within_radius(lat, lng, radius_km)})
        docs = list(database["product"].aggregate(build_distance_pipeline(lat, lng, radius_km, query, skip, limit)))
        return attach_owners(database, docs), total

    if has_point:
        query["location"] = within_radius(lat, lng, radius_km)
    elif pincode:
        query["seller_id"] = {"$in": seller_ids_for_pincode(database, pincode)}

    total = database["product"].count_documents(query)
    cursor = database["product"].find(query).sort(SORTS.get(sort, SORTS["newest"])).skip(skip).limit(limit)
    return attach_owners(database, list(cursor)), total


def text_search(database: Database, q: str, limit: int = 20, skip: int = 0) -> Tuple[List[dict], int]:
    pattern = {"$regex": re.escape(q), "$options": "i"}
    query = {
        "status": "active",
        "$or": [
            {"name": pattern},
            {"description": pattern},
            {"tags": pattern},
        ],
    }
    total = database["product"].count_documents(query)
    docs = list(database["product"].find(query).sort(SORTS["newest"]).skip(skip).limit(limit))
    return attach_owners(database, docs), total


def _ids(docs: List[dict], key: str) -> List:
    found = []
    for d in docs:
        if d.get(key):
            try:
                found.append(to_obj_id(d[key]))
            except HTTPException:
                logger.warning("Product %s has malformed %s %r", d.get("_id"), key, d[key])
    return found


def attach_owners(database: Database, docs: List[dict]) -> List[dict]:
    """Product views with a `seller` or `vendor` summary attached."""
    sellers = {
        str(s["_id"]): s for s in database["seller"].find(
            {"_id": {"$in": _ids(docs, "seller_id")}},
            {"name": 1, "email": 1, "store_name": 1, "address": 1, "geo": 1, "service_radius_km": 1},
        )
    }
    vendors = {
        str(u["_id"]): u for u in database["user"].find(
            {"_id": {"$in": _ids(docs, "vendor_id")}},
            {"name": 1, "email": 1, "vendor_profile.business_name": 1},
        )
    }
    out = []
    for doc in docs:
        view = product_view(doc)
        if doc.get("seller_id") in sellers:
            view["seller"] = serialize(sellers[doc["seller_id"]])
        if doc.get("vendor_id") in vendors:
            view["vendor"] = serialize(vendors[doc["vendor_id"]])
        out.append(view)
    return out


def owner_of(product: dict) -> Tuple[Optional[str], str]:
    if product.get("seller_id"):
        return product["seller_id"], "seller"
    return product.get("vendor_id"), "vendor"


def refresh_ratings(database: Database, product_id: str) -> Dict[str, float]:
    reviews = database["review"].find({"product_id": product_id, "status": "approved"}, {"rating": 1})
    ratings = [r["rating"] for r in reviews]
    stats = {
        "average": round(sum(ratings) / len(ratings), 1) if ratings else 0.0,
        "count": len(ratings),
    }
    database["product"].update_one({"_id": to_obj_id(product_id)},
                                    {"$set": {"ratings": stats, "updated_at": now()}})
    return stats


def refresh_sales(database: Database, product_id: str) -> Dict[str, float]:
    total, count = 0.0, 0
    for order in database["order"].find({"status": "delivered", "items.product_id": product_id}, {"items": 1}):
        for item in order.get("items", []):
            if item.get("product_id") == product_id:
                total += float(item.get("total", 0))
                count += int(item.get("quantity", 0))
    stats = {"total": round(total, 2), "count": count}
    database["product"].update_one({"_id": to_obj_id(product_id)},
                                   {"$set": {"sales": stats, "updated_at": now()}})
    logger.info("Sales refreshed for product %s: %s", product_id, stats)
    return stats


# Product writes

JSON_FIELDS = ("inventory", "delivery_options", "tags", "images_meta", "location")
READ_ONLY_FIELDS = {"vendor_id", "seller_id", "ratings", "sales", "slug", "images"}
EDITABLE_FIELDS = (set(Product.model_fields) - READ_ONLY_FIELDS) | {"images_meta"}


def parse_product_fields(raw: Mapping) -> dict:
    """Pick editable product fields from a JSON body or multipart form.

    Multipart clients send nested values (inventory, delivery_options, tags,
    images_meta) as JSON strings; tags may also be comma separated.
    """
    data = {}
    for key, value in raw.items():
        if key not in EDITABLE_FIELDS or value is None:
            continue
        if isinstance(value, str) and key in JSON_FIELDS:
            try:
                value = json.loads(value)
            except ValueError:
                if key != "tags":
                    raise HTTPException(status_code=400, detail=f"Invalid {key} format")
                value = [t.strip() for t in value.split(",") if t.strip()]
        data[key] = value
    return data


def validate_product(raw: Mapping, existing: Optional[dict] = None) -> dict:
    """Validated product fields: a full document on create, only the changed keys on update."""
    changes = parse_product_fields(raw)
    if "images_meta" in changes:
        changes["images"] = changes.pop("images_meta")
    base = {k: existing[k] for k in Product.model_fields if existing and k in existing}
    try:
        model = Product(**{**base, **changes})
    except ValidationError as e:
        err = e.errors()[0]
        field = ".".join(str(p) for p in err.get("loc", ()))
        raise HTTPException(status_code=400, detail=f"{field}: {err.get('msg')}" if field else err.get("msg"))
    dumped = model.model_dump()
    if not any(dumped["delivery_options"].values()):
        raise HTTPException(status_code=400, detail="At least one delivery option must be selected")
    if "images" in changes:
        changes["images"] = normalize_images(dumped["images"])
        dumped["images"] = changes["images"]
    if existing is None:
        dumped["slug"] = slugify(dumped["name"])
        return dumped
    out = {k: dumped[k] for k in changes}
    if "name" in changes:
        out["slug"] = slugify(dumped["name"])
    return out


def category_counts(database: Database) -> List[dict]:
    counts: Dict[str, int] = {}
    for doc in database["product"].find({"status": "active"}, {"category": 1}):
        if doc.get("category"):
            counts[doc["category"]] = counts.get(doc["category"], 0) + 1
    return [{"name": name, "count": counts[name]} for name in sorted(counts)]
