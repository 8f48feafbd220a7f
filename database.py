"""
Database helpers

MongoDB access for the API. Collection names are the lowercase schema class
names (user, seller, product, cart, order, review, banner, homepagesection,
sellerdetails, setting).
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, MongoClient
from pymongo.database import Database

from settings import get_settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect() -> Optional[Database]:
    global _client, db
    if db is not None:
        return db
    settings = get_settings()
    if settings.database_url and settings.database_name:
        _client = MongoClient(settings.database_url)
        db = _client[settings.database_name]
        logger.info("MongoDB connected: %s", settings.database_name)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; database unavailable")
    return db


def get_db() -> Database:
    database = connect()
    if database is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return database


def now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # pymongo hands back naive datetimes that are already UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    stamp = now()
    data_dict.setdefault("created_at", stamp)
    data_dict["updated_at"] = stamp
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, skip: int = 0, sort: Optional[list] = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_obj_id(id_str: str) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def find_by_id(database: Database, collection_name: str, id_str: str, detail: str = "Not found") -> dict:
    doc = database[collection_name].find_one({"_id": to_obj_id(id_str)})
    if not doc:
        raise HTTPException(status_code=404, detail=detail)
    return doc


def _clean(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _clean(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_clean(v) for v in value]
    return value


def serialize(doc: Optional[dict], hidden: tuple = ("password", "refresh_tokens")) -> Optional[dict]:
    if not doc:
        return doc
    out = {k: v for k, v in doc.items() if k not in hidden}
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return _clean(out)


def page_params(page: int, limit: int) -> Dict[str, int]:
    return {"skip": (page - 1) * limit, "limit": limit}


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if limit else 0}


def ensure_indexes(database: Database) -> None:
    database["user"].create_index("email", unique=True)
    database["user"].create_index("role")
    database["seller"].create_index("email", unique=True)
    database["seller"].create_index([("geo", GEOSPHERE)])
    database["seller"].create_index("address.pincode")
    database["sellerdetails"].create_index("user_id", unique=True)
    database["sellerdetails"].create_index([("location", GEOSPHERE)])
    database["product"].create_index([("location", GEOSPHERE)])
    database["product"].create_index([("status", ASCENDING), ("category", ASCENDING)])
    database["product"].create_index("vendor_id")
    database["product"].create_index("seller_id")
    database["product"].create_index([("created_at", DESCENDING)])
    database["product"].create_index("slug")
    database["cart"].create_index("user_id", unique=True)
    database["order"].create_index("order_number", unique=True)
    database["order"].create_index("user_id")
    database["order"].create_index("vendor_orders.owner_id")
    database["order"].create_index("payment.payment_intent_id")
    database["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["review"].create_index([("product_id", ASCENDING), ("status", ASCENDING)])
    database["banner"].create_index([("is_active", ASCENDING), ("order", ASCENDING)])
    database["homepagesection"].create_index([("order", ASCENDING), ("is_visible", ASCENDING)])
    logger.info("MongoDB indexes ensured")
