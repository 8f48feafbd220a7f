import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel, ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database

from database import (
    as_utc, create_document, find_by_id, get_db, get_documents, now, page_params, pagination, serialize, to_obj_id,
)
from routers import first_error, ok
from schemas import Banner
from security import Principal, authorize
from storage import save_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/banners", tags=["banners"])
admin_router = APIRouter(prefix="/api/v1/admin/banners", tags=["admin"])


class BannerOrder(BaseModel):
    id: str
    order: int


class BannerReorderPayload(BaseModel):
    banner_orders: List[BannerOrder]


def build_banner(data: dict, existing: Optional[dict] = None) -> dict:
    base = {k: existing[k] for k in Banner.model_fields if existing and k in existing}
    merged = {**base, **data}
    for key in ("start_date", "end_date"):
        if merged.get(key) is not None and not isinstance(merged[key], str):
            merged[key] = as_utc(merged[key])
    try:
        banner = Banner(**merged)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=first_error(e))
    dumped = banner.model_dump()
    for key in ("start_date", "end_date"):
        dumped[key] = as_utc(dumped[key])
    if dumped["start_date"] is None:
        dumped["start_date"] = now()
    return dumped


def is_live(banner: dict, at) -> bool:
    start = as_utc(banner.get("start_date"))
    end = as_utc(banner.get("end_date"))
    return (start is None or start <= at) and (end is None or end >= at)


@router.get("")
def active_banners(database: Database = Depends(get_db)):
    stamp = now()
    banners = [b for b in database["banner"].find({"is_active": True}) if is_live(b, stamp)]
    banners.sort(key=lambda b: (-b.get("priority", 1), b.get("order", 0)))
    return ok([serialize(b) for b in banners])


@admin_router.get("")
def list_banners(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                 _: Principal = Depends(authorize("admin")), database: Database = Depends(get_db)):
    total = database["banner"].count_documents({})
    docs = get_documents(database, "banner", sort=[("order", 1), ("created_at", -1)], **page_params(page, limit))
    return ok([serialize(d) for d in docs], pagination=pagination(page, limit, total))


@admin_router.post("/upload")
async def upload_banner_image(image: UploadFile = File(...), _: Principal = Depends(authorize("admin"))):
    return ok(save_image(image.filename or "", await image.read(), "banners"))


@admin_router.put("/reorder")
def reorder_banners(payload: BannerReorderPayload, _: Principal = Depends(authorize("admin")),
                    database: Database = Depends(get_db)):
    for entry in payload.banner_orders:
        database["banner"].update_one({"_id": to_obj_id(entry.id)},
                                      {"$set": {"order": entry.order, "updated_at": now()}})
    return ok(None, message="Banners reordered successfully")


@admin_router.get("/{banner_id}")
def get_banner(banner_id: str, _: Principal = Depends(authorize("admin")), database: Database = Depends(get_db)):
    return ok(serialize(find_by_id(database, "banner", banner_id, "Banner not found")))


@admin_router.post("", status_code=201)
def create_banner(payload: dict, admin: Principal = Depends(authorize("admin")),
                  database: Database = Depends(get_db)):
    banner_id = create_document(database, "banner", build_banner(payload))
    logger.info("Banner %s created by %s", banner_id, admin.id)
    return ok(serialize(find_by_id(database, "banner", banner_id)))


@admin_router.put("/{banner_id}")
def update_banner(banner_id: str, payload: dict, _: Principal = Depends(authorize("admin")),
                  database: Database = Depends(get_db)):
    banner = find_by_id(database, "banner", banner_id, "Banner not found")
    built = build_banner(payload, existing=banner)
    changes = {k: built[k] for k in payload if k in built}
    changes["updated_at"] = now()
    updated = database["banner"].find_one_and_update({"_id": banner["_id"]}, {"$set": changes},
                                                     return_document=ReturnDocument.AFTER)
    return ok(serialize(updated))


@admin_router.delete("/{banner_id}")
def delete_banner(banner_id: str, admin: Principal = Depends(authorize("admin")),
                  database: Database = Depends(get_db)):
    banner = find_by_id(database, "banner", banner_id, "Banner not found")
    database["banner"].delete_one({"_id": banner["_id"]})
    logger.info("Banner %s deleted by %s", banner_id, admin.id)
    return ok(None, message="Banner deleted successfully")


@admin_router.patch("/{banner_id}/toggle")
def toggle_banner(banner_id: str, _: Principal = Depends(authorize("admin")), database: Database = Depends(get_db)):
    banner = find_by_id(database, "banner", banner_id, "Banner not found")
    updated = database["banner"].find_one_and_update(
        {"_id": banner["_id"]}, {"$set": {"is_active": not banner.get("is_active", True), "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    return ok(serialize(updated))
