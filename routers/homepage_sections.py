from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, ValidationError
from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import DELIVERY_OPTIONS, product_view
from database import create_document, find_by_id, get_db, now, serialize, to_obj_id
from routers import first_error, ok
from schemas import Homepagesection
from security import Principal, authorize

router = APIRouter(prefix="/api/v1/homepage-sections", tags=["homepage"])
admin_router = APIRouter(prefix="/api/v1/admin/homepage-sections", tags=["admin"])

SECTION_ORDER = [("order", 1), ("created_at", 1)]


class SectionProductPayload(BaseModel):
    product_id: str = Field(..., min_length=1)


class ProductOrderPayload(BaseModel):
    product_ids: List[str]


class SectionOrder(BaseModel):
    section_id: str
    order: int


class SectionReorderPayload(BaseModel):
    section_orders: List[SectionOrder]


def populate(database: Database, section: dict, delivery: Optional[str] = None) -> dict:
    """Replace product ids with product views, keeping section order."""
    oids = []
    for product_id in section.get("products", []):
        try:
            oids.append(ObjectId(product_id))
        except (InvalidId, TypeError):
            continue
    query: dict = {"_id": {"$in": oids}}
    if delivery:
        query[f"delivery_options.{delivery}"] = True
    found = {str(p["_id"]): p for p in database["product"].find(query)}
    data = serialize(section)
    data["products"] = [product_view(found[str(oid)]) for oid in oids if str(oid) in found]
    return data


def check_products(database: Database, product_ids: List[str]) -> None:
    try:
        oids = [ObjectId(p) for p in product_ids]
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="One or more products not found")
    if database["product"].count_documents({"_id": {"$in": oids}}) != len(set(oids)):
        raise HTTPException(status_code=400, detail="One or more products not found")


def validate_section(data: dict, existing: Optional[dict] = None) -> dict:
    base = {k: existing[k] for k in Homepagesection.model_fields if existing and k in existing}
    try:
        return Homepagesection(**{**base, **data}).model_dump()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=first_error(e))


def save_products(database: Database, section: dict, products: List[str], admin_id: str) -> dict:
    return database["homepagesection"].find_one_and_update(
        {"_id": section["_id"]},
        {"$set": {"products": products, "last_modified_by": admin_id, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )


@router.get("")
def visible_sections(delivery: Optional[str] = None, database: Database = Depends(get_db)):
    if delivery not in DELIVERY_OPTIONS:
        delivery = None
    sections = database["homepagesection"].find({"is_visible": True}).sort(SECTION_ORDER)
    data = [populate(database, s, delivery) for s in sections]
    return ok(data, count=len(data))


@router.get("/{section_id}")
def get_section(section_id: str, database: Database = Depends(get_db)):
    return ok(populate(database, find_by_id(database, "homepagesection", section_id, "Section not found")))


@admin_router.get("")
def all_sections(_: Principal = Depends(authorize("admin")), database: Database = Depends(get_db)):
    data = [populate(database, s) for s in database["homepagesection"].find({}).sort(SECTION_ORDER)]
    return ok(data, count=len(data))


@admin_router.put("/reorder")
def reorder_sections(payload: SectionReorderPayload, _: Principal = Depends(authorize("admin")),
                     database: Database = Depends(get_db)):
    for entry in payload.section_orders:
        database["homepagesection"].update_one({"_id": to_obj_id(entry.section_id)},
                                               {"$set": {"order": entry.order, "updated_at": now()}})
    return ok([populate(database, s) for s in database["homepagesection"].find({}).sort(SECTION_ORDER)])


@admin_router.post("", status_code=201)
def create_section(payload: dict, admin: Principal = Depends(authorize("admin")),
                   database: Database = Depends(get_db)):
    section = validate_section(payload)
    if section["products"]:
        check_products(database, section["products"])
    section["created_by"] = admin.id
    section_id = create_document(database, "homepagesection", section)
    return ok(populate(database, find_by_id(database, "homepagesection", section_id)))


@admin_router.put("/{section_id}")
def update_section(section_id: str, payload: dict, admin: Principal = Depends(authorize("admin")),
                   database: Database = Depends(get_db)):
    section = find_by_id(database, "homepagesection", section_id, "Section not found")
    merged = validate_section(payload, existing=section)
    if payload.get("products"):
        check_products(database, merged["products"])
    changes = {k: merged[k] for k in payload if k in merged and k not in ("created_by", "last_modified_by")}
    changes.update(last_modified_by=admin.id, updated_at=now())
    updated = database["homepagesection"].find_one_and_update({"_id": section["_id"]}, {"$set": changes},
                                                              return_document=ReturnDocument.AFTER)
    return ok(populate(database, updated))


@admin_router.delete("/{section_id}")
def delete_section(section_id: str, _: Principal = Depends(authorize("admin")),
                   database: Database = Depends(get_db)):
    section = find_by_id(database, "homepagesection", section_id, "Section not found")
    database["homepagesection"].delete_one({"_id": section["_id"]})
    return ok(None, message="Section deleted successfully")


@admin_router.post("/{section_id}/products")
def add_section_product(section_id: str, payload: SectionProductPayload,
                        admin: Principal = Depends(authorize("admin")), database: Database = Depends(get_db)):
    section = find_by_id(database, "homepagesection", section_id, "Section not found")
    find_by_id(database, "product", payload.product_id, "Product not found")
    products = list(section.get("products", []))
    if payload.product_id not in products:
        products.append(payload.product_id)
        # newest win once the section is full
        products = products[-section.get("max_products", 6):]
    return ok(populate(database, save_products(database, section, products, admin.id)))


@admin_router.put("/{section_id}/products/reorder")
def reorder_section_products(section_id: str, payload: ProductOrderPayload,
                             admin: Principal = Depends(authorize("admin")), database: Database = Depends(get_db)):
    section = find_by_id(database, "homepagesection", section_id, "Section not found")
    products = payload.product_ids[:section.get("max_products", 6)]
    return ok(populate(database, save_products(database, section, products, admin.id)))


@admin_router.delete("/{section_id}/products/{product_id}")
def remove_section_product(section_id: str, product_id: str, admin: Principal = Depends(authorize("admin")),
                           database: Database = Depends(get_db)):
    section = find_by_id(database, "homepagesection", section_id, "Section not found")
    products = [p for p in section.get("products", []) if p != product_id]
    return ok(populate(database, save_products(database, section, products, admin.id)))
