import logging
from typing import Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database

from database import get_db, now, serialize, to_obj_id
from routers import ok
from security import Principal, require_user
from storage import destroy_image, save_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])


class ProfilePayload(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[str] = Field(None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    vendor_profile: Optional[dict] = None


class AddressPayload(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = "US"
    is_default: bool = False


class PreferencesPayload(BaseModel):
    email_notifications: Optional[bool] = None
    sms_notifications: Optional[bool] = None
    newsletter: Optional[bool] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    language: Optional[Literal["en", "es", "fr", "de", "hi"]] = None


def load_user(database: Database, principal: Principal) -> dict:
    return database["user"].find_one({"_id": to_obj_id(principal.id)})


def save_addresses(database: Database, user: dict, addresses: list) -> dict:
    # exactly one default while any address exists
    if addresses and not any(a.get("is_default") for a in addresses):
        addresses[0]["is_default"] = True
    updated = database["user"].find_one_and_update(
        {"_id": user["_id"]}, {"$set": {"shipping_addresses": addresses, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    return serialize(updated)


def find_address(addresses: list, address_id: str) -> dict:
    match = next((a for a in addresses if a.get("id") == address_id), None)
    if not match:
        raise HTTPException(status_code=404, detail="Address not found")
    return match


@router.get("/profile")
def get_profile(principal: Principal = Depends(require_user), database: Database = Depends(get_db)):
    return ok(serialize(load_user(database, principal)))


@router.put("/profile")
def update_profile(payload: ProfilePayload, principal: Principal = Depends(require_user),
                   database: Database = Depends(get_db)):
    changes = payload.model_dump(exclude_none=True)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        clash = database["user"].find_one({"email": changes["email"], "_id": {"$ne": to_obj_id(principal.id)}})
        if clash:
            raise HTTPException(status_code=400, detail="Email is already in use")
    if "vendor_profile" in changes and principal.role != "vendor":
        raise HTTPException(status_code=403, detail="Only vendors have a vendor profile")
    changes["updated_at"] = now()
    updated = database["user"].find_one_and_update({"_id": to_obj_id(principal.id)}, {"$set": changes},
                                                   return_document=ReturnDocument.AFTER)
    return ok(serialize(updated))


@router.put("/avatar")
async def update_avatar(avatar: UploadFile = File(...), principal: Principal = Depends(require_user),
                        database: Database = Depends(get_db)):
    uploaded = save_image(avatar.filename or "", await avatar.read(), "avatars")
    user = load_user(database, principal)
    if (user.get("avatar") or {}).get("public_id"):
        destroy_image(user["avatar"]["public_id"])
    updated = database["user"].find_one_and_update({"_id": user["_id"]},
                                                   {"$set": {"avatar": uploaded, "updated_at": now()}},
                                                   return_document=ReturnDocument.AFTER)
    return ok(serialize(updated))


@router.post("/addresses", status_code=201)
def add_address(payload: AddressPayload, principal: Principal = Depends(require_user),
                database: Database = Depends(get_db)):
    user = load_user(database, principal)
    addresses = list(user.get("shipping_addresses", []))
    entry = payload.model_dump()
    entry["id"] = str(ObjectId())
    if entry["is_default"]:
        for a in addresses:
            a["is_default"] = False
    addresses.append(entry)
    return ok(save_addresses(database, user, addresses))


@router.put("/addresses/{address_id}")
def update_address(address_id: str, payload: AddressPayload, principal: Principal = Depends(require_user),
                   database: Database = Depends(get_db)):
    user = load_user(database, principal)
    addresses = list(user.get("shipping_addresses", []))
    target = find_address(addresses, address_id)
    if payload.is_default:
        for a in addresses:
            a["is_default"] = False
    target.update(payload.model_dump())
    return ok(save_addresses(database, user, addresses))


@router.delete("/addresses/{address_id}")
def delete_address(address_id: str, principal: Principal = Depends(require_user),
                   database: Database = Depends(get_db)):
    user = load_user(database, principal)
    addresses = list(user.get("shipping_addresses", []))
    find_address(addresses, address_id)
    remaining = [a for a in addresses if a.get("id") != address_id]
    return ok(save_addresses(database, user, remaining))


@router.put("/addresses/{address_id}/default")
def set_default_address(address_id: str, principal: Principal = Depends(require_user),
                        database: Database = Depends(get_db)):
    user = load_user(database, principal)
    addresses = list(user.get("shipping_addresses", []))
    find_address(addresses, address_id)
    for a in addresses:
        a["is_default"] = a.get("id") == address_id
    return ok(save_addresses(database, user, addresses))


@router.put("/preferences")
def update_preferences(payload: PreferencesPayload, principal: Principal = Depends(require_user),
                       database: Database = Depends(get_db)):
    changes = {f"preferences.{k}": v for k, v in payload.model_dump(exclude_none=True).items()}
    changes["updated_at"] = now()
    updated = database["user"].find_one_and_update({"_id": to_obj_id(principal.id)}, {"$set": changes},
                                                   return_document=ReturnDocument.AFTER)
    return ok(serialize(updated))
