import logging
from datetime import timedelta
from typing import Literal, Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field
from pymongo.database import Database

from database import as_utc, create_document, get_db, now, serialize
from routers import ok
from schemas import User
from security import (
    Principal, RateLimiter, decode_token, hash_password, hash_reset_token, issue_tokens, keep_recent,
    create_access_token, create_refresh_token, protect, reset_token_pair, verify_password,
)
from settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

password_limiter = RateLimiter()
forgot_limiter = RateLimiter(max_attempts=3)


class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=6)
    role: Literal["customer", "vendor"] = "customer"


class LoginPayload(BaseModel):
    email: str
    password: str


class RefreshPayload(BaseModel):
    refresh_token: Optional[str] = None


class PasswordUpdatePayload(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class ForgotPayload(BaseModel):
    email: str


class ResetPayload(BaseModel):
    password: str = Field(..., min_length=6)


def set_token_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        "token", token,
        max_age=settings.jwt_expire_minutes * 60,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def token_response(database: Database, response: Response, collection_name: str, doc: dict, role: str) -> dict:
    tokens = issue_tokens(database, collection_name, doc, role)
    set_token_cookie(response, tokens["token"])
    return ok(serialize(database[collection_name].find_one({"_id": doc["_id"]})), **tokens)


@router.post("/register", status_code=201)
def register(payload: RegisterPayload, response: Response, database: Database = Depends(get_db)):
    email = payload.email.lower()
    if database["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists with this email")
    user = User(name=payload.name, email=email, password=hash_password(payload.password), role=payload.role)
    user_id = create_document(database, "user", user)
    logger.info("Registered %s user %s", payload.role, user_id)
    doc = database["user"].find_one({"email": email})
    return token_response(database, response, "user", doc, doc["role"])


@router.post("/login")
def login(payload: LoginPayload, response: Response, database: Database = Depends(get_db)):
    user = database["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password")):
        logger.warning("Failed login for %s", payload.email.lower())
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.get("is_suspended"):
        raise HTTPException(status_code=401, detail="Account is suspended")
    return token_response(database, response, "user", user, user.get("role", "customer"))


@router.post("/logout")
def logout(response: Response, principal: Principal = Depends(protect), database: Database = Depends(get_db)):
    collection_name = "user" if principal.user else "seller"
    database[collection_name].update_one({"email": principal.email}, {"$set": {"refresh_tokens": []}})
    response.delete_cookie("token")
    return ok(None, message="Logged out successfully")


@router.get("/me")
def get_me(principal: Principal = Depends(protect)):
    if principal.user:
        data = dict(principal.user)
        if principal.seller:
            data["seller"] = serialize(principal.seller)
        return ok(data)
    return ok({"id": principal.id, "email": principal.email, "role": principal.role,
               "seller": serialize(principal.seller)})


@router.post("/refresh")
def refresh(payload: RefreshPayload, response: Response, database: Database = Depends(get_db)):
    if not payload.refresh_token:
        raise HTTPException(status_code=401, detail="Refresh token is required")
    try:
        claims = decode_token(payload.refresh_token, refresh=True)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token")

    for collection_name in ("user", "seller"):
        doc = database[collection_name].find_one({"refresh_tokens": payload.refresh_token})
        if doc and str(doc["_id"]) == claims.get("id"):
            break
    else:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    if doc.get("is_suspended"):
        raise HTTPException(status_code=401, detail="Account is suspended")

    role = doc.get("role", "customer") if collection_name == "user" else "seller"
    access = create_access_token(str(doc["_id"]), role)
    new_refresh = create_refresh_token(str(doc["_id"]))
    database[collection_name].update_one(
        {"_id": doc["_id"]},
        {"$set": {"refresh_tokens": keep_recent(doc.get("refresh_tokens", []), new_refresh,
                                                drop=payload.refresh_token)}},
    )
    set_token_cookie(response, access)
    return ok(None, token=access, refresh_token=new_refresh)


@router.put("/update-password", dependencies=[Depends(password_limiter)])
def update_password(payload: PasswordUpdatePayload, response: Response,
                    principal: Principal = Depends(protect), database: Database = Depends(get_db)):
    if not principal.user:
        raise HTTPException(status_code=400, detail="Use the seller profile to change this password")
    user = database["user"].find_one({"email": principal.email})
    if not verify_password(payload.current_password, user.get("password")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    database["user"].update_one({"_id": user["_id"]},
                                {"$set": {"password": hash_password(payload.new_password), "updated_at": now()}})
    logger.info("Password updated for user %s", principal.id)
    return token_response(database, response, "user", user, user.get("role", "customer"))


@router.post("/forgot-password", dependencies=[Depends(forgot_limiter)])
def forgot_password(payload: ForgotPayload, database: Database = Depends(get_db)):
    user = database["user"].find_one({"email": payload.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="No user found with this email")
    raw, digest = reset_token_pair()
    database["user"].update_one({"_id": user["_id"]}, {"$set": {
        "reset_password_token": digest,
        "reset_password_expire": now() + timedelta(minutes=10),
    }})
    logger.info("Password reset requested for user %s", user["_id"])
    extra = {} if get_settings().is_production else {"reset_token": raw}
    return ok(None, message="Password reset token generated", **extra)


@router.put("/reset-password/{reset_token}")
def reset_password(reset_token: str, payload: ResetPayload, response: Response,
                   database: Database = Depends(get_db)):
    user = database["user"].find_one({"reset_password_token": hash_reset_token(reset_token)})
    expires = as_utc(user.get("reset_password_expire")) if user else None
    if not user or not expires or expires < now():
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    database["user"].update_one({"_id": user["_id"]}, {
        "$set": {"password": hash_password(payload.password), "updated_at": now()},
        "$unset": {"reset_password_token": "", "reset_password_expire": ""},
    })
    return token_response(database, response, "user", user, user.get("role", "customer"))
