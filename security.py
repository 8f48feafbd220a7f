"""
Authentication helpers

Password hashing (bcrypt), JWT access/refresh tokens (PyJWT) and the FastAPI
dependencies used to protect routes. A request principal is either a User or
a Seller; seller tokens that do not match a User get a minimal synthesized
user so role checks keep working.
"""

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request
from pymongo.database import Database

from database import get_db, now, serialize, to_obj_id
from settings import get_settings

logger = logging.getLogger(__name__)

NOT_AUTHORIZED = "Not authorized to access this route"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(principal_id: str, role: str) -> str:
    settings = get_settings()
    payload = {
        "id": str(principal_id),
        "role": role,
        "exp": now() + timedelta(minutes=settings.jwt_expire_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def create_refresh_token(principal_id: str) -> str:
    settings = get_settings()
    payload = {
        "id": str(principal_id),
        "jti": secrets.token_hex(8),
        "exp": now() + timedelta(days=settings.jwt_refresh_expire_days),
    }
    return jwt.encode(payload, settings.jwt_refresh_secret, algorithm="HS256")


def decode_token(token: str, refresh: bool = False) -> dict:
    settings = get_settings()
    secret = settings.jwt_refresh_secret if refresh else settings.jwt_secret
    return jwt.decode(token, secret, algorithms=["HS256"])


def keep_recent(tokens: List[str], new_token: str, drop: Optional[str] = None) -> List[str]:
    """Append a refresh token, optionally rotating out an old one, keeping the newest few."""
    limit = get_settings().max_refresh_tokens
    kept = [t for t in tokens if t != drop]
    kept.append(new_token)
    return kept[-limit:]


def issue_tokens(database: Database, collection_name: str, doc: dict, role: str) -> Dict[str, str]:
    access = create_access_token(str(doc["_id"]), role)
    refresh = create_refresh_token(str(doc["_id"]))
    database[collection_name].update_one(
        {"_id": doc["_id"]},
        {"$set": {
            "refresh_tokens": keep_recent(doc.get("refresh_tokens", []), refresh),
            "last_login": now(),
        }},
    )
    return {"token": access, "refresh_token": refresh}


def reset_token_pair():
    """Return (raw token, sha256 digest) for a password reset."""
    raw = secrets.token_hex(20)
    return raw, hash_reset_token(raw)


def hash_reset_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class Principal:
    id: str
    email: str
    role: str
    user: Optional[dict] = None
    seller: Optional[dict] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def seller_id(self) -> Optional[str]:
        return str(self.seller["_id"]) if self.seller else None


def token_from_request(request: Request) -> Optional[str]:
    token = request.cookies.get("token")
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header.split(" ", 1)[1].strip() or None
    return None


def resolve_principal(database: Database, claims: dict) -> Principal:
    try:
        oid = to_obj_id(claims.get("id"))
    except HTTPException:
        raise HTTPException(status_code=401, detail=NOT_AUTHORIZED)

    user = database["user"].find_one({"_id": oid})
    if user:
        if user.get("is_suspended"):
            raise HTTPException(status_code=401, detail="Account is suspended")
        principal = Principal(id=str(user["_id"]), email=user["email"], role=user.get("role", "customer"),
                              user=serialize(user))
        if principal.role == "seller":
            seller = database["seller"].find_one({"email": user["email"].lower()})
            if seller and not seller.get("is_suspended"):
                principal.seller = seller
        return principal

    if claims.get("role") == "seller":
        seller = database["seller"].find_one({"_id": oid})
        if not seller:
            raise HTTPException(status_code=401, detail="No seller found with this token")
        if seller.get("is_suspended"):
            raise HTTPException(status_code=401, detail="Account is suspended")
        return Principal(id=str(seller["_id"]), email=seller["email"], role="seller", seller=seller)

    raise HTTPException(status_code=401, detail=NOT_AUTHORIZED)


def protect(request: Request, database: Database = Depends(get_db)) -> Principal:
    token = token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail=NOT_AUTHORIZED)
    try:
        claims = decode_token(token)
    except jwt.PyJWTError as e:
        logger.warning("Rejected token from %s: %s", request.client.host if request.client else "-", e)
        raise HTTPException(status_code=401, detail=NOT_AUTHORIZED)
    return resolve_principal(database, claims)


def optional_auth(request: Request, database: Database = Depends(get_db)) -> Optional[Principal]:
    token = token_from_request(request)
    if not token:
        return None
    try:
        return resolve_principal(database, decode_token(token))
    except (jwt.PyJWTError, HTTPException) as e:
        logger.debug("Ignoring invalid token in optional auth: %s", e)
        return None


def authorize(*roles: str) -> Callable[..., Principal]:
    def checker(principal: Principal = Depends(protect)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"User role {principal.role} is not authorized to access this route",
            )
        return principal
    return checker


def require_seller(principal: Principal = Depends(protect)) -> Principal:
    if principal.seller is None:
        raise HTTPException(status_code=403, detail="Seller account required")
    return principal


class RateLimiter:
    """Sliding window limiter keyed by client IP and principal id. Single process only."""

    def __init__(self, max_attempts: int = 5, window_seconds: int = 15 * 60):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.attempts: Dict[str, List[float]] = {}

    def hit(self, key: str) -> None:
        stamp = time.monotonic()
        window_start = stamp - self.window_seconds
        for stale in [k for k, times in self.attempts.items() if k != key and times[-1] <= window_start]:
            del self.attempts[stale]
        recent = [t for t in self.attempts.get(key, []) if t > window_start]
        if len(recent) >= self.max_attempts:
            self.attempts[key] = recent
            logger.warning("Rate limit exceeded for %s", key)
            raise HTTPException(status_code=429, detail="Too many attempts. Please try again later.")
        recent.append(stamp)
        self.attempts[key] = recent

    def __call__(self, request: Request, principal: Optional[Principal] = Depends(optional_auth)) -> None:
        host = request.client.host if request.client else "unknown"
        self.hit(host + (principal.id if principal else ""))


def require_user(principal: Principal = Depends(protect)) -> Principal:
    if principal.user is None:
        raise HTTPException(status_code=403, detail="User account required")
    return principal
