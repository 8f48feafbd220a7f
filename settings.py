"""
Runtime configuration

Values come from the environment (a local .env file is loaded first).
Secrets are never given defaults here: a missing JWT secret is replaced by a
random per-process value and a warning is logged.
"""

import logging
import os
import secrets
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        return float(raw) if raw else default
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def _secret(name: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        logger.warning("%s is not set; using an ephemeral secret for this process", name)
        value = secrets.token_hex(32)
    return value


@dataclass
class Settings:
    database_url: Optional[str] = None
    database_name: Optional[str] = None
    environment: str = "development"
    log_level: str = "INFO"
    port: int = 8000

    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_expire_minutes: int = 7 * 24 * 60
    jwt_refresh_expire_days: int = 30
    max_refresh_tokens: int = 5

    cors_origins: List[str] = field(default_factory=list)

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None
    cloudinary_folder: str = "marketplace"
    upload_dir: str = "uploads"

    tax_rate: float = 0.1
    return_window_days: int = 30

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def cloudinary_configured(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)


@lru_cache
def get_settings() -> Settings:
    extra = [o.strip() for o in (os.getenv("CORS_ALLOWED_ORIGINS") or "").split(",") if o.strip()]
    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        database_name=os.getenv("DATABASE_NAME"),
        environment=os.getenv("ENVIRONMENT", "development"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        port=_int("PORT", 8000),
        jwt_secret=_secret("JWT_SECRET"),
        jwt_refresh_secret=_secret("JWT_REFRESH_SECRET"),
        jwt_expire_minutes=_int("JWT_EXPIRE_MINUTES", 7 * 24 * 60),
        jwt_refresh_expire_days=_int("JWT_REFRESH_EXPIRE_DAYS", 30),
        max_refresh_tokens=_int("MAX_REFRESH_TOKENS", 5),
        cors_origins=list(dict.fromkeys(DEFAULT_ORIGINS + extra)),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET"),
        cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
        cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
        cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
        cloudinary_folder=os.getenv("CLOUDINARY_FOLDER", "marketplace"),
        upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
        tax_rate=_float("TAX_RATE", 0.1),
        return_window_days=_int("RETURN_WINDOW_DAYS", 30),
    )
