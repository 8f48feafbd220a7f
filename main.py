import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from routers import (
    admin, auth, banners, cart, homepage_sections, orders, payments, products, reviews, seller_products,
    sellers, users, vendor, wishlist,
)
from settings import get_settings

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

PROBED_COLLECTIONS = ("user", "seller", "product", "order", "cart")


@asynccontextmanager
async def lifespan(app: FastAPI):
    db = database.connect()
    if db is not None:
        try:
            database.ensure_indexes(db)
        except PyMongoError as e:
            logger.error("Could not create indexes: %s", e)
    yield


app = FastAPI(title="Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error envelope
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail},
                        headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = [{"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "message": e.get("msg")}
              for e in exc.errors()]
    return JSONResponse(status_code=400, content={"success": False, "error": "Validation failed", "errors": errors})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key(request: Request, exc: DuplicateKeyError):
    logger.warning("Duplicate key on %s: %s", request.url.path, exc.details)
    return JSONResponse(status_code=400, content={"success": False, "error": "Duplicate field value"})


@app.exception_handler(Exception)
async def server_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": "Server error"})


for module in (auth, users, products, seller_products, cart, orders, reviews, wishlist, payments, vendor, admin):
    app.include_router(module.router)
app.include_router(sellers.router)
app.include_router(sellers.details_router)
app.include_router(banners.router)
app.include_router(banners.admin_router)
app.include_router(homepage_sections.router)
app.include_router(homepage_sections.admin_router)

os.makedirs(settings.upload_dir, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")


@app.get("/")
def read_root():
    return {"message": "Marketplace API running"}


@app.get("/health")
def health():
    return {"status": "OK", "environment": settings.environment, "timestamp": database.now().isoformat()}


@app.get("/test")
def test_database(db: Database = Depends(database.get_db)):
    """Database check: which collections exist and how many documents the core ones hold."""
    try:
        names = db.list_collection_names()
    except PyMongoError as e:
        logger.error("Database check failed: %s", e)
        return JSONResponse(status_code=503, content={"success": False, "error": "Database not reachable"})
    counts = {name: db[name].estimated_document_count() for name in PROBED_COLLECTIONS if name in names}
    return {"success": True, "data": {"database": db.name, "collections": sorted(names), "counts": counts}}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
