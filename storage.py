"""
Image storage

Uploads go to Cloudinary through its SDK. Without Cloudinary credentials the
files are written under UPLOAD_DIR and served from /uploads.
"""

import io
import logging
import os
import uuid
from typing import Dict, List

import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError
from fastapi import HTTPException, UploadFile
from werkzeug.utils import secure_filename

from settings import get_settings

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
MAX_BYTES = 5 * 1024 * 1024
MAX_FILES = 10
LOCAL_PREFIX = "local/"


def allowed_file(filename: str) -> bool:
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_EXTENSIONS


def validate_image(filename: str, content: bytes) -> None:
    if not filename or not allowed_file(filename):
        raise HTTPException(status_code=400, detail="Only image files are allowed")
    if len(content) > MAX_BYTES:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 5MB.")


def _credentials() -> Dict[str, str]:
    settings = get_settings()
    return {"cloud_name": settings.cloudinary_cloud_name, "api_key": settings.cloudinary_api_key,
            "api_secret": settings.cloudinary_api_secret, "secure": True}


def save_image(filename: str, content: bytes, folder: str = "products") -> Dict[str, str]:
    validate_image(filename, content)
    settings = get_settings()
    if settings.cloudinary_configured:
        try:
            result = cloudinary.uploader.upload(io.BytesIO(content), folder=f"{settings.cloudinary_folder}/{folder}",
                                                resource_type="image", **_credentials())
        except CloudinaryError as exc:
            logger.error("Cloudinary upload of %s failed: %s", filename, exc)
            raise HTTPException(status_code=502, detail="Image upload failed")
        logger.info("Uploaded %s to Cloudinary as %s", filename, result.get("public_id"))
        return {"public_id": result["public_id"], "url": result["secure_url"]}

    name = f"{uuid.uuid4().hex[:12]}-{secure_filename(filename)}"
    directory = os.path.join(settings.upload_dir, folder)
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, name), "wb") as fh:
        fh.write(content)
    logger.info("Stored %s locally under %s", filename, directory)
    return {"public_id": f"{LOCAL_PREFIX}{folder}/{name}", "url": f"/uploads/{folder}/{name}"}


async def save_uploads(files: List[UploadFile], folder: str = "products") -> List[Dict[str, str]]:
    if len(files) > MAX_FILES:
        raise HTTPException(status_code=400, detail="Too many files. Maximum is 10 files.")
    saved = []
    for upload in files:
        saved.append(save_image(upload.filename or "", await upload.read(), folder))
    return saved


def destroy_image(public_id: str) -> None:
    if not public_id:
        return
    settings = get_settings()
    if public_id.startswith(LOCAL_PREFIX):
        path = os.path.join(settings.upload_dir, public_id[len(LOCAL_PREFIX):])
        if os.path.exists(path):
            os.remove(path)
        return
    if not settings.cloudinary_configured:
        logger.warning("Cannot destroy %s: Cloudinary is not configured", public_id)
        return
    try:
        cloudinary.uploader.destroy(public_id, resource_type="image", **_credentials())
    except CloudinaryError:
        # the product change goes through even if the remote copy lingers
        logger.warning("Could not destroy image %s", public_id)
