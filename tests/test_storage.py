import cloudinary.uploader
import pytest
from cloudinary.exceptions import Error as CloudinaryError
from fastapi import HTTPException

import storage
from settings import get_settings


@pytest.fixture
def cloudinary_account(monkeypatch):
    settings = get_settings()
    monkeypatch.setattr(settings, "cloudinary_cloud_name", "demo")
    monkeypatch.setattr(settings, "cloudinary_api_key", "key")
    monkeypatch.setattr(settings, "cloudinary_api_secret", "secret")


def test_uploads_go_through_cloudinary(monkeypatch, cloudinary_account):
    calls = []

    def upload(file, **options):
        calls.append((file.read(), options))
        return {"public_id": "marketplace/products/abc", "secure_url": "https://res.cloudinary.com/demo/abc.png"}

    monkeypatch.setattr(cloudinary.uploader, "upload", upload)
    saved = storage.save_image("lamp.png", b"\x89PNG lamp")
    assert saved == {"public_id": "marketplace/products/abc", "url": "https://res.cloudinary.com/demo/abc.png"}
    content, options = calls[0]
    assert content == b"\x89PNG lamp"
    assert options["folder"] == "marketplace/products"
    assert options["cloud_name"] == "demo"
    assert options["api_secret"] == "secret"


def test_failed_upload_is_a_bad_gateway(monkeypatch, cloudinary_account):
    def upload(file, **options):
        raise CloudinaryError("Invalid Signature")

    monkeypatch.setattr(cloudinary.uploader, "upload", upload)
    with pytest.raises(HTTPException) as exc:
        storage.save_image("lamp.png", b"\x89PNG lamp")
    assert exc.value.status_code == 502


def test_destroy_uses_cloudinary_for_remote_images(monkeypatch, cloudinary_account):
    destroyed = []
    monkeypatch.setattr(cloudinary.uploader, "destroy",
                        lambda public_id, **options: destroyed.append(public_id) or {"result": "ok"})
    storage.destroy_image("marketplace/products/abc")
    assert destroyed == ["marketplace/products/abc"]

    def broken(public_id, **options):
        raise CloudinaryError("not found")

    monkeypatch.setattr(cloudinary.uploader, "destroy", broken)
    storage.destroy_image("marketplace/products/gone")


def test_local_storage_without_cloudinary():
    saved = storage.save_image("rug.jpg", b"rug")
    assert saved["public_id"].startswith(storage.LOCAL_PREFIX + "products/")
    assert saved["url"].startswith("/uploads/products/")
    storage.destroy_image(saved["public_id"])
    with pytest.raises(HTTPException):
        storage.save_image("rug.exe", b"rug")
