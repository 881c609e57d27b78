"""
Product image uploads to Cloudinary.

Files are checked here (type, size, emptiness) before anything is sent to
the media host; failures on the Cloudinary side surface as UploadError.
"""
import logging
import os
import time
from typing import Optional

import cloudinary
import cloudinary.uploader

import config

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp")
MAX_UPLOAD_BYTES = 10 * 1024 * 1024

cloudinary.config(
    cloud_name=config.CLOUDINARY_CLOUD_NAME,
    api_key=config.CLOUDINARY_API_KEY,
    api_secret=config.CLOUDINARY_API_SECRET,
    secure=True,
)


class InvalidImage(ValueError):
    pass


class UploadError(Exception):
    pass


def validate_image(content_type: Optional[str], data: bytes) -> None:
    if not data:
        raise InvalidImage("File is empty")
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise InvalidImage("Unsupported file type. Only JPEG, PNG, GIF and WebP are allowed.")
    if len(data) > MAX_UPLOAD_BYTES:
        raise InvalidImage("File is too large. The maximum size is 10 MB.")


def make_public_id(filename: Optional[str]) -> str:
    stem = os.path.splitext(filename or "image")[0] or "image"
    return f"{int(time.time() * 1000)}-{stem}"


def upload_image(data: bytes, filename: Optional[str], content_type: Optional[str], folder: Optional[str] = None) -> dict:
    """Validate and upload an image, returning {"url", "publicId"}."""
    validate_image(content_type, data)
    try:
        result = cloudinary.uploader.upload(
            data,
            folder=folder or config.CLOUDINARY_FOLDER,
            public_id=make_public_id(filename),
            resource_type="image",
        )
    except Exception as exc:
        logger.exception("Cloudinary upload failed for %s", filename)
        raise UploadError(f"Failed to upload image to storage service: {exc}") from exc
    logger.info("Uploaded %s to %s", filename, result.get("secure_url"))
    return {"url": result["secure_url"], "publicId": result["public_id"]}
