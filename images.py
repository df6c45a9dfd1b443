"""Listing image storage.

Uploads are simulated: each image gets a storage key and the bucket/CDN URLs
it would have, and is recorded against its location folder.
"""

import logging
import random
import re
import sqlite3
import string
import time
import uuid
from typing import Optional

import config
import db
from errors import NotFoundError, ValidationError
from models import StoredImage

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "gif"}


def location_slug(location: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", location.lower()).strip("-")


def storage_key(location: str, filename: str) -> str:
    """``<location-slug>/<epoch ms>-<random>.<ext>``"""
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if ext not in IMAGE_EXTENSIONS:
        raise ValidationError(f"Unsupported image type: {filename}")
    rand = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"{location_slug(location)}/{int(time.time() * 1000)}-{rand}.{ext}"


def s3_url(key: str) -> str:
    return f"https://{config.S3_BUCKET_NAME}.s3.{config.AWS_REGION}.amazonaws.com/{key}"


def cdn_url(key: str) -> str:
    return f"https://{config.CLOUDFRONT_DOMAIN}/{key}"


def upload_images(files: list[tuple[str, bytes]], location: str,
                  conn: Optional[sqlite3.Connection] = None) -> list[StoredImage]:
    """Store (filename, content) pairs under a location.

    Images that fail are logged and skipped; the rest are kept.
    """
    location = (location or "").strip()
    if not files:
        raise ValidationError("No images provided")
    if not location:
        raise ValidationError("Location is required")

    stored = []
    for filename, content in files:
        try:
            if not content:
                raise ValidationError(f"Image {filename} is empty")
            key = storage_key(location, filename)
            image = StoredImage(
                id=uuid.uuid4().hex,
                name=filename,
                location_name=location,
                storage_key=key,
                s3_url=s3_url(key),
                cdn_url=cdn_url(key),
                uploaded_at=db.now_iso(),
            )
            db.insert_image(image.to_dict(), folder_path=location_slug(location), conn=conn)
        except (ValidationError, sqlite3.Error) as e:
            logger.warning(f"Skipping image {filename}: {e}")
            continue
        stored.append(image)

    logger.info(f"Uploaded {len(stored)}/{len(files)} images for {location}")
    return stored


def list_images(location: Optional[str] = None, conn: Optional[sqlite3.Connection] = None) -> list[StoredImage]:
    return [StoredImage(**row) for row in db.get_images(location, conn=conn)]


def next_image_for_location(location: str, conn: Optional[sqlite3.Connection] = None) -> StoredImage:
    """Round-robin over a location's images, so consecutive listings get different photos."""
    images = list_images(location, conn=conn)
    if not images:
        raise NotFoundError(f"No images stored for {location}")
    folder = db.get_image_folder(location, conn=conn)
    index = folder["last_used_index"] if folder else 0
    db.advance_folder_index(location, conn=conn)
    return images[index % len(images)]
