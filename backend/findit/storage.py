"""Blob storage for item photos.

Two backends: a local folder served under ``/uploads`` and S3 (or any
S3-compatible endpoint) through boto3. The lifecycle engine only sees the URL
returned by ``put``, and deletes what it wrote when the item is not saved.
"""
from __future__ import annotations

import logging
import os
import secrets
from io import BytesIO
from typing import Protocol

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from .errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_FORMATS = {"JPEG": "image/jpeg", "PNG": "image/png", "GIF": "image/gif"}
ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif"}
THUMBNAIL_SIZE = (480, 480)


class BlobStorage(Protocol):
    def put(self, key: str, data: bytes, content_type: str) -> str:
        ...

    def delete(self, key: str) -> None:
        ...


class LocalBlobStorage:
    def __init__(self, folder: str, url_prefix: str = "/uploads"):
        self.folder = folder
        self.url_prefix = url_prefix.rstrip("/")

    def put(self, key: str, data: bytes, content_type: str) -> str:
        path = os.path.join(self.folder, *key.split("/"))
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)
        # Relative URLs avoid mixed-content and host coupling
        return f"{self.url_prefix}/{key}"

    def delete(self, key: str) -> None:
        path = os.path.join(self.folder, *key.split("/"))
        if os.path.isfile(path):
            os.remove(path)


class S3BlobStorage:
    def __init__(
        self,
        bucket: str,
        *,
        region: str | None = None,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        public_url_base: str | None = None,
    ):
        self.bucket = bucket
        self.region = region or "us-east-1"
        self.public_url_base = public_url_base
        self.client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            endpoint_url=endpoint_url,
            config=BotoConfig(s3={"addressing_style": "virtual"}),
        )

    def put(self, key: str, data: bytes, content_type: str) -> str:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type, ACL="public-read")
        if self.public_url_base:
            return f"{self.public_url_base.rstrip('/')}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)


class MemoryBlobStorage:
    """Keeps blobs in a dict. Used by tests and local tooling."""

    def __init__(self, url_prefix: str = "memory://"):
        self.url_prefix = url_prefix
        self.blobs: dict[str, tuple[bytes, str]] = {}

    def put(self, key: str, data: bytes, content_type: str) -> str:
        self.blobs[key] = (data, content_type)
        return f"{self.url_prefix}{key}"

    def delete(self, key: str) -> None:
        self.blobs.pop(key, None)


def make_blob_storage(config) -> BlobStorage:
    bucket = config.get("S3_BUCKET_NAME")
    if bucket:
        return S3BlobStorage(
            bucket,
            region=config.get("S3_REGION"),
            endpoint_url=config.get("S3_ENDPOINT_URL"),
            access_key_id=config.get("S3_ACCESS_KEY_ID"),
            secret_access_key=config.get("S3_SECRET_ACCESS_KEY"),
            public_url_base=config.get("S3_PUBLIC_URL_BASE"),
        )
    return LocalBlobStorage(config["UPLOAD_FOLDER"])


class ImageUpload:
    """An uploaded photo checked to be a real jpeg/png/gif."""

    def __init__(self, filename: str, data: bytes, max_bytes: int):
        ext = os.path.splitext(filename or "")[1].lower()[:10]
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError({"images": ["Only image files are allowed"]})
        if len(data) > max_bytes:
            raise ValidationError({"images": [f"Image exceeds {max_bytes // (1024 * 1024)} MB limit"]})
        try:
            with Image.open(BytesIO(data)) as img:
                fmt = img.format
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise ValidationError({"images": ["Only image files are allowed"]}) from exc
        if fmt not in ALLOWED_IMAGE_FORMATS:
            raise ValidationError({"images": ["Only image files are allowed"]})
        self.ext = ext
        self.data = data
        self.content_type = ALLOWED_IMAGE_FORMATS[fmt]
        self.format = fmt

    def thumbnail(self) -> bytes:
        img = Image.open(BytesIO(self.data))
        img.thumbnail(THUMBNAIL_SIZE)
        out = BytesIO()
        if self.format == "JPEG":
            img.convert("RGB").save(out, format="JPEG", optimize=True)
        else:
            img.save(out, format="PNG", optimize=True)
        return out.getvalue()


def store_images(blobs: BlobStorage, uploads: list[ImageUpload], written: list[str]) -> tuple[list[str], list[str]]:
    """Write photos and their thumbnails; returns (image urls, thumbnail urls).

    Every key is appended to ``written`` as soon as it is stored, so a caller
    can discard a partial batch with ``discard_blobs``.
    """
    images: list[str] = []
    thumbs: list[str] = []
    for up in uploads:
        fname = secrets.token_hex(16) + up.ext
        key = f"items/{fname}"
        images.append(blobs.put(key, up.data, up.content_type))
        written.append(key)
        thumb_type = "image/jpeg" if up.format == "JPEG" else "image/png"
        thumb_ext = ".jpg" if up.format == "JPEG" else ".png"
        thumb_key = f"items/thumbs/{os.path.splitext(fname)[0]}{thumb_ext}"
        thumbs.append(blobs.put(thumb_key, up.thumbnail(), thumb_type))
        written.append(thumb_key)
    logger.debug("Stored %d image(s)", len(images))
    return images, thumbs


def discard_blobs(blobs: BlobStorage, keys: list[str]) -> None:
    for key in keys:
        try:
            blobs.delete(key)
        except (OSError, BotoCoreError, ClientError):
            # The original failure is what the caller reports
            logger.exception("Could not remove blob %s", key)
