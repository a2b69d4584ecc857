"""
Image Storage

Collaborator that persists proof/verification photos and hands back a
public reference. Two backends:

- HttpImageStore: multipart upload to a remote storage service
- LocalImageStore: files on local disk, served by the app under /uploads

Callers pass either raw bytes or an already-hosted http(s) URL; a URL is
recorded as-is without re-uploading.
"""
import base64
import binascii
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Optional, Union

import httpx

from ...config import (
    IMAGE_STORAGE_TIMEOUT_SECONDS, IMAGE_STORAGE_TOKEN, IMAGE_STORAGE_URL, UPLOAD_DIR,
)
from ..errors import ExternalServiceError, ValidationError


logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}
MAX_IMAGE_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class StoredImage:
    url: str
    key: Optional[str] = None
    size: Optional[int] = None


def is_remote_url(value) -> bool:
    return isinstance(value, str) and value.startswith(("http://", "https://"))


def decode_image_payload(payload: str, mime_type: str = "image/jpeg") -> bytes:
    """
    Decode a base64 image, with or without a data URI prefix.

    Raises ValidationError on bad encoding, a disallowed type, or oversize data.
    """
    if not payload:
        raise ValidationError("No image data provided")

    if payload.startswith("data:"):
        header, _, payload = payload.partition(",")
        mime_type = header[5:].split(";")[0] or mime_type

    if mime_type not in ALLOWED_MIME_TYPES:
        raise ValidationError(f"Unsupported image type: {mime_type}")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Image data is not valid base64")

    if not data:
        raise ValidationError("Image data is empty")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError("Image too large (max 10MB)")
    return data


def build_filename(identity: Optional[str], prefix: str = "problem", mime_type: str = "image/jpeg") -> str:
    sanitized = (identity or "anonymous").replace("+", "")
    ext = ALLOWED_MIME_TYPES.get(mime_type, "jpg")
    return f"{prefix}_{sanitized}_{uuid.uuid4().hex[:12]}.{ext}"


class ImageStore:
    def store(self, data: Union[bytes, str], filename: str, mime_type: str = "image/jpeg") -> StoredImage:
        raise NotImplementedError


class LocalImageStore(ImageStore):
    def __init__(self, upload_dir: str = UPLOAD_DIR, public_prefix: str = "/uploads"):
        self.upload_dir = upload_dir
        self.public_prefix = public_prefix.rstrip("/")

    def store(self, data: Union[bytes, str], filename: str, mime_type: str = "image/jpeg") -> StoredImage:
        if is_remote_url(data):
            return StoredImage(url=data)

        key = os.path.basename(filename) or f"{uuid.uuid4().hex}.jpg"
        try:
            os.makedirs(self.upload_dir, exist_ok=True)
            with open(os.path.join(self.upload_dir, key), "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Failed to write image {key}: {e}")
            raise ExternalServiceError(f"Image upload failed: {e}")

        logger.info(f"Stored image {key} ({len(data)} bytes) on local disk")
        return StoredImage(url=f"{self.public_prefix}/{key}", key=key, size=len(data))


class HttpImageStore(ImageStore):
    """Remote storage service: POST multipart 'file', response JSON {url, key}."""

    def __init__(
        self,
        base_url: str = IMAGE_STORAGE_URL,
        token: str = IMAGE_STORAGE_TOKEN,
        timeout: float = IMAGE_STORAGE_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = client or httpx.Client(base_url=base_url, timeout=timeout, headers=headers)

    def store(self, data: Union[bytes, str], filename: str, mime_type: str = "image/jpeg") -> StoredImage:
        if is_remote_url(data):
            return StoredImage(url=data)

        try:
            response = self.client.post("/upload", files={"file": (filename, data, mime_type)})
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Image upload of {filename} failed: {e}")
            raise ExternalServiceError(f"Image upload failed: {e}")

        url = body.get("url")
        if not url:
            logger.error(f"Image storage returned no URL for {filename}")
            raise ExternalServiceError("Image upload failed - no URL returned")

        logger.info(f"Uploaded image {filename} -> {url}")
        return StoredImage(url=url, key=body.get("key"), size=len(data))


def build_image_store() -> ImageStore:
    if IMAGE_STORAGE_URL:
        return HttpImageStore()
    return LocalImageStore()
