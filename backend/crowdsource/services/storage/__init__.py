from .image_store import (
    ImageStore, LocalImageStore, HttpImageStore, StoredImage,
    build_filename, build_image_store, decode_image_payload, is_remote_url,
)
from .media import MediaService

__all__ = [
    "MediaService",
    "ImageStore",
    "LocalImageStore",
    "HttpImageStore",
    "StoredImage",
    "build_filename",
    "build_image_store",
    "decode_image_payload",
    "is_remote_url",
]
