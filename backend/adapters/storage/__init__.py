"""Storage adapters for story cover images."""

from .image_storage import (
    MAX_IMAGE_BYTES,
    LocalStorageAdapter,
    S3StorageAdapter,
    StorageAdapter,
    StorageError,
    download_image,
    get_storage_adapter,
    storage_adapter,
)

__all__ = [
    "MAX_IMAGE_BYTES",
    "StorageAdapter",
    "StorageError",
    "LocalStorageAdapter",
    "S3StorageAdapter",
    "get_storage_adapter",
    "download_image",
    "storage_adapter",
]
