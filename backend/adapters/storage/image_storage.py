"""
Image storage adapters for local and S3 storage.

Provides abstract base class and concrete implementations for storing
story cover images locally or in cloud storage, plus the downloader used to
fetch generated images from the image model's CDN.
"""

import asyncio
import logging
import posixpath
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import aiofiles
import aiohttp
import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from core.errors import StoryGenerationError
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024
DOWNLOAD_CHUNK_BYTES = 64 * 1024

DOWNLOAD_HEADERS = {
    "User-Agent": "StoriesOnTips/1.0",
    "Accept": "image/*,*/*;q=0.8",
    "Cache-Control": "no-cache",
}


class StorageError(Exception):
    """Raised when an image cannot be stored."""


def _safe_key(key: str) -> str:
    """
    Normalize a storage key and reject directory traversal.

    Args:
        key: Slash-separated object key such as ``images/123-abc.webp``

    Returns:
        Normalized key without leading slashes
    """
    normalized = posixpath.normpath(key.replace("\\", "/")).lstrip("/")
    if normalized in ("", ".") or normalized.startswith("..") or "\0" in normalized:
        raise StorageError(f"Invalid storage key: {key!r}")
    return normalized


def _content_type_for(key: str) -> str:
    lowered = key.lower()
    if lowered.endswith((".jpg", ".jpeg")):
        return "image/jpeg"
    if lowered.endswith(".webp"):
        return "image/webp"
    if lowered.endswith(".gif"):
        return "image/gif"
    return "image/png"


class StorageAdapter(ABC):
    """Abstract base class for storage adapters."""

    @abstractmethod
    async def save_image(self, image_data: bytes, key: str, content_type: Optional[str] = None) -> str:
        """
        Save image data to storage.

        Args:
            image_data: Raw image bytes
            key: Object key, e.g. ``images/1700000000000-1a2b3c4d.webp``
            content_type: MIME type (derived from the key when omitted)

        Returns:
            Public URL of the saved image
        """

    @abstractmethod
    async def delete_image(self, key: str) -> bool:
        """
        Delete an image from storage.

        Returns:
            True if deleted, False if it did not exist
        """

    @abstractmethod
    def get_image_url(self, key: str) -> str:
        """Public URL for a stored key."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether the backing store can currently accept writes."""


class LocalStorageAdapter(StorageAdapter):
    """
    Local filesystem storage adapter.

    Files live under ``storage_local_path`` using the key as relative path and
    are served by the API's static ``/uploads`` mount.
    """

    def __init__(self, base_path: Optional[str] = None, public_base_url: Optional[str] = None):
        self.base_path = Path(base_path or settings.storage_local_path)
        self.public_base_url = (public_base_url or settings.storage_public_base_url).rstrip("/")

    async def save_image(self, image_data: bytes, key: str, content_type: Optional[str] = None) -> str:
        safe_key = _safe_key(key)
        file_path = self.base_path / safe_key
        file_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(file_path, "wb") as f:
            await f.write(image_data)

        logger.info("Saved image to local storage: %s (%d bytes)", safe_key, len(image_data))
        return self.get_image_url(safe_key)

    async def delete_image(self, key: str) -> bool:
        file_path = self.base_path / _safe_key(key)
        if not file_path.exists():
            logger.warning("Image not found for deletion: %s", key)
            return False
        file_path.unlink()
        logger.info("Deleted image from local storage: %s", key)
        return True

    def get_image_url(self, key: str) -> str:
        return f"{self.public_base_url}/{_safe_key(key)}"

    async def is_available(self) -> bool:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("Local storage path unavailable: %s", e)
            return False
        return self.base_path.is_dir()


class S3StorageAdapter(StorageAdapter):
    """
    AWS S3 storage adapter.

    Objects are written with boto3 in a worker thread. URLs use
    ``storage_public_base_url`` when it is absolute (CDN), otherwise the
    bucket's virtual-hosted URL.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        region: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket or settings.s3_bucket
        self.region = region or settings.s3_region
        self.access_key = access_key or settings.s3_access_key
        self.secret_key = secret_key or settings.s3_secret_key

        if client is not None:
            self.s3_client = client
        elif self.access_key and self.secret_key:
            self.s3_client = boto3.client(
                "s3",
                region_name=self.region,
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
            )
        else:
            # Default credential chain (IAM role, env vars, etc.)
            self.s3_client = boto3.client("s3", region_name=self.region)

        logger.info("S3 storage adapter initialized for bucket: %s", self.bucket)

    async def save_image(self, image_data: bytes, key: str, content_type: Optional[str] = None) -> str:
        if not self.bucket:
            raise StorageError("S3 bucket not configured.")

        safe_key = _safe_key(key)
        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket,
                Key=safe_key,
                Body=image_data,
                ContentType=content_type or _content_type_for(safe_key),
            )
        except NoCredentialsError as e:
            logger.error("AWS credentials not found")
            raise StorageError("AWS credentials not configured") from e
        except (ClientError, BotoCoreError) as e:
            logger.error("S3 upload failed: %s", e)
            raise StorageError(f"Failed to upload to S3: {e}") from e

        logger.info("Uploaded image to S3: %s", safe_key)
        return self.get_image_url(safe_key)

    async def delete_image(self, key: str) -> bool:
        if not self.bucket:
            logger.warning("S3 not configured, cannot delete image")
            return False
        try:
            await asyncio.to_thread(self.s3_client.delete_object, Bucket=self.bucket, Key=_safe_key(key))
        except ClientError as e:
            logger.error("Failed to delete from S3: %s", e)
            return False
        logger.info("Deleted image from S3: %s", key)
        return True

    def get_image_url(self, key: str) -> str:
        base = settings.storage_public_base_url
        if base.startswith("http"):
            return f"{base.rstrip('/')}/{key}"
        if self.region:
            return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
        return f"https://{self.bucket}.s3.amazonaws.com/{key}"

    async def is_available(self) -> bool:
        if not self.bucket:
            return False
        try:
            await asyncio.to_thread(self.s3_client.head_bucket, Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            logger.error("S3 bucket check failed: %s", e)
            return False
        return True


async def download_image(url: str, max_bytes: int = MAX_IMAGE_BYTES) -> tuple[bytes, str]:
    """
    Download a generated image.

    Args:
        url: HTTP(S) URL returned by the image model
        max_bytes: Largest accepted body size

    Returns:
        Tuple of (image bytes, content type)

    Raises:
        StoryGenerationError: With a retryable code for server-side and network
            failures, and a non-retryable one for bad content
    """
    if not url or not url.startswith("http"):
        raise StoryGenerationError("Invalid image URL provided", status=400, code="INVALID_IMAGE_URL")

    try:
        async with aiohttp.ClientSession(headers=DOWNLOAD_HEADERS) as session:
            async with session.get(url) as response:
                if response.status != 200:
                    raise StoryGenerationError(
                        f"Failed to fetch image: HTTP {response.status}",
                        status=response.status,
                        code="IMAGE_FETCH_FAILED",
                        details={"url": url[:100], "status": response.status},
                        retryable=response.status >= 500,
                    )

                content_type = response.headers.get("content-type", "").lower()
                if not content_type.startswith("image/"):
                    raise StoryGenerationError(
                        "Invalid image content type",
                        status=400,
                        code="INVALID_CONTENT_TYPE",
                        details={"content_type": content_type},
                    )

                if response.content_length is not None and response.content_length > max_bytes:
                    raise _too_large(response.content_length, max_bytes)

                image_data = bytearray()
                async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_BYTES):
                    image_data.extend(chunk)
                    if len(image_data) > max_bytes:
                        raise _too_large(len(image_data), max_bytes)
    except aiohttp.ClientError as e:
        logger.error("Network error downloading image from %s: %s", url[:100], e)
        raise StoryGenerationError(
            f"Image download failed: {e}",
            status=500,
            code="IMAGE_DOWNLOAD_FAILED",
            details={"url": url[:100]},
            retryable=True,
        ) from e

    if not image_data:
        raise StoryGenerationError(
            "Empty image response",
            status=500,
            code="EMPTY_IMAGE_RESPONSE",
            details={"url": url[:100]},
            retryable=True,
        )

    logger.info("Downloaded image from %s (%d bytes)", url[:100], len(image_data))
    return bytes(image_data), content_type


def _too_large(size: int, max_bytes: int) -> StoryGenerationError:
    return StoryGenerationError(
        "Image too large",
        status=400,
        code="IMAGE_TOO_LARGE",
        details={"size": size, "max_size": max_bytes},
    )


def get_storage_adapter() -> StorageAdapter:
    """
    Factory function to get the appropriate storage adapter.

    Raises:
        ValueError: If storage_type is not recognized
    """
    storage_type = settings.storage_type.lower()

    if storage_type == "local":
        return LocalStorageAdapter()
    elif storage_type == "s3":
        return S3StorageAdapter()
    else:
        raise ValueError(f"Unknown storage type: {storage_type}. Must be 'local' or 's3'")


# Convenience singleton for quick access
storage_adapter = get_storage_adapter()
