"""
Receipt Image Storage using Cloudinary

DESIGN DECISION: Receipt photos are uploaded as AUTHENTICATED assets:
1. They contain merchant, card digits and shopping habits
2. Public delivery URLs would be guessable forever
3. Signed download URLs expire (one year by default)

This service handles:
1. Uploading the original image under the owner's folder
2. Creating signed, expiring download URLs
3. Downloading images back through those URLs for rescans

CRITICAL: Upload failures must never block a transaction.
Callers treat any error from here as "no receipt image".
"""

import hashlib
import time
from typing import Optional
from uuid import UUID, uuid4

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import cloudinary.utils
import httpx
from tenacity import retry, stop_after_attempt, wait_exponential

from pocketledger.config import CloudinarySettings, get_settings
from pocketledger.services.storage.interface import BlobStore, StorageError


class ImageUploadError(StorageError):
    """Failed to upload image to Cloudinary."""
    pass


class ImageDownloadError(StorageError):
    """Failed to fetch a stored receipt image."""
    pass


class CloudinaryReceiptStore(BlobStore):
    """
    BlobStore backed by Cloudinary.

    Storage keys look like "<folder>/<owner_id>/<name>.<format>".
    """

    def __init__(self, settings: Optional[CloudinarySettings] = None):
        self._settings = settings or get_settings().cloudinary
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def _generate_public_id(self, owner_id: UUID, image_bytes: bytes) -> str:
        """
        Unique public id inside the owner's folder.

        Format: {folder}/{owner_id}/{random}_{content_hash}
        """
        content_hash = hashlib.md5(image_bytes).hexdigest()[:8]
        return f"{self._settings.folder}/{owner_id}/{uuid4().hex}_{content_hash}"

    @staticmethod
    def _split_key(storage_key: str) -> tuple[str, str]:
        public_id, _, fmt = storage_key.rpartition(".")
        if not public_id:
            return storage_key, "jpg"
        return public_id, fmt

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upload(self, owner_id: UUID, image_bytes: bytes) -> str:
        """
        Upload a receipt image.

        Raises:
            ImageUploadError: If Cloudinary rejects the upload
        """
        self._configure()

        try:
            result = cloudinary.uploader.upload(
                image_bytes,
                public_id=self._generate_public_id(owner_id, image_bytes),
                resource_type="image",
                type="authenticated",
                overwrite=False,
            )
        except cloudinary.exceptions.Error as e:
            raise ImageUploadError(f"Cloudinary error: {e}")
        except Exception as e:
            raise ImageUploadError(f"Failed to upload image: {e}")

        public_id = result.get("public_id")
        if not public_id:
            raise ImageUploadError("No public id returned from Cloudinary")
        return f"{public_id}.{result.get('format') or 'jpg'}"

    async def create_temporary_url(self, storage_key: str, ttl_seconds: int) -> str:
        """Signed download URL for an authenticated image."""
        self._configure()
        public_id, fmt = self._split_key(storage_key)
        try:
            return cloudinary.utils.private_download_url(
                public_id,
                fmt,
                resource_type="image",
                type="authenticated",
                expires_at=int(time.time()) + ttl_seconds,
            )
        except Exception as e:
            raise ImageUploadError(f"Failed to sign image URL: {e}")

    async def download(self, url: str) -> bytes:
        """
        Fetch a receipt image through its signed URL.

        Raises:
            ImageDownloadError: On transport errors or a non-2xx response
        """
        try:
            async with httpx.AsyncClient(timeout=30.0, follow_redirects=True) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise ImageDownloadError(f"Failed to download image: {e}")
        return response.content
