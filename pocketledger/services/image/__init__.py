"""Receipt image storage package."""

from pocketledger.services.image.cloudinary_service import (
    CloudinaryReceiptStore,
    ImageDownloadError,
    ImageUploadError,
)

__all__ = [
    "CloudinaryReceiptStore",
    "ImageDownloadError",
    "ImageUploadError",
]
