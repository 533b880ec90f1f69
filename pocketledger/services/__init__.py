"""Services package."""

from pocketledger.services.image import (
    CloudinaryReceiptStore,
    ImageDownloadError,
    ImageUploadError,
)
from pocketledger.services.ocr import (
    GeminiVisionService,
    ImageRejectedError,
    OCRError,
    RecognitionError,
    RemoteVisionError,
    TesseractReceiptService,
)
from pocketledger.services.storage import (
    BlobStore,
    ConcurrentUpdateError,
    DuplicateError,
    LedgerStore,
    NotFoundError,
    SQLAlchemyLedgerStore,
    StorageError,
)

__all__ = [
    # Image services
    "CloudinaryReceiptStore",
    "ImageDownloadError",
    "ImageUploadError",
    # OCR services
    "GeminiVisionService",
    "ImageRejectedError",
    "OCRError",
    "RecognitionError",
    "RemoteVisionError",
    "TesseractReceiptService",
    # Storage services
    "BlobStore",
    "ConcurrentUpdateError",
    "DuplicateError",
    "LedgerStore",
    "NotFoundError",
    "SQLAlchemyLedgerStore",
    "StorageError",
]
