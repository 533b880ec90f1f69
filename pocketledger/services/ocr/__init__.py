"""OCR services package."""

from pocketledger.services.ocr.tesseract_service import (
    ImageRejectedError,
    OCRError,
    RecognitionError,
    TesseractReceiptService,
)
from pocketledger.services.ocr.gemini_vision_service import (
    GeminiVisionService,
    RemoteVisionError,
    classify_failure,
)
from pocketledger.services.ocr.receipt_parser import (
    PLACEHOLDER_DESCRIPTION,
    parse_receipt_text,
)

__all__ = [
    "GeminiVisionService",
    "ImageRejectedError",
    "OCRError",
    "PLACEHOLDER_DESCRIPTION",
    "RecognitionError",
    "RemoteVisionError",
    "TesseractReceiptService",
    "classify_failure",
    "parse_receipt_text",
]
