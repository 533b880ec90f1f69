"""
Local OCR Service using Tesseract

DESIGN DECISION: Tesseract runs first on every receipt because:
1. It is free (the vision AI is billed per call)
2. It runs locally, no network round trip
3. Most supermarket receipts are clean enough for it

This service handles:
1. Upload limits (size and format) before any work is done
2. Image preprocessing with Pillow (grayscale, contrast, sharpen)
3. Running Tesseract off the event loop
4. Turning the text into a ReceiptDraft via the receipt parser

CRITICAL: This service does NOT decide whether its result is good enough.
That is the confidence heuristics' job. It only fails (RecognitionError)
when the engine itself cannot run.
"""

import asyncio
from io import BytesIO
from typing import Callable, Optional

import pytesseract
from PIL import Image, ImageEnhance, ImageFilter, ImageOps, UnidentifiedImageError

from pocketledger.config import AppSettings, TesseractSettings, get_settings
from pocketledger.models.receipt import ReceiptDraft, ScanProgress
from pocketledger.services.ocr.receipt_parser import parse_receipt_text


ProgressCallback = Callable[[ScanProgress], None]

# User-facing progress statuses
STATUS_LOADING = "Motor yükleniyor..."
STATUS_INITIALIZING = "Başlatılıyor..."
STATUS_LOADING_LANGUAGES = "Dil verileri yükleniyor..."
STATUS_PREPARING_IMAGE = "Görüntü hazırlanıyor..."
STATUS_RECOGNIZING = "Metin tanınıyor..."
STATUS_PARSING = "Fiş çözümleniyor..."
STATUS_DONE = "Tamamlandı"

# PIL reports "JPEG"; uploads are usually named .jpg
_FORMAT_ALIASES = {"jpeg": {"jpg", "jpeg"}}


class OCRError(Exception):
    """Base exception for OCR errors."""
    pass


class RecognitionError(OCRError):
    """The local engine could not process the image."""
    pass


class ImageRejectedError(OCRError):
    """Image is too large or not a supported format."""
    pass


class TesseractReceiptService:
    """
    Local recognition adapter.

    IMPORTANT BOUNDARIES:
    1. Only reads the image, never stores it
    2. Always returns a draft with source=local, even a poor one
    3. Progress is published through the optional callback
    """

    def __init__(
        self,
        settings: Optional[TesseractSettings] = None,
        app_settings: Optional[AppSettings] = None,
    ):
        self._settings = settings or get_settings().tesseract
        self._app_settings = app_settings or get_settings().app
        self._configured = False

    def _configure(self):
        """Point pytesseract at the configured binary."""
        if not self._configured:
            if self._settings.cmd:
                pytesseract.pytesseract.tesseract_cmd = self._settings.cmd
            self._configured = True

    def _emit(
        self,
        on_progress: Optional[ProgressCallback],
        percent: int,
        status: str,
    ) -> None:
        if on_progress is not None:
            on_progress(ScanProgress(percent=percent, status=status))

    def check_image(self, image_bytes: bytes) -> str:
        """
        Enforce upload limits.

        Returns:
            The detected image format, lowercased

        Raises:
            ImageRejectedError: Empty, too large, unreadable or unsupported
        """
        if not image_bytes:
            raise ImageRejectedError("Image is empty")

        max_bytes = self._app_settings.max_upload_size_bytes
        if len(image_bytes) > max_bytes:
            raise ImageRejectedError(
                f"Image is {len(image_bytes) / (1024 * 1024):.1f} MB, "
                f"maximum is {self._app_settings.max_upload_size_mb} MB"
            )

        try:
            with Image.open(BytesIO(image_bytes)) as img:
                detected = (img.format or "").lower()
        except (UnidentifiedImageError, OSError) as e:
            raise ImageRejectedError(f"Not a readable image: {e}")

        allowed = set(self._app_settings.supported_formats_list)
        if not (_FORMAT_ALIASES.get(detected, {detected}) & allowed):
            raise ImageRejectedError(
                f"Unsupported image format '{detected}'. "
                f"Supported: {', '.join(sorted(allowed))}"
            )
        return detected

    def _preprocess(self, image_bytes: bytes) -> Image.Image:
        """Grayscale, boost contrast and sharpen for receipt print."""
        try:
            image = Image.open(BytesIO(image_bytes))
            image = ImageOps.exif_transpose(image)
            image = image.convert("L")
            image = ImageEnhance.Contrast(image).enhance(2.0)
            return image.filter(ImageFilter.SHARPEN)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise RecognitionError(f"Could not prepare image for OCR: {e}")

    def _recognize(self, image: Image.Image) -> tuple[str, float]:
        """
        Run Tesseract once and return (text, mean word confidence).

        image_to_data gives both the words and their confidences, so the
        text is rebuilt line by line from it instead of a second OCR pass.
        """
        data = pytesseract.image_to_data(
            image,
            lang=self._settings.languages,
            config=self._settings.config,
            output_type=pytesseract.Output.DICT,
        )

        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []

        for i, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            try:
                conf = float(data["conf"][i])
            except (KeyError, TypeError, ValueError):
                conf = -1.0
            if not word:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(key, []).append(word)
            if conf >= 0:
                confidences.append(conf)

        text = "\n".join(" ".join(words) for words in lines.values())
        mean_conf = sum(confidences) / len(confidences) if confidences else 0.0
        return text, mean_conf

    async def scan(
        self,
        image_bytes: bytes,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ReceiptDraft:
        """
        Recognize a receipt locally.

        Args:
            image_bytes: Raw image bytes as uploaded
            on_progress: Called with ScanProgress(percent, status)

        Returns:
            ReceiptDraft with source=local

        Raises:
            ImageRejectedError: Upload limits not met
            RecognitionError: Engine missing or crashed
        """
        self.check_image(image_bytes)

        self._emit(on_progress, 0, STATUS_LOADING)
        self._configure()
        self._emit(on_progress, 10, STATUS_INITIALIZING)
        self._emit(on_progress, 20, STATUS_LOADING_LANGUAGES)

        self._emit(on_progress, 25, STATUS_PREPARING_IMAGE)
        image = self._preprocess(image_bytes)

        self._emit(on_progress, 30, STATUS_RECOGNIZING)
        try:
            text, engine_confidence = await asyncio.to_thread(self._recognize, image)
        except pytesseract.TesseractNotFoundError as e:
            raise RecognitionError(f"Tesseract is not installed: {e}")
        except pytesseract.TesseractError as e:
            raise RecognitionError(f"Tesseract failed: {e}")
        except (RuntimeError, OSError) as e:
            raise RecognitionError(f"Local OCR failed: {e}")

        self._emit(on_progress, 90, STATUS_PARSING)
        draft = parse_receipt_text(
            text,
            engine_confidence,
            default_currency=self._app_settings.default_currency,
        )

        self._emit(on_progress, 100, STATUS_DONE)
        return draft
