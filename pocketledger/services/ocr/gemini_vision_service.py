"""
Remote Vision OCR Service using Gemini

DESIGN DECISION: Gemini is only the FALLBACK recognizer because:
1. Every call costs money and counts against a quota
2. It reads messy receipts (crumpled, angled, handwritten totals) far
   better than Tesseract
3. It returns the same structured draft, so the rest of the pipeline
   does not care which recognizer ran

This service handles:
1. Sending the receipt image plus a JSON-only prompt
2. Stripping markdown fences and parsing the JSON answer
3. Coercing the answer into a ReceiptDraft (quantities 1-99, Decimals)
4. Classifying failures: quota_exceeded, payment_required, other

CRITICAL: Every failure leaves this service as RemoteVisionError.
The orchestrator relies on that to fall back to the local draft.
"""

import asyncio
import json
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import BytesIO
from typing import Any, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from PIL import Image, UnidentifiedImageError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from pocketledger.config import GeminiSettings, get_settings
from pocketledger.models.receipt import (
    DraftSource,
    FallbackFailureReason,
    ReceiptDraft,
    ReceiptItemDraft,
)
from pocketledger.services.ocr.tesseract_service import OCRError


RECEIPT_PROMPT = """Sen uzman bir fiş/fatura OCR ve ürün analiz asistanısın. Verilen fiş görüntüsünden TÜM ürünleri tespit et ve detaylı bilgi çıkar.

ZORUNLU: Aşağıdaki JSON formatında yanıt ver:
{
  "amount": number (toplam tutar, sadece sayı),
  "category": string (kategori: "Market", "Faturalar", "Ulaşım", "Eğlence", "Sağlık", "Giyim", "Kira", "Diğer"),
  "description": string (mağaza/şirket adı),
  "currency": string ("TRY", "USD", veya "EUR"),
  "date": string (tarih YYYY-MM-DD, bulunamazsa null),
  "confidence": number (0-100 güven skoru),
  "items": [
    {
      "name": string (ürün adı - okunabilir formatta),
      "quantity": number (adet/miktar - SADECE 1-99 arası tam sayı),
      "unit_price": number (birim fiyat),
      "total_price": number (toplam fiyat),
      "category": string (ürün kategorisi),
      "brand": string (marka, bulunamazsa null)
    }
  ]
}

MİKTAR (quantity) KURALLARI:
- Miktar SADECE açıkça belirtilmişse (örn: "3 x 25.00", "Adet: 5") kullan
- Miktar belirtilmemişse 1 olarak ayarla
- Ürün adındaki sayılar miktar değildir ("Kahve 250g", "Su 1.5lt", "Magnolya 510" -> 1)
- 100 veya üzeri sayılar ASLA miktar olamaz

Para birimi TL/₺/TRY ise "TRY" kullan.
SADECE JSON döndür, başka metin ekleme."""

SUPPORTED_CURRENCIES = {"TRY", "USD", "EUR"}

_FENCE = re.compile(r"```(?:json)?\s*|\s*```", re.I)

# Transient server-side failures worth one more try
_TRANSIENT_ERRORS = (
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
)


class RemoteVisionError(OCRError):
    """The vision fallback did not produce a draft."""

    def __init__(self, reason: FallbackFailureReason, message: str):
        self.reason = reason
        super().__init__(message)


def classify_failure(error: BaseException) -> FallbackFailureReason:
    """Map an SDK/transport error onto a fallback failure reason."""
    if isinstance(error, RemoteVisionError):
        return error.reason
    if isinstance(error, (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)):
        return FallbackFailureReason.QUOTA_EXCEEDED

    code = getattr(error, "code", None)
    if code == 429:
        return FallbackFailureReason.QUOTA_EXCEEDED
    if code == 402:
        return FallbackFailureReason.PAYMENT_REQUIRED

    message = str(error).lower()
    if any(term in message for term in ("quota", "rate limit", "429")):
        return FallbackFailureReason.QUOTA_EXCEEDED
    if any(term in message for term in ("billing", "payment required", "402")):
        return FallbackFailureReason.PAYMENT_REQUIRED
    return FallbackFailureReason.OTHER


def strip_code_fences(text: str) -> str:
    return _FENCE.sub("", text).strip()


def _safe_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).replace(",", ".")).quantize(Decimal("0.01"))
    except (InvalidOperation, TypeError, ValueError):
        return None


def _safe_date(value: Any) -> Optional[date]:
    if not value or not isinstance(value, str):
        return None
    for fmt in ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y"):
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    return None


def _safe_quantity(value: Any) -> int:
    """Integer 1-99; anything else (gram weights, product codes) is 1."""
    try:
        quantity = int(float(value))
    except (TypeError, ValueError):
        return 1
    return quantity if 1 <= quantity <= 99 else 1


def _optional_text(value: Any, max_length: int = 100) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text[:max_length] or None


def coerce_items(raw_items: Any) -> list[ReceiptItemDraft]:
    """Build item drafts, skipping entries without a name or a price."""
    items: list[ReceiptItemDraft] = []
    if not isinstance(raw_items, list):
        return items

    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        name = _optional_text(raw.get("name"))
        if not name:
            continue

        quantity = _safe_quantity(raw.get("quantity", 1))
        unit_price = _safe_decimal(raw.get("unit_price"))
        total_price = _safe_decimal(raw.get("total_price"))
        if total_price is None and unit_price is not None:
            total_price = unit_price * quantity
        if total_price is None or total_price < 0:
            continue
        if unit_price is not None and unit_price < 0:
            unit_price = None

        items.append(ReceiptItemDraft(
            name=name,
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            category=_optional_text(raw.get("category")),
            brand=_optional_text(raw.get("brand")),
        ))
    return items


def coerce_draft(data: dict, default_currency: str = "TRY") -> ReceiptDraft:
    """Turn the model's JSON object into a remote ReceiptDraft."""
    amount = _safe_decimal(data.get("amount")) or Decimal("0.00")
    currency = str(data.get("currency") or default_currency).strip().upper()
    if currency not in SUPPORTED_CURRENCIES:
        currency = default_currency

    try:
        confidence = int(float(data.get("confidence", 0)))
    except (TypeError, ValueError):
        confidence = 0

    return ReceiptDraft(
        amount=max(amount, Decimal("0.00")),
        currency=currency,
        category=_optional_text(data.get("category")) or "Diğer",
        description=_optional_text(data.get("description"), max_length=500) or "",
        date=_safe_date(data.get("date")),
        confidence=max(0, min(100, confidence)),
        items=coerce_items(data.get("items")),
        source=DraftSource.REMOTE,
    )


def parse_response_text(text: str, default_currency: str = "TRY") -> ReceiptDraft:
    """
    Parse the raw model answer.

    Raises:
        RemoteVisionError: reason=other when the answer is not a JSON object
    """
    cleaned = strip_code_fences(text or "")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        # Some answers wrap the object in prose despite the prompt
        start = cleaned.find("{")
        end = cleaned.rfind("}") + 1
        if start < 0 or end <= start:
            raise RemoteVisionError(FallbackFailureReason.OTHER, "Failed to parse receipt data")
        try:
            data = json.loads(cleaned[start:end])
        except json.JSONDecodeError:
            raise RemoteVisionError(FallbackFailureReason.OTHER, "Failed to parse receipt data")

    if not isinstance(data, dict):
        raise RemoteVisionError(FallbackFailureReason.OTHER, "Receipt data is not an object")
    return coerce_draft(data, default_currency)


class GeminiVisionService:
    """
    Remote vision fallback adapter.

    BOUNDARIES:
    - NEVER persists anything
    - NEVER called unless the local result was rejected
    - ALWAYS bounded by the configured timeout
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
        default_currency: Optional[str] = None,
    ):
        self._settings = settings or get_settings().gemini
        self._model = model
        self._default_currency = default_currency or get_settings().app.default_currency

    def _get_model(self):
        """Get or create the Gemini model."""
        if self._model is None:
            genai.configure(api_key=self._settings.api_key)
            self._model = genai.GenerativeModel(
                model_name=self._settings.model_name,
                generation_config={
                    "temperature": self._settings.temperature,
                    "max_output_tokens": self._settings.max_tokens,
                    "response_mime_type": "application/json",
                },
            )
        return self._model

    @retry(
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        reraise=True,
    )
    async def _generate(self, image: Image.Image) -> str:
        response = await self._get_model().generate_content_async([RECEIPT_PROMPT, image])
        try:
            return response.text
        except ValueError as e:
            # Blocked or empty candidates
            raise RemoteVisionError(FallbackFailureReason.OTHER, f"No response from AI: {e}")

    async def scan(self, image_bytes: bytes) -> ReceiptDraft:
        """
        Recognize a receipt with the vision model.

        Returns:
            ReceiptDraft with source=remote

        Raises:
            RemoteVisionError: Always, for any failure, with a reason
        """
        try:
            image = Image.open(BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise RemoteVisionError(FallbackFailureReason.OTHER, f"Unreadable image: {e}")

        try:
            text = await asyncio.wait_for(
                self._generate(image),
                timeout=self._settings.timeout_seconds,
            )
        except RemoteVisionError:
            raise
        except asyncio.TimeoutError:
            raise RemoteVisionError(
                FallbackFailureReason.OTHER,
                f"Vision call timed out after {self._settings.timeout_seconds}s",
            )
        except Exception as e:
            raise RemoteVisionError(classify_failure(e), f"Vision call failed: {e}")

        if not text:
            raise RemoteVisionError(FallbackFailureReason.OTHER, "No response from AI")
        return parse_response_text(text, self._default_currency)
