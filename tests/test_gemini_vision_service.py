"""
Tests for the Gemini vision fallback.

A fake model stands in for google.generativeai.GenerativeModel.
"""

import asyncio
import json
import pytest
from datetime import date
from decimal import Decimal

from google.api_core import exceptions as google_exceptions

from pocketledger.config import GeminiSettings
from pocketledger.models import DraftSource, FallbackFailureReason
from pocketledger.services.ocr import GeminiVisionService, RemoteVisionError, classify_failure
from pocketledger.services.ocr.gemini_vision_service import (
    coerce_items,
    parse_response_text,
    strip_code_fences,
)


REMOTE_ANSWER = {
    "amount": 1599.90,
    "category": "Market",
    "description": "CarrefourSA",
    "currency": "try",
    "date": "2024-03-15",
    "confidence": 92,
    "items": [
        {"name": "Magnolya 510", "quantity": 510, "unit_price": 89.90, "total_price": 89.90},
        {"name": "Deterjan", "quantity": 2, "unit_price": 755.00, "total_price": 1510.00},
    ],
}


class FakeResponse:
    def __init__(self, text):
        self._text = text

    @property
    def text(self):
        if isinstance(self._text, Exception):
            raise self._text
        return self._text


class FakeModel:
    """Returns queued answers; exceptions in the queue are raised."""

    def __init__(self, *answers, delay: float = 0.0):
        self.answers = list(answers)
        self.delay = delay
        self.calls = 0

    async def generate_content_async(self, contents):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        answer = self.answers.pop(0)
        if isinstance(answer, BaseException) and not isinstance(answer, ValueError):
            raise answer
        return FakeResponse(answer)


class PaymentRequired(Exception):
    code = 402


def _service(model, timeout: float = 30.0) -> GeminiVisionService:
    return GeminiVisionService(
        settings=GeminiSettings(api_key="test-key", timeout_seconds=timeout),
        model=model,
        default_currency="TRY",
    )


class TestParsing:
    """Tests for answer parsing and coercion."""

    def test_strip_code_fences(self):
        """Test markdown fences around JSON are removed."""
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_parses_remote_draft(self):
        """Test a well-formed answer."""
        draft = parse_response_text(json.dumps(REMOTE_ANSWER))
        assert draft.source == DraftSource.REMOTE
        assert draft.amount == Decimal("1599.90")
        assert draft.currency == "TRY"
        assert draft.date == date(2024, 3, 15)
        assert draft.confidence == 92

    def test_product_codes_are_not_quantities(self):
        """Test out-of-range quantities become 1."""
        draft = parse_response_text(json.dumps(REMOTE_ANSWER))
        assert [item.quantity for item in draft.items] == [1, 2]

    def test_object_inside_prose(self):
        """Test an object wrapped in explanation text is still found."""
        text = 'Here is the data: {"amount": "45,50", "description": "BIM"} thanks'
        draft = parse_response_text(text)
        assert draft.amount == Decimal("45.50")
        assert draft.description == "BIM"

    def test_unknown_currency_uses_default(self):
        """Test unsupported currencies fall back to the default."""
        draft = parse_response_text('{"amount": 10, "currency": "GBP"}', default_currency="EUR")
        assert draft.currency == "EUR"

    def test_confidence_is_clamped(self):
        """Test confidence is kept within 0-100."""
        assert parse_response_text('{"amount": 10, "confidence": 150}').confidence == 100
        assert parse_response_text('{"amount": 10, "confidence": -3}').confidence == 0

    @pytest.mark.parametrize("text", ["not json at all", "[1, 2, 3]", ""])
    def test_unparseable_answer(self, text):
        """Test non-object answers are classified as other."""
        with pytest.raises(RemoteVisionError) as exc_info:
            parse_response_text(text)
        assert exc_info.value.reason == FallbackFailureReason.OTHER

    def test_items_without_name_or_price_skipped(self):
        """Test unusable items are dropped and totals derived."""
        items = coerce_items([
            {"name": "", "total_price": 5},
            {"name": "Ekmek", "quantity": 2, "unit_price": 7.5},
            {"name": "Bilinmeyen"},
            "garbage",
        ])
        assert len(items) == 1
        assert items[0].total_price == Decimal("15.00")


class TestClassifyFailure:
    """Tests for mapping SDK errors to fallback reasons."""

    def test_quota(self):
        """Test quota errors."""
        assert classify_failure(google_exceptions.ResourceExhausted("quota")) == FallbackFailureReason.QUOTA_EXCEEDED
        assert classify_failure(google_exceptions.TooManyRequests("slow down")) == FallbackFailureReason.QUOTA_EXCEEDED

    def test_payment_required(self):
        """Test HTTP 402 and billing messages."""
        assert classify_failure(PaymentRequired("pay")) == FallbackFailureReason.PAYMENT_REQUIRED
        assert classify_failure(RuntimeError("Billing account disabled")) == FallbackFailureReason.PAYMENT_REQUIRED

    def test_other(self):
        """Test everything else."""
        assert classify_failure(ConnectionError("reset")) == FallbackFailureReason.OTHER
        assert classify_failure(google_exceptions.InternalServerError("oops")) == FallbackFailureReason.OTHER

    def test_remote_error_keeps_reason(self):
        """Test an already classified error keeps its reason."""
        error = RemoteVisionError(FallbackFailureReason.PAYMENT_REQUIRED, "x")
        assert classify_failure(error) == FallbackFailureReason.PAYMENT_REQUIRED


class TestScan:
    """Tests for the remote scan."""

    @pytest.mark.asyncio
    async def test_scan_success(self, image_bytes):
        """Test a fenced JSON answer becomes a remote draft."""
        model = FakeModel("```json\n" + json.dumps(REMOTE_ANSWER) + "\n```")
        draft = await _service(model).scan(image_bytes)
        assert draft.source == DraftSource.REMOTE
        assert draft.description == "CarrefourSA"
        assert model.calls == 1

    @pytest.mark.asyncio
    async def test_quota_exhausted(self, image_bytes):
        """Test quota errors are not retried and keep their reason."""
        model = FakeModel(google_exceptions.ResourceExhausted("Quota exceeded"))
        with pytest.raises(RemoteVisionError) as exc_info:
            await _service(model).scan(image_bytes)
        assert exc_info.value.reason == FallbackFailureReason.QUOTA_EXCEEDED
        assert model.calls == 1

    @pytest.mark.asyncio
    async def test_transient_error_retried_once(self, image_bytes):
        """Test a 503 is retried and the second answer used."""
        model = FakeModel(
            google_exceptions.ServiceUnavailable("overloaded"),
            json.dumps(REMOTE_ANSWER),
        )
        draft = await _service(model).scan(image_bytes)
        assert draft.amount == Decimal("1599.90")
        assert model.calls == 2

    @pytest.mark.asyncio
    async def test_blocked_response(self, image_bytes):
        """Test a response without text is classified as other."""
        model = FakeModel(ValueError("response was blocked"))
        with pytest.raises(RemoteVisionError) as exc_info:
            await _service(model).scan(image_bytes)
        assert exc_info.value.reason == FallbackFailureReason.OTHER

    @pytest.mark.asyncio
    async def test_empty_answer(self, image_bytes):
        """Test an empty answer is classified as other."""
        with pytest.raises(RemoteVisionError, match="No response"):
            await _service(FakeModel("")).scan(image_bytes)

    @pytest.mark.asyncio
    async def test_timeout(self, image_bytes):
        """Test the call is bounded by the configured timeout."""
        model = FakeModel("{}", delay=5.0)
        with pytest.raises(RemoteVisionError, match="timed out") as exc_info:
            await _service(model, timeout=0.05).scan(image_bytes)
        assert exc_info.value.reason == FallbackFailureReason.OTHER

    @pytest.mark.asyncio
    async def test_unreadable_image(self):
        """Test the model is not called for bytes that are not an image."""
        model = FakeModel("{}")
        with pytest.raises(RemoteVisionError, match="Unreadable image"):
            await _service(model).scan(b"not an image")
        assert model.calls == 0
