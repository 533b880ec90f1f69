"""
Tests for the local Tesseract recognizer.

pytesseract.image_to_data is replaced, so no tesseract binary is needed.
"""

import pytest
from decimal import Decimal

import pytesseract

from pocketledger.config import AppSettings, TesseractSettings
from pocketledger.models import DraftSource
from pocketledger.services.ocr import ImageRejectedError, RecognitionError, TesseractReceiptService
from pocketledger.services.ocr.tesseract_service import STATUS_DONE, STATUS_LOADING

from tests.conftest import make_image_bytes


def _ocr_data(lines: list[list[str]], conf: float = 88.0) -> dict:
    """image_to_data output for the given lines of words."""
    data = {"text": [], "conf": [], "block_num": [], "par_num": [], "line_num": []}
    for line_num, words in enumerate(lines, start=1):
        # Tesseract emits an empty line-level row before the words
        data["text"].append("")
        data["conf"].append(-1)
        data["block_num"].append(1)
        data["par_num"].append(1)
        data["line_num"].append(line_num)
        for word in words:
            data["text"].append(word)
            data["conf"].append(conf)
            data["block_num"].append(1)
            data["par_num"].append(1)
            data["line_num"].append(line_num)
    return data


RECEIPT_LINES = [
    ["MIGROS", "TICARET", "A.S."],
    ["Tarih:", "15/03/2024"],
    ["SÜT", "1LT", "25,50"],
    ["TOPLAM:", "25,50"],
]


@pytest.fixture
def service():
    return TesseractReceiptService(settings=TesseractSettings(), app_settings=AppSettings())


@pytest.fixture
def fake_tesseract(monkeypatch):
    """Replace the engine call; returns the list of calls."""
    calls = []

    def image_to_data(image, lang=None, config=None, output_type=None):
        calls.append({"mode": image.mode, "lang": lang})
        return _ocr_data(RECEIPT_LINES)

    monkeypatch.setattr(pytesseract, "image_to_data", image_to_data)
    return calls


class TestCheckImage:
    """Tests for upload limits."""

    def test_accepts_png(self, service):
        """Test a PNG passes."""
        assert service.check_image(make_image_bytes("PNG")) == "png"

    def test_accepts_jpeg(self, service):
        """Test JPEG is accepted under its jpg/jpeg names."""
        assert service.check_image(make_image_bytes("JPEG")) == "jpeg"

    def test_rejects_empty(self, service):
        """Test empty uploads."""
        with pytest.raises(ImageRejectedError, match="empty"):
            service.check_image(b"")

    def test_rejects_too_large(self):
        """Test the size limit is checked before decoding."""
        service = TesseractReceiptService(
            settings=TesseractSettings(),
            app_settings=AppSettings(max_upload_size_mb=1),
        )
        with pytest.raises(ImageRejectedError, match="maximum is 1 MB"):
            service.check_image(b"x" * (1024 * 1024 + 1))

    def test_rejects_non_image(self, service):
        """Test bytes that are not an image."""
        with pytest.raises(ImageRejectedError, match="Not a readable image"):
            service.check_image(b"definitely not an image")

    def test_rejects_unsupported_format(self, service):
        """Test a readable but unsupported format."""
        with pytest.raises(ImageRejectedError, match="Unsupported image format 'gif'"):
            service.check_image(make_image_bytes("GIF"))


class TestScan:
    """Tests for the local scan."""

    @pytest.mark.asyncio
    async def test_scan_builds_local_draft(self, service, fake_tesseract, image_bytes):
        """Test text is rebuilt line by line and parsed."""
        draft = await service.scan(image_bytes)

        assert draft.source == DraftSource.LOCAL
        assert draft.amount == Decimal("25.50")
        assert draft.description == "Migros"
        assert [item.name for item in draft.items] == ["SÜT 1LT"]
        assert fake_tesseract == [{"mode": "L", "lang": "tur+eng"}]

    @pytest.mark.asyncio
    async def test_progress_is_ordered(self, service, fake_tesseract, image_bytes):
        """Test progress goes from 0 to 100 in order."""
        progress = []
        await service.scan(image_bytes, on_progress=progress.append)

        percents = [p.percent for p in progress]
        assert percents == [0, 10, 20, 25, 30, 90, 100]
        assert progress[0].status == STATUS_LOADING
        assert progress[-1].status == STATUS_DONE

    @pytest.mark.asyncio
    async def test_callback_error_stops_scan(self, service, fake_tesseract, image_bytes):
        """Test an exception from the callback propagates unchanged."""
        class Stop(Exception):
            pass

        def on_progress(progress):
            if progress.percent == 25:
                raise Stop()

        with pytest.raises(Stop):
            await service.scan(image_bytes, on_progress=on_progress)
        assert fake_tesseract == []

    @pytest.mark.asyncio
    async def test_missing_engine(self, service, monkeypatch, image_bytes):
        """Test a missing tesseract binary is a RecognitionError."""
        def image_to_data(*args, **kwargs):
            raise pytesseract.TesseractNotFoundError()

        monkeypatch.setattr(pytesseract, "image_to_data", image_to_data)
        with pytest.raises(RecognitionError, match="not installed"):
            await service.scan(image_bytes)

    @pytest.mark.asyncio
    async def test_engine_crash(self, service, monkeypatch, image_bytes):
        """Test an engine failure is a RecognitionError."""
        def image_to_data(*args, **kwargs):
            raise RuntimeError("segfault")

        monkeypatch.setattr(pytesseract, "image_to_data", image_to_data)
        with pytest.raises(RecognitionError, match="segfault"):
            await service.scan(image_bytes)

    @pytest.mark.asyncio
    async def test_rejected_image_does_no_work(self, service, fake_tesseract):
        """Test limits are enforced before any progress or OCR."""
        progress = []
        with pytest.raises(ImageRejectedError):
            await service.scan(b"", on_progress=progress.append)
        assert progress == []
        assert fake_tesseract == []
