"""
Tests for the Cloudinary receipt image store.

The SDK calls are replaced; nothing leaves the machine.
"""

import pytest
from uuid import uuid4

import cloudinary.uploader
import cloudinary.utils
import httpx

from pocketledger.config import CloudinarySettings
from pocketledger.services.image import CloudinaryReceiptStore, ImageDownloadError


@pytest.fixture
def blob_store():
    return CloudinaryReceiptStore(CloudinarySettings(
        cloud_name="demo",
        api_key="key",
        api_secret="secret",
        folder="receipts",
    ))


class TestCloudinaryReceiptStore:
    """Tests for upload and signed URLs."""

    @pytest.mark.asyncio
    async def test_upload_is_private_and_per_owner(self, blob_store, monkeypatch):
        """Test uploads are authenticated and placed under the owner."""
        calls = []

        def upload(file, **options):
            calls.append(options)
            return {"public_id": options["public_id"], "format": "png"}

        monkeypatch.setattr(cloudinary.uploader, "upload", upload)
        owner_id = uuid4()

        key = await blob_store.upload(owner_id, b"image-bytes")

        assert key.startswith(f"receipts/{owner_id}/")
        assert key.endswith(".png")
        assert calls[0]["type"] == "authenticated"
        assert calls[0]["overwrite"] is False

    @pytest.mark.asyncio
    async def test_temporary_url_is_signed_with_expiry(self, blob_store, monkeypatch):
        """Test the URL is requested for the stored key with an expiry."""
        calls = []

        def private_download_url(public_id, fmt, **options):
            calls.append((public_id, fmt, options))
            return f"https://api.cloudinary.com/{public_id}.{fmt}?signed"

        monkeypatch.setattr(cloudinary.utils, "private_download_url", private_download_url)

        url = await blob_store.create_temporary_url("receipts/u/abc_123.png", 3600)

        assert url == "https://api.cloudinary.com/receipts/u/abc_123.png?signed"
        public_id, fmt, options = calls[0]
        assert (public_id, fmt) == ("receipts/u/abc_123", "png")
        assert options["type"] == "authenticated"
        assert options["expires_at"] > 3600

    @pytest.mark.asyncio
    async def test_download_returns_image_bytes(self, blob_store, monkeypatch):
        """Test a signed URL is fetched back as bytes."""
        requested = []

        def handler(request):
            requested.append(str(request.url))
            return httpx.Response(200, content=b"image-bytes")

        _route_http(monkeypatch, handler)

        assert await blob_store.download("https://api.cloudinary.com/r.png?signed") == b"image-bytes"
        assert requested == ["https://api.cloudinary.com/r.png?signed"]

    @pytest.mark.asyncio
    async def test_download_error_status(self, blob_store, monkeypatch):
        """Test an expired or missing image raises ImageDownloadError."""
        _route_http(monkeypatch, lambda request: httpx.Response(404))

        with pytest.raises(ImageDownloadError):
            await blob_store.download("https://api.cloudinary.com/gone.png")


def _route_http(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def client(**options):
        return real_client(transport=httpx.MockTransport(handler), **options)

    monkeypatch.setattr(httpx, "AsyncClient", client)
