"""Shared pytest fixtures for Pocket Ledger tests."""

from decimal import Decimal
from io import BytesIO
from typing import Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from PIL import Image

from pocketledger.config import AppSettings, HeuristicThresholds
from pocketledger.events import EventLogger
from pocketledger.ledger import ItemReconciler, LedgerEngine
from pocketledger.models import (
    Account,
    CreditCard,
    DraftSource,
    LedgerEventType,
    ReceiptDraft,
    ReceiptItemDraft,
    ScanProgress,
)
from pocketledger.services.storage import SQLAlchemyLedgerStore, StorageError


class FakeClock:
    """Monotonic clock the test controls."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingEventLogger(EventLogger):
    """Keeps events in memory instead of writing them."""

    def __init__(self):
        super().__init__("pocketledger.test")
        self.events = []

    def log(self, event):
        self.events.append(event)
        return True

    @property
    def types(self) -> list[LedgerEventType]:
        return [event.event_type for event in self.events]


class FakeLocalService:
    """Stands in for TesseractReceiptService."""

    def __init__(
        self,
        draft: Optional[ReceiptDraft] = None,
        error: Optional[Exception] = None,
        progress: Optional[list[tuple[int, str]]] = None,
    ):
        self.draft = draft
        self.error = error
        self.progress = progress if progress is not None else [(0, "Motor yükleniyor..."), (100, "Tamamlandı")]
        self.calls = 0

    async def scan(self, image_bytes, on_progress=None):
        self.calls += 1
        for percent, status in self.progress:
            if on_progress is not None:
                on_progress(ScanProgress(percent=percent, status=status))
        if self.error is not None:
            raise self.error
        return self.draft


class FakeRemoteService:
    """Stands in for GeminiVisionService."""

    def __init__(self, draft: Optional[ReceiptDraft] = None, error: Optional[BaseException] = None):
        self.draft = draft
        self.error = error
        self.calls = 0

    async def scan(self, image_bytes):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.draft


class FakeBlobStore:
    """In-memory BlobStore."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: dict[str, bytes] = {}

    async def upload(self, owner_id, image_bytes):
        if self.fail:
            raise StorageError("blob store unavailable")
        key = f"receipts/{owner_id}/{len(self.uploads)}.png"
        self.uploads[key] = image_bytes
        return key

    async def create_temporary_url(self, storage_key, ttl_seconds):
        return f"https://blobs.example/{storage_key}?ttl={ttl_seconds}"

    async def download(self, url):
        key = url.removeprefix("https://blobs.example/").split("?", 1)[0]
        if self.fail or key not in self.uploads:
            raise StorageError(f"No image at {url}")
        return self.uploads[key]


def make_draft(**overrides) -> ReceiptDraft:
    """A plausible local draft; override any field."""
    data = {
        "amount": Decimal("150.00"),
        "currency": "TRY",
        "category": "Market",
        "description": "Migros",
        "date": None,
        "confidence": 80,
        "items": [
            ReceiptItemDraft(name="Süt 1lt", total_price=Decimal("40.00")),
            ReceiptItemDraft(name="Ekmek", quantity=2, unit_price=Decimal("10.00"), total_price=Decimal("20.00")),
        ],
        "source": DraftSource.LOCAL,
    }
    data.update(overrides)
    return ReceiptDraft(**data)


def make_image_bytes(fmt: str = "PNG", size: tuple[int, int] = (64, 32)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color="white").save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def thresholds():
    return HeuristicThresholds()


@pytest.fixture
def app_settings():
    return AppSettings()


@pytest.fixture
def image_bytes():
    return make_image_bytes()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def store(tmp_path):
    """SQLAlchemy store on a temporary SQLite file."""
    return SQLAlchemyLedgerStore(f"sqlite:///{tmp_path / 'ledger.db'}", echo=False)


@pytest_asyncio.fixture
async def account(store, user_id):
    return await store.save_account(Account(
        user_id=user_id,
        name="Vadesiz Hesap",
        balance=Decimal("1000.00"),
    ))


@pytest_asyncio.fixture
async def card(store, user_id):
    return await store.save_card(CreditCard(
        user_id=user_id,
        name="Bonus Kart",
        balance=Decimal("500.00"),
        limit=Decimal("20000.00"),
        minimum_payment=Decimal("120.00"),
        due_day=15,
    ))


@pytest.fixture
def events():
    return RecordingEventLogger()


@pytest.fixture
def engine(store, clock, events):
    return LedgerEngine(store, undo_window_seconds=10, clock=clock, event_logger=events)


@pytest.fixture
def item_reconciler(store, events):
    return ItemReconciler(store, events)
