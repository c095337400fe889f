import os
import tempfile
import threading
from datetime import datetime

import pytest

# point the default database at a scratch dir before aerocore is imported
os.environ.setdefault("DB_DIR", tempfile.mkdtemp(prefix="aerocore-tests-"))
os.environ.setdefault("OPENAI_API_KEY", "")

from aerocore.db import init_db  # noqa: E402
from aerocore.errors import ExtractionFailed  # noqa: E402
from aerocore.quota import QuotaLedger  # noqa: E402
from aerocore.records import MaintenanceRecordStore  # noqa: E402
from aerocore.scans import ScanLifecycleManager  # noqa: E402

ACCOUNT = "acct-1"

MAINTENANCE_PAYLOAD = {
    "date": "2025-03-10",
    "ame_name": "J. Tremblay",
    "ame_license": "AME-1234",
    "amo_name": "North Aero",
    "work_order_number": "WO-77",
    "description": "100 hour inspection",
    "airframe_hours": 2450.5,
    "engine_hours": 1210,
    "ad_sb_references": [
        {"adsb_type": "AD", "reference_number": "CF-2024-01", "status": "complied"},
    ],
    "parts_replaced": [
        {"part_number": "PN-100", "name": "Oil filter", "serial_number": "SN-1", "quantity": 1, "price": 45},
    ],
    "stc_references": [
        {"stc_number": "SA01234", "title": "LED landing light"},
    ],
    "confidence": {"date": 0.98, "description": 0.7},
}


class FakeClock:
    def __init__(self, now=datetime(2026, 2, 1, 12, 0, 0)):
        self.now = now

    def __call__(self):
        return self.now


class FakeExtractor:
    """Returns a canned payload, or raises / blocks when told to."""

    def __init__(self, payload=None, error=None, delay=None):
        self.payload = MAINTENANCE_PAYLOAD if payload is None else payload
        self.error = error
        self.delay = delay
        self.calls = 0
        self.release = threading.Event()

    def extract(self, image, document_type_hint):
        self.calls += 1
        if self.delay is not None:
            self.release.wait(self.delay)
        if self.error is not None:
            raise self.error
        return self.payload


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "aerocore.sqlite"
    init_db(path)
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(db_path):
    return MaintenanceRecordStore(db_path)


@pytest.fixture
def quota(db_path, clock):
    return QuotaLedger(db_path, clock=clock)


@pytest.fixture
def aircraft(store):
    return store.create_aircraft(ACCOUNT, "c-gabc", "Cessna 172", hours={"engine_hours": 1200})


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def manager(store, quota, extractor, clock):
    return ScanLifecycleManager(store, quota, extractor, clock=clock, extraction_timeout=2)


@pytest.fixture
def failing_extractor():
    return FakeExtractor(error=ExtractionFailed("unreadable image"))
