"""
Quota ledger tests: ceiling enforcement, settlement and period rollover.
"""
import threading
from datetime import datetime

import pytest

from aerocore import config
from aerocore.errors import InvalidStateTransition, QuotaExceeded
from aerocore.quota import QuotaLedger, month_window

ACCOUNT = "acct-q"


@pytest.fixture
def ledger(store, quota):
    store.ensure_account(ACCOUNT)
    return quota


def test_month_window_wraps_december():
    start, end = month_window(datetime(2025, 12, 31, 23, 59))
    assert start == datetime(2025, 12, 1)
    assert end == datetime(2026, 1, 1)


def test_basic_plan_ceiling(ledger):
    tokens = [ledger.reserve(ACCOUNT) for _ in range(5)]
    with pytest.raises(QuotaExceeded) as exc:
        ledger.reserve(ACCOUNT)
    assert exc.value.period_end == "2026-03-01T00:00:00"
    for t in tokens:
        ledger.commit(t)
    status = ledger.status(ACCOUNT)
    assert status["consumed"] == 5
    assert status["reserved"] == 0
    assert status["remaining"] == 0


def test_release_returns_the_slot(ledger):
    token = ledger.reserve(ACCOUNT)
    assert ledger.status(ACCOUNT)["reserved"] == 1
    ledger.release(token)
    status = ledger.status(ACCOUNT)
    assert status["reserved"] == 0
    assert status["consumed"] == 0
    assert status["remaining"] == 5


def test_token_settles_once(ledger):
    token = ledger.reserve(ACCOUNT)
    ledger.commit(token)
    with pytest.raises(InvalidStateTransition):
        ledger.release(token)
    with pytest.raises(InvalidStateTransition):
        ledger.commit(token)
    assert ledger.status(ACCOUNT)["consumed"] == 1


def test_plan_sets_ceiling(store, ledger):
    store.set_plan(ACCOUNT, "pilot")
    assert ledger.status(ACCOUNT)["ceiling"] == 25


def test_concurrent_reservations_never_exceed_ceiling(store, db_path, clock, monkeypatch):
    monkeypatch.setitem(config.PLAN_CEILINGS, "BASIC", 10)
    store.ensure_account(ACCOUNT)
    ledger = QuotaLedger(db_path, clock=clock)
    granted, refused = [], []
    guard = threading.Lock()
    barrier = threading.Barrier(20)

    def worker():
        barrier.wait()
        try:
            token = ledger.reserve(ACCOUNT)
        except QuotaExceeded:
            with guard:
                refused.append(1)
            return
        ledger.commit(token)
        with guard:
            granted.append(token)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(granted) == 10
    assert len(refused) == 10
    assert ledger.status(ACCOUNT)["consumed"] == 10


def test_new_month_resets_counters(ledger, clock):
    for _ in range(5):
        ledger.commit(ledger.reserve(ACCOUNT))
    with pytest.raises(QuotaExceeded):
        ledger.reserve(ACCOUNT)

    clock.now = datetime(2026, 3, 1, 0, 0, 1)
    status = ledger.status(ACCOUNT)
    assert status["consumed"] == 0
    assert status["period_start"] == "2026-03-01T00:00:00"
    ledger.reserve(ACCOUNT)


def test_pending_reservation_survives_rollover(ledger, clock):
    token = ledger.reserve(ACCOUNT)
    clock.now = datetime(2026, 3, 2)
    ledger.commit(token)
    assert ledger.status(ACCOUNT)["consumed"] == 0


def test_upgrade_takes_effect_mid_period(store, ledger):
    for _ in range(5):
        ledger.commit(ledger.reserve(ACCOUNT))
    with pytest.raises(QuotaExceeded):
        ledger.reserve(ACCOUNT)

    store.set_plan(ACCOUNT, "PILOT")
    ledger.commit(ledger.reserve(ACCOUNT))
    status = ledger.status(ACCOUNT)
    assert status["ceiling"] == 25
    assert status["consumed"] == 6


def test_downgrade_never_drops_below_usage(store, ledger):
    store.set_plan(ACCOUNT, "PILOT")
    for _ in range(7):
        ledger.commit(ledger.reserve(ACCOUNT))
    pending = ledger.reserve(ACCOUNT)

    store.set_plan(ACCOUNT, "BASIC")
    status = ledger.status(ACCOUNT)
    assert status["ceiling"] == 8
    assert status["remaining"] == 0
    with pytest.raises(QuotaExceeded):
        ledger.reserve(ACCOUNT)
    ledger.release(pending)
    with pytest.raises(QuotaExceeded):
        ledger.reserve(ACCOUNT)
