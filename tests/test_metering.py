"""Tests for the usage gate."""

from __future__ import annotations

import threading

import pytest

from workstream_engine.metering import InsufficientCreditsError, MeteringGate, UnknownUserError
from workstream_engine.store import WorkstreamStore


def test_metered_user_is_charged_and_ledgered(store):
    reservation = MeteringGate(store, cost=1).reserve("user-1")

    assert reservation.charged == 1
    assert reservation.remaining == 4
    assert store.get_user("user-1")["credits"] == 4
    [entry] = store.ledger_entries("user-1")
    assert entry["amount"] == -1
    assert entry["remaining"] == 4


def test_insufficient_credits_reports_required_and_available(store):
    store.create_user("broke", credits=0)
    with pytest.raises(InsufficientCreditsError) as excinfo:
        MeteringGate(store, cost=1).reserve("broke")
    assert excinfo.value.required == 1
    assert excinfo.value.available == 0
    assert store.ledger_entries("broke") == []


@pytest.mark.parametrize("level", ["paid", "demo"])
def test_unlimited_levels_pass_free(store, level):
    store.create_user("vip", level=level, credits=0)
    reservation = MeteringGate(store).reserve("vip")
    assert reservation.unlimited is True
    assert store.get_user("vip")["credits"] == 0


def test_unknown_user_is_rejected(store):
    with pytest.raises(UnknownUserError):
        MeteringGate(store).reserve("nobody")


def test_ledger_failure_does_not_fail_the_charge(store, monkeypatch):
    def _boom(**kwargs):
        raise RuntimeError("ledger offline")

    monkeypatch.setattr(store, "record_ledger_entry", _boom)
    reservation = MeteringGate(store).reserve("user-1")
    assert reservation.remaining == 4


def test_concurrent_reservations_spend_the_last_credit_once(tmp_path):
    path = tmp_path / "credits.sqlite3"
    with WorkstreamStore(path=path) as setup:
        setup.create_user("user-1", credits=1)

    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def _reserve() -> None:
        with WorkstreamStore(path=path) as store:
            gate = MeteringGate(store, cost=1)
            barrier.wait()
            try:
                gate.reserve("user-1")
                result = "ok"
            except InsufficientCreditsError:
                result = "insufficient"
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_reserve) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["insufficient", "ok"]
    with WorkstreamStore(path=path) as check:
        assert check.get_user("user-1")["credits"] == 0
