from __future__ import annotations

import pytest

from ride_receipts.modules.extraction.records import Vendor
from ride_receipts.modules.ingestion.breaker import IngestionCircuitBreaker, fixed_decision


def _recorder(answer: bool):
    calls: list[tuple[Vendor, int]] = []

    def ask(vendor: Vendor, count: int) -> bool:
        calls.append((vendor, count))
        return answer

    return ask, calls


def test_ten_duplicates_ask_once_and_continue_resets():
    ask, calls = _recorder(True)
    breaker = IngestionCircuitBreaker(Vendor.UBER, ask, threshold=10)

    for _ in range(10):
        assert breaker.record_duplicate() is True
    assert calls == [(Vendor.UBER, 10)]
    assert breaker.consecutive_duplicates == 0

    # The 11th duplicate starts a fresh run instead of re-triggering.
    assert breaker.record_duplicate() is True
    assert len(calls) == 1
    assert breaker.consecutive_duplicates == 1
    assert breaker.state.paused is False


def test_skip_abandons_the_batch():
    ask, calls = _recorder(False)
    breaker = IngestionCircuitBreaker(Vendor.AMTRAK, ask, threshold=3)

    assert breaker.record_duplicate() is True
    assert breaker.record_duplicate() is True
    assert breaker.record_duplicate() is False
    assert breaker.abandoned
    assert breaker.record_duplicate() is False
    assert calls == [(Vendor.AMTRAK, 3)]


def test_accepted_record_resets_the_counter():
    ask, calls = _recorder(False)
    breaker = IngestionCircuitBreaker(Vendor.LYFT, ask, threshold=10)

    for _ in range(9):
        breaker.record_duplicate()
    breaker.record_accepted()
    for _ in range(9):
        breaker.record_duplicate()

    assert calls == []
    assert breaker.consecutive_duplicates == 9
    assert not breaker.abandoned


def test_threshold_must_be_positive():
    with pytest.raises(ValueError):
        IngestionCircuitBreaker(Vendor.UBER, lambda v, c: True, threshold=0)


def test_fixed_decision():
    assert fixed_decision("continue")(Vendor.UBER, 10) is True
    assert fixed_decision("skip")(Vendor.UBER, 10) is False
