from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

from ride_receipts.modules.extraction.dates import reconcile_date

RECEIVED = datetime(2025, 1, 5, 14, 30, tzinfo=UTC)


def test_recent_past_date_is_unchanged():
    assert reconcile_date(date(2024, 12, 28), RECEIVED) == date(2024, 12, 28)
    assert reconcile_date(date(2025, 1, 5), RECEIVED) == date(2025, 1, 5)


def test_future_date_moves_to_previous_year_across_new_year():
    # "October 12" parsed with the current year while the message arrived in January.
    assert reconcile_date(date(2025, 10, 12), RECEIVED) == date(2024, 10, 12)


def test_future_date_within_received_year():
    received = datetime(2025, 11, 20, tzinfo=UTC)
    assert reconcile_date(date(2026, 3, 1), received) == date(2025, 3, 1)


def test_stale_date_is_pulled_forward():
    assert reconcile_date(date(2019, 12, 1), RECEIVED) == date(2024, 12, 1)
    assert reconcile_date(date(2019, 1, 2), RECEIVED) == date(2025, 1, 2)


def test_leap_day_clamps_in_non_leap_year():
    received = datetime(2025, 3, 10, tzinfo=UTC)
    assert reconcile_date(date(2028, 2, 29), received) == date(2025, 2, 28)


def test_never_after_received_and_idempotent():
    candidates = [
        RECEIVED.date() + timedelta(days=offset)
        for offset in (-900, -400, -366, -365, -30, -1, 0, 1, 30, 200, 400, 800)
    ]
    for candidate in candidates:
        once = reconcile_date(candidate, RECEIVED)
        assert once <= RECEIVED.date()
        assert reconcile_date(once, RECEIVED) == once


def test_accepts_datetime_candidate_and_date_received():
    assert reconcile_date(datetime(2025, 10, 12, 9, 0), date(2025, 1, 5)) == date(2024, 10, 12)
