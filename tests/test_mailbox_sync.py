from __future__ import annotations

import threading
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import func, select

from ride_receipts.core.db import SessionLocal
from ride_receipts.modules.extraction.records import ParserPolicy, RawMessage, Vendor
from ride_receipts.modules.extraction.service import ParserConfig, ReceiptParser
from ride_receipts.modules.ingestion.service import sync_receipts
from ride_receipts.modules.receipts.models import Receipt
from ride_receipts.modules.receipts.service import SqlReceiptStore

RECEIVED = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

UBER_TRIP = (
    "Total $23.45\n"
    "Tip $3.00\n"
    "Here's your receipt for October 12, 2024\n"
    "9:10 AM 123 Main St, Philadelphia, PA\n"
    "9:32 AM 55 Market St, Philadelphia, PA\n"
)
UBER_OTHER_TRIP = "Total $9.99\nHere's your receipt for October 13, 2024\n"
LYFT_TRIP = "Ride on March 3, 2025\nTip $1.00\nTotal $17.40\n"


def _msg(msg_id: str, body: str, subject: str = "Your receipt") -> RawMessage:
    return RawMessage(id=msg_id, subject=subject, received_at=RECEIVED, body_text=body)


class _ListSource:
    def __init__(self, messages: dict[Vendor, list[RawMessage]], failing: set[Vendor] = ()):
        self.messages = messages
        self.failing = set(failing)
        self.queried: list[Vendor] = []

    def list_messages(self, vendor: Vendor):
        self.queried.append(vendor)
        if vendor in self.failing:
            raise RuntimeError("mailbox query failed")
        yield from self.messages.get(vendor, [])


def _parser() -> ReceiptParser:
    return ReceiptParser(ParserConfig(policy=ParserPolicy.REGEX_ONLY))


def _never_asked(vendor, count):
    raise AssertionError("ask_continue should not be called")


def _receipt_count(session) -> int:
    return session.scalar(select(func.count()).select_from(Receipt))


def _default_source() -> _ListSource:
    return _ListSource(
        {
            Vendor.UBER: [
                _msg("u-1", UBER_TRIP),
                _msg("u-1-resend", UBER_TRIP),
                _msg("u-2", UBER_OTHER_TRIP),
            ],
            Vendor.LYFT: [_msg("l-1", LYFT_TRIP)],
        }
    )


def test_sync_accepts_new_receipts_and_prechecks_resends():
    phases: list[str] = []
    with SessionLocal() as session:
        summary = sync_receipts(
            source=_default_source(),
            store=SqlReceiptStore(session),
            parser=_parser(),
            ask_continue=_never_asked,
            vendors=[Vendor.UBER, Vendor.LYFT],
            on_progress=lambda p: phases.append(p.phase),
        )

        assert summary.accepted == 3
        assert summary.prechecked == 1
        assert summary.errors == 0
        assert [mid for _, mid in summary.receipts] == ["u-1", "u-2", "l-1"]
        assert _receipt_count(session) == 3

        row = session.scalar(select(Receipt).where(Receipt.message_id == "u-1"))
        assert row.vendor == Vendor.UBER
        assert row.total == Decimal("23.45")
        assert row.start_location["city"] == "Philadelphia"

    assert phases[0] == "starting"
    assert phases[-1] == "complete"
    assert "searching" in phases
    assert phases.count("processing") == 4


def test_second_sync_skips_everything_already_stored():
    with SessionLocal() as session:
        sync_receipts(
            source=_default_source(),
            store=SqlReceiptStore(session),
            parser=_parser(),
            ask_continue=_never_asked,
            vendors=[Vendor.UBER, Vendor.LYFT],
        )

    with SessionLocal() as session:
        summary = sync_receipts(
            source=_default_source(),
            store=SqlReceiptStore(session),
            parser=_parser(),
            ask_continue=_never_asked,
            vendors=[Vendor.UBER, Vendor.LYFT],
        )
        assert summary.accepted == 0
        assert summary.prechecked == 4
        assert _receipt_count(session) == 3


def test_duplicate_run_trips_breaker_and_skips_vendor():
    with SessionLocal() as session:
        store = SqlReceiptStore(session)
        sync_receipts(
            source=_ListSource({Vendor.UBER: [_msg("u-1", UBER_TRIP)]}),
            store=store,
            parser=_parser(),
            ask_continue=_never_asked,
            vendors=[Vendor.UBER],
        )

        asked: list[tuple[Vendor, int]] = []

        def ask(vendor, count):
            asked.append((vendor, count))
            return False

        resends = [_msg(f"r-{i}", UBER_TRIP) for i in range(3)] + [_msg("u-2", UBER_OTHER_TRIP)]
        summary = sync_receipts(
            source=_ListSource({Vendor.UBER: resends, Vendor.LYFT: [_msg("l-1", LYFT_TRIP)]}),
            store=store,
            parser=_parser(),
            ask_continue=ask,
            vendors=[Vendor.UBER, Vendor.LYFT],
            threshold=2,
        )

        assert asked == [(Vendor.UBER, 2)]
        assert summary.abandoned_vendors == [Vendor.UBER]
        assert summary.prechecked == 2
        # The rest of the Uber batch is abandoned; Lyft still runs.
        assert [mid for _, mid in summary.receipts] == ["l-1"]


def test_failing_query_does_not_stop_other_vendors():
    source = _default_source()
    source.failing = {Vendor.UBER}
    phases: list[str] = []
    with SessionLocal() as session:
        summary = sync_receipts(
            source=source,
            store=SqlReceiptStore(session),
            parser=_parser(),
            ask_continue=_never_asked,
            vendors=[Vendor.UBER, Vendor.LYFT],
            on_progress=lambda p: phases.append(p.phase),
        )
    assert summary.errors == 1
    assert summary.accepted == 1
    assert "error" in phases
    assert source.queried == [Vendor.UBER, Vendor.LYFT]


def test_failing_message_does_not_stop_the_batch():
    class _FlakyStore(SqlReceiptStore):
        calls = 0

        def add(self, receipt):
            _FlakyStore.calls += 1
            if _FlakyStore.calls == 1:
                raise RuntimeError("disk full")
            return super().add(receipt)

    with SessionLocal() as session:
        summary = sync_receipts(
            source=_default_source(),
            store=_FlakyStore(session),
            parser=_parser(),
            ask_continue=_never_asked,
            vendors=[Vendor.UBER, Vendor.LYFT],
        )
    assert summary.errors == 1
    assert [mid for _, mid in summary.receipts] == ["u-1-resend", "u-2", "l-1"]


def test_unparseable_messages_count_as_failed():
    source = _ListSource({Vendor.CURB: [_msg("c-1", "Thanks for riding with Curb")]})
    with SessionLocal() as session:
        summary = sync_receipts(
            source=source,
            store=SqlReceiptStore(session),
            parser=_parser(),
            ask_continue=_never_asked,
            vendors=[Vendor.CURB],
        )
    assert summary.failed == 1
    assert summary.accepted == 0


def test_cancel_stops_between_messages():
    cancel = threading.Event()

    def on_progress(progress):
        if progress.phase == "processing" and progress.current == 1:
            cancel.set()

    source = _default_source()
    with SessionLocal() as session:
        summary = sync_receipts(
            source=source,
            store=SqlReceiptStore(session),
            parser=_parser(),
            ask_continue=_never_asked,
            vendors=[Vendor.UBER, Vendor.LYFT],
            cancel=cancel,
            on_progress=on_progress,
        )
    assert summary.cancelled is True
    assert summary.accepted == 1
    assert source.queried == [Vendor.UBER]


def test_limit_caps_messages_per_vendor():
    with SessionLocal() as session:
        summary = sync_receipts(
            source=_default_source(),
            store=SqlReceiptStore(session),
            parser=_parser(),
            ask_continue=_never_asked,
            vendors=[Vendor.UBER, Vendor.LYFT],
            limit=1,
        )
    assert [mid for _, mid in summary.receipts] == ["u-1", "l-1"]


def test_messages_listed_before_a_source_failure_are_kept():
    class _BrokenSource:
        def list_messages(self, vendor):
            yield _msg("u-1", UBER_TRIP)
            raise OSError("connection reset")

    with SessionLocal() as session:
        summary = sync_receipts(
            source=_BrokenSource(),
            store=SqlReceiptStore(session),
            parser=_parser(),
            ask_continue=_never_asked,
            vendors=[Vendor.UBER],
        )
    assert summary.errors == 1
    assert [mid for _, mid in summary.receipts] == ["u-1"]
