"""
Content fingerprints and duplicate detection for parsed receipts.

The same trip routinely arrives more than once (re-sent receipts, forwarded copies,
overlapping mailbox labels), sometimes with a cent of rounding drift or with the
addresses missing. Two checks run against the already-accepted records:

1. Exact: identical content fingerprint.
2. Fuzzy: same vendor, same day, totals within a cent tolerance, and no conflicting
   start/end city. A city missing on either side never blocks a match.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from dataclasses import replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

from ride_receipts.modules.extraction.grammars import quick_fields, record_date
from ride_receipts.modules.extraction.records import Location, ParsedReceipt, Vendor

DEFAULT_TOLERANCE_CENTS = 1


def to_cents(amount: Decimal | float | int | str | None) -> int:
    if amount is None:
        return 0
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def fingerprint(record: ParsedReceipt) -> str:
    start = record.start_location or Location(country=None)
    end = record.end_location or Location(country=None)
    canonical = {
        "vendor": _vendor_value(record.vendor),
        "date": _day(record.date).isoformat(),
        "total_cents": to_cents(record.total),
        "tip_cents": to_cents(record.tip),
        "start_city": start.city,
        "start_state": start.state,
        "end_city": end.city,
        "end_state": end.state,
        "start_time": record.start_time,
        "end_time": record.end_time,
    }
    raw = json.dumps(canonical, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def with_fingerprint(record: ParsedReceipt) -> ParsedReceipt:
    return replace(record, content_fingerprint=fingerprint(record))


class KnownRecords:
    """
    Index over previously accepted receipts.

    The pipeline only reads it; the batch runner calls add() after a record is
    accepted so later messages in the same run see it.
    """

    def __init__(self, records: Iterable[ParsedReceipt] = ()) -> None:
        self._fingerprints: set[str] = set()
        self._by_day: dict[tuple[str, date], list[ParsedReceipt]] = {}
        self._count = 0
        for record in records:
            self.add(record)

    def __len__(self) -> int:
        return self._count

    def add(self, record: ParsedReceipt) -> None:
        self._fingerprints.add(record.content_fingerprint or fingerprint(record))
        key = (_vendor_value(record.vendor), _day(record.date))
        self._by_day.setdefault(key, []).append(record)
        self._count += 1

    def has_fingerprint(self, value: str) -> bool:
        return value in self._fingerprints

    def same_day(self, vendor: Vendor | str, day: date) -> list[ParsedReceipt]:
        return self._by_day.get((_vendor_value(vendor), _day(day)), [])


def is_duplicate(
    candidate: ParsedReceipt,
    known: KnownRecords | Iterable[ParsedReceipt],
    *,
    tolerance_cents: int = DEFAULT_TOLERANCE_CENTS,
) -> bool:
    index = known if isinstance(known, KnownRecords) else KnownRecords(known)

    if index.has_fingerprint(candidate.content_fingerprint or fingerprint(candidate)):
        return True

    cents = to_cents(candidate.total)
    for existing in index.same_day(candidate.vendor, candidate.date):
        if abs(cents - to_cents(existing.total)) > tolerance_cents:
            continue
        if not _cities_compatible(
            _city(candidate.start_location), _city(existing.start_location)
        ):
            continue
        if not _cities_compatible(_city(candidate.end_location), _city(existing.end_location)):
            continue
        return True
    return False


def precheck_duplicate(
    text: str,
    vendor: Vendor,
    *,
    subject: str,
    received_at: datetime,
    known: KnownRecords,
    tolerance_cents: int = DEFAULT_TOLERANCE_CENTS,
) -> bool:
    """Likely-duplicate test on raw text: total and date only, no grammar run, no AI."""
    quick = quick_fields(vendor, text, subject)
    if quick is None:
        return False
    total, tx_date = quick
    day = record_date(vendor, text, subject, tx_date, received_at)
    cents = to_cents(total)
    return any(
        abs(cents - to_cents(existing.total)) <= tolerance_cents
        for existing in known.same_day(vendor, day)
    )


def _cities_compatible(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return True
    return a.casefold() == b.casefold()


def _city(location: Location | None) -> str | None:
    if location is None or not location.city:
        return None
    return location.city.strip() or None


def _vendor_value(vendor: Vendor | str) -> str:
    return vendor.value if isinstance(vendor, Vendor) else str(vendor)


def _day(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value
