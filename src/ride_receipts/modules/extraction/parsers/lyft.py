from __future__ import annotations

import re
from decimal import Decimal

from ride_receipts.modules.extraction.address import parse_address
from ride_receipts.modules.extraction.parsers.common import (
    CLOCK_TIME,
    any_amount,
    first_match,
    labelled_amount,
    long_form_date,
    tip_amount,
)
from ride_receipts.modules.extraction.records import Location, ParsedBy, ParsedReceipt, Vendor

TOTAL_CHAIN = (
    labelled_amount("Total"),
    labelled_amount("You paid"),
    labelled_amount("Amount"),
    any_amount,
)
DATE_CHAIN = (long_form_date,)

_PICKUP_RE = re.compile(
    rf"(?:Pickup|Picked up)[:\s]*({CLOCK_TIME})?\s*([^\n]+?)\s*(?=Drop-?off|Dropped|\n|\Z)",
    re.I,
)
_DROPOFF_RE = re.compile(
    rf"(?:Drop-?off|Dropped(?: off)?)[:\s]*({CLOCK_TIME})?\s*([^\n]+?)\s*"
    r"(?=Ride time|Driver|Total|\n|\Z)",
    re.I,
)


def parse_lyft_email(text: str, subject: str = "") -> ParsedReceipt | None:
    try:
        return _parse(text)
    except Exception:
        return None


def _parse(text: str) -> ParsedReceipt | None:
    total = first_match(TOTAL_CHAIN, text)
    if total is None or total <= Decimal("0"):
        return None
    ride_date = first_match(DATE_CHAIN, text)
    if ride_date is None:
        return None

    start_time, start_location = _labelled_stop(_PICKUP_RE, text)
    end_time, end_location = _labelled_stop(_DROPOFF_RE, text)

    return ParsedReceipt(
        vendor=Vendor.LYFT,
        total=total,
        tip=tip_amount(text),
        date=ride_date,
        start_time=start_time,
        end_time=end_time,
        start_location=start_location,
        end_location=end_location,
        parsed_by=ParsedBy.REGEX,
    )


def _labelled_stop(pattern: re.Pattern, text: str) -> tuple[str | None, Location | None]:
    m = pattern.search(text)
    if not m:
        return None, None
    clock = m.group(1).strip() if m.group(1) else None
    return clock, parse_address(m.group(2).strip())
