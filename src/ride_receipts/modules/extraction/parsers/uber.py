from __future__ import annotations

import re
from decimal import Decimal

from ride_receipts.modules.extraction.address import parse_address
from ride_receipts.modules.extraction.parsers.common import (
    CLOCK_TIME,
    first_match,
    labelled_amount,
    long_form_date,
    tip_amount,
    trailing_amount,
)
from ride_receipts.modules.extraction.records import ParsedBy, ParsedReceipt, Vendor

TOTAL_CHAIN = (
    labelled_amount("Total"),
    labelled_amount("You were charged"),
    labelled_amount("Amount charged"),
    trailing_amount,
)
DATE_CHAIN = (long_form_date,)

# "9:10 AM 123 Main St, Philadelphia, PA" up to the next clock time, a footer
# label, or the end of the line.
_TIME_ADDRESS_RE = re.compile(
    rf"({CLOCK_TIME})\s*([^\n]+?)\s*"
    rf"(?={CLOCK_TIME}|Report an issue|Contact|Trip fare|\n|\Z)",
    re.I,
)


def parse_uber_email(text: str, subject: str = "") -> ParsedReceipt | None:
    try:
        return _parse(text)
    except Exception:
        return None


def _parse(text: str) -> ParsedReceipt | None:
    total = first_match(TOTAL_CHAIN, text)
    if total is None or total <= Decimal("0"):
        return None
    trip_date = first_match(DATE_CHAIN, text)
    if trip_date is None:
        return None

    start_time = end_time = None
    start_location = end_location = None
    runs = list(_TIME_ADDRESS_RE.finditer(text))
    if len(runs) >= 2:
        start_time = runs[0].group(1).strip()
        start_location = parse_address(runs[0].group(2).strip())
        end_time = runs[1].group(1).strip()
        end_location = parse_address(runs[1].group(2).strip())

    return ParsedReceipt(
        vendor=Vendor.UBER,
        total=total,
        tip=tip_amount(text),
        date=trip_date,
        start_time=start_time,
        end_time=end_time,
        start_location=start_location,
        end_location=end_location,
        parsed_by=ParsedBy.REGEX,
    )
