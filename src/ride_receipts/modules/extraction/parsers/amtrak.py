from __future__ import annotations

import re
from datetime import date
from decimal import Decimal

from ride_receipts.modules.extraction.address import parse_station
from ride_receipts.modules.extraction.parsers.common import (
    MONTHS,
    first_match,
    labelled_amount,
    labelled_slash_date,
    long_form_date,
    today,
)
from ride_receipts.modules.extraction.records import ParsedBy, ParsedReceipt, Vendor

# "Depart 7:00 AM, Tuesday, November 4, 2025"
_DEPART_DATE_RE = re.compile(
    rf"Depart\s+\d{{1,2}}:\d{{2}}\s+[AP]M,\s+\w+,\s+(?:{MONTHS})\s+\d{{1,2}},\s+\d{{4}}",
    re.I,
)
_DEPART_TIME_RE = re.compile(r"Depart\s+(\d{1,2}:\d{2}\s+[AP]M)", re.I)
_RESERVATION_RE = re.compile(r"Reservation Number\s*-\s*([A-Z0-9]+)", re.I)
# "TRAIN 171: Philadelphia, PA - 30th St. Sta. to New York, NY - Penn Sta. (Round-Trip) Depart"
_ROUTE_RE = re.compile(r"TRAIN\s+\d+:\s*([^(]+?)\s+to\s+([^(]+?)\s*(?:\(|Depart)", re.I)

PURCHASE_TOTAL_CHAIN = (
    labelled_amount("Total Charged by Amtrak"),
    labelled_amount("Total"),
)
REFUND_TOTAL_CHAIN = (
    labelled_amount("Total Refunded"),
    labelled_amount("Total"),
)


def _departure_date(text: str) -> date | None:
    m = _DEPART_DATE_RE.search(text)
    return long_form_date(m.group(0)) if m else None


def _today_fallback(text: str) -> date | None:
    return today()


_purchased_date = labelled_slash_date("Purchased")

PURCHASE_DATE_CHAIN = (_departure_date, _purchased_date)
REFUND_DATE_CHAIN = (
    labelled_slash_date("Modified"),
    _purchased_date,
    _today_fallback,
)


def is_refund(text: str, subject: str = "") -> bool:
    return "Refund Receipt" in (subject or "") or "REFUND RECEIPT" in text


def advance_purchase_date(candidate: date, text: str, received: date) -> date:
    """
    Date an advance ticket by its purchase day.

    The departure date of a ticket bought ahead of travel lies after the confirmation
    email arrived. When the body also carries a `Purchased:` date that is not after
    the received day, that date is used instead.
    """
    if candidate <= received:
        return candidate
    purchased = _purchased_date(text)
    if purchased is not None and purchased <= received:
        return purchased
    return candidate


def reservation_number(text: str) -> str | None:
    m = _RESERVATION_RE.search(text)
    return m.group(1).strip() if m else None


def parse_amtrak_email(text: str, subject: str = "") -> ParsedReceipt | None:
    try:
        reservation_id = reservation_number(text)
        if is_refund(text, subject):
            return _parse_refund(text, reservation_id)
        return _parse_purchase(text, reservation_id)
    except Exception:
        return None


def _parse_purchase(text: str, reservation_id: str | None) -> ParsedReceipt | None:
    total = first_match(PURCHASE_TOTAL_CHAIN, text)
    if total is None or total <= Decimal("0"):
        return None
    trip_date = first_match(PURCHASE_DATE_CHAIN, text)
    if trip_date is None:
        return None

    start_location = end_location = None
    m = _ROUTE_RE.search(text)
    if m:
        start_location = parse_station(m.group(1).strip())
        end_location = parse_station(m.group(2).strip())

    m = _DEPART_TIME_RE.search(text)
    start_time = m.group(1) if m else None

    return ParsedReceipt(
        vendor=Vendor.AMTRAK,
        total=total,
        date=trip_date,
        start_time=start_time,
        start_location=start_location,
        end_location=end_location,
        parsed_by=ParsedBy.REGEX,
        reservation_id=reservation_id,
        is_round_trip="(Round-Trip)" in text,
    )


def _parse_refund(text: str, reservation_id: str | None) -> ParsedReceipt | None:
    refunded = first_match(REFUND_TOTAL_CHAIN, text)
    if refunded is None or refunded <= Decimal("0"):
        return None
    refund_date = first_match(REFUND_DATE_CHAIN, text)
    return ParsedReceipt(
        vendor=Vendor.AMTRAK,
        total=-refunded,
        date=refund_date,
        parsed_by=ParsedBy.REGEX,
        is_refund=True,
        reservation_id=reservation_id,
    )
