from __future__ import annotations

from decimal import Decimal

from ride_receipts.modules.extraction.parsers.common import (
    first_match,
    labelled_amount,
    long_form_date,
    month_day_current_year,
    tip_amount,
)
from ride_receipts.modules.extraction.records import ParsedBy, ParsedReceipt, Vendor

TOTAL_CHAIN = (
    labelled_amount("Total"),
    labelled_amount("Amount"),
    labelled_amount("Fare"),
)
# Curb templates often drop the year entirely.
DATE_CHAIN = (long_form_date, month_day_current_year)


def parse_curb_email(text: str, subject: str = "") -> ParsedReceipt | None:
    try:
        total = first_match(TOTAL_CHAIN, text)
        if total is None or total <= Decimal("0"):
            return None
        ride_date = first_match(DATE_CHAIN, text)
        if ride_date is None:
            return None
        return ParsedReceipt(
            vendor=Vendor.CURB,
            total=total,
            tip=tip_amount(text),
            date=ride_date,
            parsed_by=ParsedBy.REGEX,
        )
    except Exception:
        return None
