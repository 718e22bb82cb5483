from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal

from ride_receipts.modules.extraction.dates import reconcile_date
from ride_receipts.modules.extraction.parsers import amtrak, curb, lyft, uber
from ride_receipts.modules.extraction.parsers.common import first_match
from ride_receipts.modules.extraction.records import ParsedReceipt, Vendor

Grammar = Callable[[str, str], ParsedReceipt | None]

GRAMMARS: dict[Vendor, Grammar] = {
    Vendor.UBER: uber.parse_uber_email,
    Vendor.LYFT: lyft.parse_lyft_email,
    Vendor.CURB: curb.parse_curb_email,
    Vendor.AMTRAK: amtrak.parse_amtrak_email,
}

_QUICK_CHAINS = {
    Vendor.UBER: (uber.TOTAL_CHAIN, uber.DATE_CHAIN),
    Vendor.LYFT: (lyft.TOTAL_CHAIN, lyft.DATE_CHAIN),
    Vendor.CURB: (curb.TOTAL_CHAIN, curb.DATE_CHAIN),
}


def run_grammar(
    vendor: Vendor, text: str, subject: str = ""
) -> tuple[ParsedReceipt | None, str | None]:
    grammar = GRAMMARS.get(vendor)
    if grammar is None:
        return None, "unsupported_vendor"
    parsed = grammar(text, subject)
    if parsed:
        return parsed, None
    return None, _failure_reason(vendor, text, subject)


def quick_fields(vendor: Vendor, text: str, subject: str = "") -> tuple[Decimal, date] | None:
    """
    Total and date only, using the same ordered chains as the full grammar.

    Skips locations, times and the AI path so it is cheap enough to run on every
    message of a bulk sync before deciding whether a full parse is worth it.
    """
    try:
        if vendor == Vendor.AMTRAK:
            if amtrak.is_refund(text, subject):
                total = first_match(amtrak.REFUND_TOTAL_CHAIN, text)
                tx_date = first_match(amtrak.REFUND_DATE_CHAIN, text)
                total = -total if total is not None else None
            else:
                total = first_match(amtrak.PURCHASE_TOTAL_CHAIN, text)
                tx_date = first_match(amtrak.PURCHASE_DATE_CHAIN, text)
        elif vendor in _QUICK_CHAINS:
            total_chain, date_chain = _QUICK_CHAINS[vendor]
            total = first_match(total_chain, text)
            tx_date = first_match(date_chain, text)
        else:
            return None
    except Exception:
        return None
    if total is None or total == Decimal("0") or tx_date is None:
        return None
    return total, tx_date


def record_date(
    vendor: Vendor, text: str, subject: str, candidate: date, received_at: datetime | date
) -> date:
    """Final record date for an extracted candidate, never after the received day."""
    received = received_at.date() if isinstance(received_at, datetime) else received_at
    if vendor == Vendor.AMTRAK and not amtrak.is_refund(text, subject):
        candidate = amtrak.advance_purchase_date(candidate, text, received)
    return reconcile_date(candidate, received_at)


def _failure_reason(vendor: Vendor, text: str, subject: str) -> str:
    if vendor == Vendor.AMTRAK:
        refund = amtrak.is_refund(text, subject)
        total_chain = amtrak.REFUND_TOTAL_CHAIN if refund else amtrak.PURCHASE_TOTAL_CHAIN
        date_chain = amtrak.REFUND_DATE_CHAIN if refund else amtrak.PURCHASE_DATE_CHAIN
    else:
        total_chain, date_chain = _QUICK_CHAINS[vendor]
    try:
        total = first_match(total_chain, text)
        if total is None:
            return "missing_total"
        if total <= Decimal("0"):
            return "non_positive_total"
        if first_match(date_chain, text) is None:
            return "missing_date"
    except Exception:
        return "grammar_error"
    return "grammar_rejected"
