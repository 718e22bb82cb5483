from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import TypeVar

T = TypeVar("T")

Extractor = Callable[[str], T | None]

MONTHS = (
    "January|February|March|April|May|June|July|"
    "August|September|October|November|December"
)

LONG_DATE_RE = re.compile(rf"\b({MONTHS})\s+(\d{{1,2}}),?\s+(\d{{4}})\b", re.I)
MONTH_DAY_RE = re.compile(rf"\b({MONTHS})\s+(\d{{1,2}})\b", re.I)
SLASH_DATE_RE = re.compile(r"\b(\d{2})/(\d{2})/(\d{4})\b")
CLOCK_TIME = r"\d{1,2}:\d{2}\s*(?:AM|PM|am|pm)"

_AMOUNT = r"\$?\s*([\d,]+\.?\d{0,2})"


def first_match(chain: Iterable[Extractor[T]], text: str) -> T | None:
    """Run each extractor in order and return the first non-None result."""
    for extract in chain:
        value = extract(text)
        if value is not None:
            return value
    return None


def labelled_amount(label: str) -> Extractor[Decimal]:
    # "Total: $23.45", "You were charged $23.45", "Total Refunded $45.00"
    pattern = re.compile(rf"\b{label}[:\s]*{_AMOUNT}", re.I)

    def _extract(text: str) -> Decimal | None:
        m = pattern.search(text)
        return parse_amount(m.group(1)) if m else None

    return _extract


def trailing_amount(text: str) -> Decimal | None:
    # A bare "$23.45" at the end of a line.
    m = re.search(r"\$(\d+\.\d{2})\s*$", text, re.M)
    return parse_amount(m.group(1)) if m else None


def any_amount(text: str) -> Decimal | None:
    m = re.search(r"\$(\d+\.\d{2})", text)
    return parse_amount(m.group(1)) if m else None


def parse_amount(raw: str | None) -> Decimal | None:
    s = str(raw or "").strip().replace(",", "")
    if not s or not any(ch.isdigit() for ch in s):
        return None
    try:
        amount = Decimal(s)
        if not amount.is_finite():
            return None
        return amount.quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


def tip_amount(text: str) -> Decimal:
    return labelled_amount("Tip")(text) or Decimal("0.00")


def long_form_date(text: str) -> date | None:
    m = LONG_DATE_RE.search(text)
    if not m:
        return None
    month, day, year = m.groups()
    return _build_date(f"{month} {day} {year}", "%B %d %Y")


def month_day_current_year(text: str) -> date | None:
    # The year is a placeholder; reconcile_date() pulls it back next to the
    # message's received timestamp.
    m = MONTH_DAY_RE.search(text)
    if not m:
        return None
    month, day = m.groups()
    return _build_date(f"{month} {day} {today().year}", "%B %d %Y")


def labelled_slash_date(label: str) -> Extractor[date]:
    # "Purchased: 10/28/2025"
    pattern = re.compile(rf"{label}:\s*(\d{{2}}/\d{{2}}/\d{{4}})", re.I)

    def _extract(text: str) -> date | None:
        m = pattern.search(text)
        return _build_date(m.group(1), "%m/%d/%Y") if m else None

    return _extract


def today() -> date:
    return date.today()


def _build_date(raw: str, fmt: str) -> date | None:
    try:
        return datetime.strptime(raw.strip().title(), fmt).date()
    except ValueError:
        return None
