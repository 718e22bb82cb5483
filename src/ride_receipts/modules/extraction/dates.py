from __future__ import annotations

from datetime import date, datetime

_MAX_AGE_DAYS = 365


def reconcile_date(candidate: date, received_at: datetime | date) -> date:
    """
    Pull an extracted date back next to the message's trusted received timestamp.

    Grammars that only see "Oct 12" guess the current year, and AI extraction can
    hallucinate future dates. A candidate after the received day, or more than a year
    before it, gets the received year; if that still lands after the received day the
    previous year is used. The result is never after the received day, and reconciling
    it again returns it unchanged.
    """
    received = received_at.date() if isinstance(received_at, datetime) else received_at
    if isinstance(candidate, datetime):
        candidate = candidate.date()

    if candidate <= received and (received - candidate).days <= _MAX_AGE_DAYS:
        return candidate

    aligned = _with_year(candidate, received.year)
    if aligned > received:
        aligned = _with_year(candidate, received.year - 1)
    return aligned


def _with_year(d: date, year: int) -> date:
    try:
        return d.replace(year=year)
    except ValueError:
        # Feb 29 in a non-leap year.
        return d.replace(year=year, day=28)
