from __future__ import annotations

import logging
import re

from ride_receipts.core.logging import get_logger, log_event
from ride_receipts.modules.extraction.records import Location

logger = get_logger(__name__)

_STATE_ZIP_RE = re.compile(r"\b([A-Z]{2})\b\s*(\d{5})?")
_CITY_STATE_RE = re.compile(r"([^,]+),\s*([A-Z]{2})\b")


def parse_address(text: str | None) -> Location | None:
    """
    Split a free-text address ("123 Main St, Philadelphia, PA 19107, US") into parts.

    The last segment is a country only when there are more than three segments;
    otherwise the country is assumed to be US and the last segment is the state/zip
    block. Returns None for fewer than two segments. Never raises: any failure degrades
    to a Location carrying only the original string.
    """
    if not text:
        return None
    parts = [p.strip() for p in text.split(",")]
    if len(parts) < 2:
        return None

    try:
        if len(parts) > 3:
            country = parts[-1] or "US"
            body = parts[:-1]
        else:
            country = "US"
            body = parts
        m = _STATE_ZIP_RE.search(body[-1])
        state = m.group(1) if m else None
        city = body[-2]
        address = ", ".join(body[: max(1, len(body) - 2)])
        return Location(address=address or None, city=city or None, state=state, country=country)
    except Exception as e:  # noqa: BLE001
        log_event(logger, "extraction.address.degraded", level=logging.DEBUG, error=str(e))
        return Location(address=text, city=None, state=None, country=None)


def parse_station(text: str | None) -> Location | None:
    # "Philadelphia, PA - William H Gray III 30th St. Sta."
    if not text:
        return None
    head, _, station = text.partition(" - ")
    m = _CITY_STATE_RE.search(head)
    if not m:
        return None
    city = m.group(1).strip()
    state = m.group(2)
    station = station.strip()
    return Location(
        address=station or f"{city}, {state}",
        city=city,
        state=state,
        country="US",
    )
