from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal


class Vendor(str, enum.Enum):
    UBER = "Uber"
    LYFT = "Lyft"
    CURB = "Curb"
    AMTRAK = "Amtrak"


class ParsedBy(str, enum.Enum):
    REGEX = "regex"
    AI = "ai"


class ParserPolicy(str, enum.Enum):
    REGEX_ONLY = "regex-only"
    AI_ONLY = "ai-only"
    REGEX_FIRST = "regex-first"
    AI_WITH_SUBJECT_FILTER = "ai-with-subject-filter"


@dataclass(frozen=True)
class RawMessage:
    id: str
    subject: str
    received_at: datetime
    body_text: str


@dataclass(frozen=True)
class Location:
    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = "US"

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, raw: dict | None) -> Location | None:
        if not isinstance(raw, dict):
            return None
        return cls(
            address=raw.get("address"),
            city=raw.get("city"),
            state=raw.get("state"),
            country=raw.get("country"),
        )


@dataclass(frozen=True)
class ParsedReceipt:
    vendor: Vendor
    total: Decimal
    date: date
    parsed_by: ParsedBy
    tip: Decimal = Decimal("0.00")
    start_time: str | None = None
    end_time: str | None = None
    start_location: Location | None = None
    end_location: Location | None = None
    content_fingerprint: str | None = None
    is_refund: bool = False
    reservation_id: str | None = None
    is_round_trip: bool = False
    message_id: str | None = None
