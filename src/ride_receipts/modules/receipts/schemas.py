from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from ride_receipts.modules.extraction.records import ParsedBy, ParserPolicy, Vendor
from ride_receipts.modules.extraction.service import ParseStatus


class LocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None


class ParsedReceiptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    vendor: Vendor
    total: Decimal
    tip: Decimal
    date: dt.date
    start_time: str | None
    end_time: str | None
    start_location: LocationOut | None
    end_location: LocationOut | None
    parsed_by: ParsedBy
    content_fingerprint: str | None
    is_refund: bool
    reservation_id: str | None
    is_round_trip: bool
    message_id: str | None


class ReceiptOut(BaseModel):
    id: uuid.UUID
    message_id: str | None
    vendor: Vendor
    total: Decimal
    tip: Decimal
    receipt_date: dt.date
    start_time: str | None
    end_time: str | None
    start_location: LocationOut | None
    end_location: LocationOut | None
    parsed_by: ParsedBy
    content_fingerprint: str
    is_refund: bool
    reservation_id: str | None
    is_round_trip: bool
    category: str | None
    billed: bool
    created_at: dt.datetime


class ReceiptGroupOut(BaseModel):
    receipt: ReceiptOut
    refunds: list[ReceiptOut]
    refund_amount: Decimal
    net_total: Decimal


class ParseIn(BaseModel):
    vendor: Vendor
    body_text: str
    subject: str = ""
    received_at: dt.datetime | None = None
    message_id: str | None = None
    policy: ParserPolicy | None = None


class ParseOut(BaseModel):
    status: ParseStatus
    receipt: ParsedReceiptOut | None
    parse_failures: list[str]
