from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ride_receipts.core.logging import get_logger, log_event
from ride_receipts.modules.extraction.dedupe import fingerprint
from ride_receipts.modules.extraction.records import Location, ParsedReceipt, Vendor
from ride_receipts.modules.receipts.models import Receipt

logger = get_logger(__name__)


class SqlReceiptStore:
    """Known-record store backed by `receipts_receipt`. Only the batch runner writes."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def load(self) -> list[ParsedReceipt]:
        rows = self.session.scalars(select(Receipt).order_by(Receipt.created_at))
        return [to_parsed_receipt(r) for r in rows]

    def known_message_ids(self) -> set[str]:
        ids = self.session.scalars(
            select(Receipt.message_id).where(Receipt.message_id.is_not(None))
        )
        return set(ids)

    def add(self, receipt: ParsedReceipt) -> Receipt | None:
        row = Receipt(
            message_id=receipt.message_id,
            vendor=receipt.vendor,
            total=receipt.total,
            tip=receipt.tip,
            receipt_date=receipt.date,
            start_time=receipt.start_time,
            end_time=receipt.end_time,
            start_location=receipt.start_location.to_dict() if receipt.start_location else None,
            end_location=receipt.end_location.to_dict() if receipt.end_location else None,
            parsed_by=receipt.parsed_by,
            content_fingerprint=receipt.content_fingerprint or fingerprint(receipt),
            is_refund=receipt.is_refund,
            reservation_id=receipt.reservation_id,
            is_round_trip=receipt.is_round_trip,
        )
        self.session.add(row)
        try:
            self.session.commit()
        except IntegrityError:
            # Same message stored by a concurrent run.
            self.session.rollback()
            log_event(
                logger,
                "receipts.store.conflict",
                level=logging.WARNING,
                message_id=receipt.message_id,
                vendor=receipt.vendor.value,
            )
            return None
        return row


def to_parsed_receipt(row: Receipt) -> ParsedReceipt:
    return ParsedReceipt(
        vendor=Vendor(row.vendor),
        total=Decimal(row.total),
        tip=Decimal(row.tip if row.tip is not None else "0.00"),
        date=row.receipt_date,
        start_time=row.start_time,
        end_time=row.end_time,
        start_location=Location.from_dict(row.start_location),
        end_location=Location.from_dict(row.end_location),
        parsed_by=row.parsed_by,
        content_fingerprint=row.content_fingerprint,
        is_refund=bool(row.is_refund),
        reservation_id=row.reservation_id,
        is_round_trip=bool(row.is_round_trip),
        message_id=row.message_id,
    )


def list_receipts(
    session: Session, *, vendor: Vendor | None = None, limit: int | None = None
) -> list[Receipt]:
    stmt = select(Receipt).order_by(Receipt.receipt_date.desc(), Receipt.created_at.desc())
    if vendor is not None:
        stmt = stmt.where(Receipt.vendor == vendor)
    if limit:
        stmt = stmt.limit(limit)
    return list(session.scalars(stmt))


@dataclass
class ReceiptGroup:
    receipt: Any
    refunds: list[Any] = field(default_factory=list)

    @property
    def refund_amount(self) -> Decimal:
        return sum((abs(Decimal(r.total)) for r in self.refunds), Decimal("0.00"))

    @property
    def net_total(self) -> Decimal:
        return Decimal(self.receipt.total) - self.refund_amount


def group_receipts_with_refunds(receipts: Iterable[Any]) -> list[ReceiptGroup]:
    """
    Attach Amtrak refunds to the purchase with the same reservation number.

    Works on anything with `vendor`, `total`, `is_refund` and `reservation_id`
    (stored rows or parsed receipts). Non-rail receipts and rail receipts without a
    reservation number pass through as single groups. A reservation with only
    refunds emits each refund on its own.
    """
    out: list[ReceiptGroup] = []
    by_reservation: dict[str, list[Any]] = {}
    for r in receipts:
        if _vendor_value(r.vendor) != Vendor.AMTRAK.value or not r.reservation_id:
            out.append(ReceiptGroup(r))
            continue
        by_reservation.setdefault(r.reservation_id, []).append(r)

    for group in by_reservation.values():
        purchases = [r for r in group if not r.is_refund]
        refunds = [r for r in group if r.is_refund]
        if not purchases:
            out.extend(ReceiptGroup(r) for r in refunds)
            continue
        out.append(ReceiptGroup(purchases[0], refunds=refunds))
        # Repeat purchases on one reservation (e.g. an exchange) stay standalone.
        out.extend(ReceiptGroup(r) for r in purchases[1:])
    return out


def _vendor_value(vendor: Vendor | str) -> str:
    return vendor.value if isinstance(vendor, Vendor) else str(vendor)
