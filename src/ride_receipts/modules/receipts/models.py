from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Date, Enum, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ride_receipts.core.models import Base, Timestamped, UUIDPrimaryKey
from ride_receipts.modules.extraction.records import ParsedBy, Vendor


class Receipt(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "receipts_receipt"

    message_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    vendor: Mapped[Vendor] = mapped_column(Enum(Vendor, native_enum=False), index=True)
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    tip: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    receipt_date: Mapped[date] = mapped_column(Date, index=True)

    start_time: Mapped[str | None] = mapped_column(String(50), nullable=True)
    end_time: Mapped[str | None] = mapped_column(String(50), nullable=True)
    start_location: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    end_location: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    parsed_by: Mapped[ParsedBy] = mapped_column(Enum(ParsedBy, native_enum=False))
    content_fingerprint: Mapped[str] = mapped_column(String(64), index=True)

    is_refund: Mapped[bool] = mapped_column(Boolean, default=False)
    reservation_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    is_round_trip: Mapped[bool] = mapped_column(Boolean, default=False)

    category: Mapped[str | None] = mapped_column(String(50), nullable=True)
    billed: Mapped[bool] = mapped_column(Boolean, default=False)
