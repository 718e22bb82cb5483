from __future__ import annotations

import uuid
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ride_receipts.core.db import db_session
from ride_receipts.modules.extraction.records import RawMessage, Vendor
from ride_receipts.modules.extraction.service import ReceiptParser, build_receipt_parser
from ride_receipts.modules.receipts.schemas import (
    ParsedReceiptOut,
    ParseIn,
    ParseOut,
    ReceiptGroupOut,
    ReceiptOut,
)
from ride_receipts.modules.receipts.service import (
    SqlReceiptStore,
    group_receipts_with_refunds,
    list_receipts,
)

router = APIRouter(tags=["receipts"])


def get_receipt_parser() -> ReceiptParser:
    return build_receipt_parser()


@router.post("/receipts/parse", response_model=ParseOut)
def parse_receipt(
    payload: ParseIn,
    session: Session = Depends(db_session),
    parser: ReceiptParser = Depends(get_receipt_parser),
) -> ParseOut:
    if not payload.body_text.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty message body")

    received_at = payload.received_at or datetime.now(UTC)
    message = RawMessage(
        id=payload.message_id or f"manual-{uuid.uuid4().hex}",
        subject=payload.subject,
        received_at=received_at,
        body_text=payload.body_text,
    )
    known = SqlReceiptStore(session).load()
    result = parser.parse(message, payload.vendor, known, policy=payload.policy)
    return ParseOut(
        status=result.status,
        receipt=ParsedReceiptOut.model_validate(result.receipt) if result.receipt else None,
        parse_failures=result.parse_failures,
    )


@router.get("/receipts", response_model=list[ReceiptOut])
def get_receipts(
    vendor: Vendor | None = None,
    limit: int | None = None,
    session: Session = Depends(db_session),
) -> list[ReceiptOut]:
    rows = list_receipts(session, vendor=vendor, limit=limit)
    return [ReceiptOut.model_validate(r, from_attributes=True) for r in rows]


@router.get("/receipts/grouped", response_model=list[ReceiptGroupOut])
def get_grouped_receipts(session: Session = Depends(db_session)) -> list[ReceiptGroupOut]:
    groups = group_receipts_with_refunds(list_receipts(session))
    return [
        ReceiptGroupOut(
            receipt=ReceiptOut.model_validate(g.receipt, from_attributes=True),
            refunds=[ReceiptOut.model_validate(r, from_attributes=True) for r in g.refunds],
            refund_amount=g.refund_amount,
            net_total=g.net_total,
        )
        for g in groups
    ]
