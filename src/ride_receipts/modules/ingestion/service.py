from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path
from typing import Any, Protocol

from ride_receipts.core.config import settings
from ride_receipts.core.db import SessionLocal
from ride_receipts.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_sync_context,
    set_sync_context,
)
from ride_receipts.modules.extraction.dedupe import KnownRecords, precheck_duplicate
from ride_receipts.modules.extraction.records import (
    ParsedReceipt,
    ParserPolicy,
    RawMessage,
    Vendor,
)
from ride_receipts.modules.extraction.service import (
    ParseStatus,
    ReceiptParser,
    build_receipt_parser,
)
from ride_receipts.modules.ingestion.breaker import (
    DEFAULT_THRESHOLD,
    AskContinue,
    IngestionCircuitBreaker,
    fixed_decision,
)
from ride_receipts.modules.ingestion.sources import EmlDirectorySource, MessageSource
from ride_receipts.modules.receipts.service import SqlReceiptStore

logger = get_logger(__name__)


class ReceiptStore(Protocol):
    def load(self) -> Iterable[ParsedReceipt]: ...

    def known_message_ids(self) -> set[str]: ...

    def add(self, receipt: ParsedReceipt) -> Any: ...


@dataclass(frozen=True)
class SyncProgress:
    phase: str
    vendor: Vendor | None = None
    current: int = 0
    total: int = 0
    message: str = ""


@dataclass
class SyncSummary:
    sync_run_id: str
    accepted: int = 0
    duplicates: int = 0
    prechecked: int = 0
    filtered: int = 0
    failed: int = 0
    errors: int = 0
    cancelled: bool = False
    abandoned_vendors: list[Vendor] = field(default_factory=list)
    receipts: list[tuple[ParsedReceipt, str]] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "sync_run_id": self.sync_run_id,
            "accepted": self.accepted,
            "duplicates": self.duplicates,
            "prechecked": self.prechecked,
            "filtered": self.filtered,
            "failed": self.failed,
            "errors": self.errors,
            "cancelled": self.cancelled,
            "abandoned_vendors": [v.value for v in self.abandoned_vendors],
        }


def sync_receipts(
    *,
    source: MessageSource,
    store: ReceiptStore,
    parser: ReceiptParser,
    ask_continue: AskContinue,
    vendors: Iterable[Vendor] | None = None,
    policy: ParserPolicy | None = None,
    threshold: int = DEFAULT_THRESHOLD,
    limit: int = 0,
    cancel: threading.Event | None = None,
    on_progress: Callable[[SyncProgress], None] | None = None,
) -> SyncSummary:
    """
    Run every vendor query in order and feed each message through the parser.

    Messages are handled strictly one at a time: each dedup check has to see every
    record accepted before it, and the circuit breaker counts consecutive
    duplicates. A failing query or message is logged and skipped; nothing here
    aborts the whole run. `cancel` is checked between queries and between messages.
    """
    summary = SyncSummary(sync_run_id=uuid.uuid4().hex)
    token = set_sync_context(summary.sync_run_id)
    start = time.monotonic()
    vendors = list(vendors or Vendor)

    def emit(
        phase: str,
        vendor: Vendor | None = None,
        current: int = 0,
        total: int = 0,
        message: str = "",
    ) -> None:
        if on_progress is not None:
            on_progress(SyncProgress(phase, vendor, current, total, message))

    def cancelled() -> bool:
        if cancel is not None and cancel.is_set():
            summary.cancelled = True
        return summary.cancelled

    try:
        known = KnownRecords(store.load())
        seen_ids = set(store.known_message_ids())
        log_event(
            logger,
            "ingestion.sync.start",
            vendors=[v.value for v in vendors],
            policy=(policy or parser.config.policy).value,
            known_records=len(known),
            threshold=threshold,
            limit=limit or None,
        )
        emit("starting", message="Starting sync")

        for vendor in vendors:
            if cancelled():
                break
            emit("searching", vendor, message=f"Searching {vendor.value} receipts")
            messages: list[RawMessage] = []
            try:
                for message in islice(source.list_messages(vendor), limit or None):
                    messages.append(message)
            except Exception as e:  # noqa: BLE001
                summary.errors += 1
                log_exception(
                    logger, "ingestion.query.error", vendor=vendor.value, listed=len(messages)
                )
                emit("error", vendor, message=f"{vendor.value} query failed: {e}")
                # Whatever was listed before the failure is still processed.
                if not messages:
                    continue

            log_event(logger, "ingestion.query.listed", vendor=vendor.value, count=len(messages))
            breaker = IngestionCircuitBreaker(vendor, ask_continue, threshold=threshold)
            for idx, message in enumerate(messages, start=1):
                if cancelled():
                    break
                emit("processing", vendor, idx, len(messages), message.subject)
                try:
                    _process_message(
                        message,
                        vendor,
                        parser=parser,
                        policy=policy,
                        store=store,
                        known=known,
                        seen_ids=seen_ids,
                        breaker=breaker,
                        summary=summary,
                    )
                except Exception as e:  # noqa: BLE001
                    summary.errors += 1
                    log_exception(
                        logger,
                        "ingestion.message.error",
                        vendor=vendor.value,
                        message_id=message.id,
                    )
                    emit("error", vendor, idx, len(messages), f"{message.id}: {e}")
                    continue
                if breaker.abandoned:
                    summary.abandoned_vendors.append(vendor)
                    break

        log_event(
            logger,
            "ingestion.sync.finish",
            duration_ms=monotonic_ms(start),
            **summary.as_dict(),
        )
        emit("complete", message=f"Added {summary.accepted} receipts")
        return summary
    finally:
        reset_sync_context(token)


def _process_message(
    message: RawMessage,
    vendor: Vendor,
    *,
    parser: ReceiptParser,
    policy: ParserPolicy | None,
    store: ReceiptStore,
    known: KnownRecords,
    seen_ids: set[str],
    breaker: IngestionCircuitBreaker,
    summary: SyncSummary,
) -> None:
    if message.id in seen_ids or precheck_duplicate(
        message.body_text,
        vendor,
        subject=message.subject,
        received_at=message.received_at,
        known=known,
        tolerance_cents=parser.config.tolerance_cents,
    ):
        summary.prechecked += 1
        log_event(
            logger,
            "ingestion.message.prechecked",
            level=logging.DEBUG,
            vendor=vendor.value,
            message_id=message.id,
        )
        breaker.record_duplicate()
        return

    result = parser.parse(message, vendor, known, policy=policy)
    if result.status == ParseStatus.ACCEPTED and result.receipt is not None:
        if store.add(result.receipt) is None:
            summary.duplicates += 1
            breaker.record_duplicate()
            return
        known.add(result.receipt)
        seen_ids.add(message.id)
        summary.accepted += 1
        summary.receipts.append((result.receipt, message.id))
        breaker.record_accepted()
    elif result.status == ParseStatus.DUPLICATE:
        summary.duplicates += 1
        breaker.record_duplicate()
    elif result.status == ParseStatus.FILTERED:
        summary.filtered += 1
    else:
        summary.failed += 1


def sync_mailbox(
    *,
    directory: str,
    vendors: list[str] | None = None,
    policy: str | None = None,
) -> dict:
    root = Path(directory)
    if not root.is_dir():
        raise ValueError(f"Mailbox directory not found: {directory}")

    with SessionLocal() as session:
        summary = sync_receipts(
            source=EmlDirectorySource(root),
            store=SqlReceiptStore(session),
            parser=build_receipt_parser(settings),
            ask_continue=fixed_decision(settings.duplicate_run_action),
            vendors=[Vendor(v) for v in vendors] if vendors else None,
            policy=ParserPolicy(policy) if policy else None,
            threshold=settings.duplicate_threshold,
            limit=settings.test_mode_limit,
        )
    return summary.as_dict()
