from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ride_receipts.core.logging import get_logger, log_event
from ride_receipts.modules.extraction.records import Vendor

logger = get_logger(__name__)

AskContinue = Callable[[Vendor, int], bool]

DEFAULT_THRESHOLD = 10


@dataclass
class CircuitBreakerState:
    vendor: Vendor
    threshold: int = DEFAULT_THRESHOLD
    consecutive_duplicates: int = 0
    paused: bool = False
    abandoned: bool = False


class IngestionCircuitBreaker:
    """
    Consecutive-duplicate guard for one vendor's batch.

    Long historical mailboxes produce contiguous runs of already-synced messages.
    After `threshold` likely duplicates in a row the run pauses and asks
    `ask_continue(vendor, count)` whether to keep going. "Skip" abandons the rest
    of the vendor's batch; "continue" resets the counter.
    """

    def __init__(
        self, vendor: Vendor, ask_continue: AskContinue, threshold: int = DEFAULT_THRESHOLD
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.ask_continue = ask_continue
        self.state = CircuitBreakerState(vendor=vendor, threshold=threshold)

    @property
    def abandoned(self) -> bool:
        return self.state.abandoned

    @property
    def consecutive_duplicates(self) -> int:
        return self.state.consecutive_duplicates

    def record_duplicate(self) -> bool:
        """Count one likely duplicate. Returns False once the batch should stop."""
        state = self.state
        if state.abandoned:
            return False

        state.consecutive_duplicates += 1
        if state.consecutive_duplicates < state.threshold:
            return True

        state.paused = True
        count = state.consecutive_duplicates
        log_event(
            logger,
            "ingestion.breaker.tripped",
            vendor=state.vendor.value,
            consecutive_duplicates=count,
            threshold=state.threshold,
        )
        try:
            keep_going = bool(self.ask_continue(state.vendor, count))
        finally:
            state.paused = False

        if not keep_going:
            state.abandoned = True
            log_event(
                logger,
                "ingestion.breaker.abandoned",
                level=logging.WARNING,
                vendor=state.vendor.value,
                consecutive_duplicates=count,
            )
            return False

        state.consecutive_duplicates = 0
        log_event(
            logger,
            "ingestion.breaker.resumed",
            vendor=state.vendor.value,
            consecutive_duplicates=count,
        )
        return True

    def record_accepted(self) -> None:
        self.state.consecutive_duplicates = 0


def fixed_decision(action: str) -> AskContinue:
    """Non-interactive decision for unattended runs: "continue" or "skip"."""
    keep_going = action == "continue"

    def _decide(vendor: Vendor, count: int) -> bool:
        return keep_going

    return _decide
