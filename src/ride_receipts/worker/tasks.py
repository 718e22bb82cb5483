from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import ride_receipts.models  # noqa: F401
# isort: on

import time

from ride_receipts.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_task_context,
    set_task_context,
)
from ride_receipts.worker.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task(name="sync_mailbox", bind=True)
def sync_mailbox_task(
    self, directory: str, vendors: list[str] | None = None, policy: str | None = None
) -> dict:
    from ride_receipts.modules.ingestion.service import sync_mailbox

    task_id = getattr(self.request, "id", None)
    token = set_task_context(task_id)
    start = time.monotonic()
    log_event(
        logger,
        "celery.task.start",
        task_name="sync_mailbox",
        celery_task_id=task_id,
        directory=directory,
        vendors=vendors,
        policy=policy,
    )
    try:
        summary = sync_mailbox(directory=directory, vendors=vendors, policy=policy)
        log_event(
            logger,
            "celery.task.finish",
            task_name="sync_mailbox",
            celery_task_id=task_id,
            directory=directory,
            accepted=summary.get("accepted"),
            duration_ms=monotonic_ms(start),
        )
        return summary
    except Exception:
        log_exception(
            logger,
            "celery.task.error",
            task_name="sync_mailbox",
            celery_task_id=task_id,
            directory=directory,
            duration_ms=monotonic_ms(start),
        )
        raise
    finally:
        reset_task_context(token)
