from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, HTTPException, status

from ride_receipts.core.logging import get_logger, log_event
from ride_receipts.modules.ingestion.schemas import SyncIn, SyncOut
from ride_receipts.worker.tasks import sync_mailbox_task

router = APIRouter(tags=["ingestion"])
logger = get_logger(__name__)


@router.post("/sync", response_model=SyncOut, status_code=status.HTTP_202_ACCEPTED)
def start_sync(payload: SyncIn) -> SyncOut:
    directory = payload.directory.strip()
    if not directory or not Path(directory).is_dir():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Mailbox directory not found"
        )

    async_result = sync_mailbox_task.delay(
        directory,
        [v.value for v in payload.vendors] if payload.vendors else None,
        payload.policy.value if payload.policy else None,
    )
    log_event(
        logger,
        "celery.task.enqueued",
        task_name="sync_mailbox",
        celery_task_id=async_result.id,
        directory=directory,
    )
    return SyncOut(celery_task_id=str(async_result.id), status=str(async_result.status))
