from __future__ import annotations

from pydantic import BaseModel

from ride_receipts.modules.extraction.records import ParserPolicy, Vendor


class SyncIn(BaseModel):
    directory: str
    vendors: list[Vendor] | None = None
    policy: ParserPolicy | None = None


class SyncOut(BaseModel):
    celery_task_id: str
    status: str
