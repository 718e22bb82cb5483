from __future__ import annotations

from fastapi import APIRouter

from ride_receipts.modules.ingestion.api import router as ingestion_router
from ride_receipts.modules.receipts.api import router as receipts_router

router = APIRouter()

router.include_router(receipts_router, prefix="/api")
router.include_router(ingestion_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}
