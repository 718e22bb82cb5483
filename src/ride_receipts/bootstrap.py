from __future__ import annotations

from ride_receipts.core.config import settings
from ride_receipts.core.db import create_schema


def bootstrap() -> None:
    if settings.environment in {"dev", "test"} and str(settings.database_url).startswith("sqlite"):
        create_schema()
