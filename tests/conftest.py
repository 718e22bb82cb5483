from __future__ import annotations

import os

import pytest

# Set env before any ride_receipts imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.ride_receipts_test.db")
os.environ.setdefault("GEMINI_API_KEY", "")
os.environ.setdefault("RECEIPT_AI_ENABLED", "false")


@pytest.fixture(autouse=True)
def _reset_db() -> None:
    import ride_receipts.models  # noqa: F401
    from ride_receipts.core.db import engine
    from ride_receipts.core.models import Base

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield
