from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from ride_receipts.api.router import router as api_router
from ride_receipts.bootstrap import bootstrap
from ride_receipts.core.logging import RequestContextMiddleware


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        bootstrap()
        yield

    app = FastAPI(title="Ride Receipts", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    app.include_router(api_router)
    return app


app = create_app()
