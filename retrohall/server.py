from __future__ import annotations
import os
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse
from loguru import logger

from . import config
from .api import admin, events, me, orders, payments, reservations, shop
from .infra.logs import configure_logging
from .infra.sql import make_database
from .infra.timings import log_aggregates
from .model.db import Base
from .model.notify import BACKEND as NOTIFY_BACKEND, new_hub
from .payments import PaymentAdapter, new_adapter


def create_app(
    database_url: Optional[str] = None,
    adapter: Optional[PaymentAdapter] = None,
    notify_backend: Optional[str] = None,
) -> FastAPI:
    app = FastAPI(
        title="Retro Hall",
        default_response_class=ORJSONResponse,
    )
    app.state.database_url = database_url or config.DATABASE_URL
    app.state.payments = adapter or new_adapter()
    app.state.notify_backend = notify_backend or NOTIFY_BACKEND

    for r in (shop, orders, payments, events, reservations, me, admin):
        app.include_router(r.router)

    # ---
    # startup / shutdown
    # ---
    @app.on_event("startup")
    async def _say_hello():
        configure_logging(config.LOG_LEVEL)
        logger.info("=" * 50)
        logger.info("Retro Hall is starting up...")
        logger.info("   - Payment      Backend: {}", app.state.payments.name)
        logger.info("   - Notification Backend: {}", app.state.notify_backend)
        logger.info("=" * 50)

    @app.on_event("startup")
    async def _db_init():
        app.state.db = make_database(app.state.database_url)
        async with app.state.db.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @app.on_event("startup")
    async def _http_client_start():
        app.state.http = httpx.AsyncClient(
            timeout=5.0,
            limits=httpx.Limits(
                max_connections=512, max_keepalive_connections=512
            ),
        )

    @app.on_event("startup")
    async def _hub_start():
        app.state.hub = new_hub(app.state.notify_backend, config.REDIS_URL)

    @app.on_event("shutdown")
    async def _http_client_stop():
        http = getattr(app.state, "http", None)
        if http is not None:
            await http.aclose()
            app.state.http = None

    @app.on_event("shutdown")
    async def _hub_stop():
        hub = getattr(app.state, "hub", None)
        if hub is not None:
            await hub.close()
            app.state.hub = None

    @app.on_event("shutdown")
    async def _db_stop():
        db = getattr(app.state, "db", None)
        if db is not None:
            await db.dispose()
            app.state.db = None

    @app.on_event("shutdown")
    async def _flush_timings():
        log_aggregates()

    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(
        "retrohall.server:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_config=None,
    )
