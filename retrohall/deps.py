from typing import AsyncIterator

import httpx
from fastapi import Request

from .infra.sql import Database, GatedAsyncSession
from .payments import PaymentAdapter


async def get_db(request: Request) -> AsyncIterator[GatedAsyncSession]:
    database: Database = request.app.state.db
    async with database.SessionAsync() as session:
        yield GatedAsyncSession(session=session, gated=database.gated)


def get_adapter(request: Request) -> PaymentAdapter:
    return request.app.state.payments


def get_http(request: Request) -> httpx.AsyncClient:
    http = getattr(request.app.state, "http", None)
    if http is None:
        raise RuntimeError("HTTP client not initialized")
    return http


def get_hub(request: Request):
    return request.app.state.hub
