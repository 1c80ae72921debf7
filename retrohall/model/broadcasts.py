# model/broadcasts.py
from __future__ import annotations
from typing import Any, Dict, List

import httpx
from fastapi import HTTPException
from loguru import logger
from sqlalchemy import select

from .. import config
from ..infra.sql import GatedAsyncSession
from ..infra.timings import timeit
from ..push import send_expo_push
from .db import BROADCAST_TYPES, Broadcast, UserProfile, to_dict
from .notifications import insert_many, new_notification, publish


async def send_broadcast(
    db: GatedAsyncSession,
    http: httpx.AsyncClient,
    hub,
    created_by: str,
    title: str,
    message: str,
    type: str = "broadcast",
) -> Dict[str, Any]:
    """
    1. audit row in `broadcasts`
    2. one notification per user profile
    3. Expo push to every registered token (best-effort)
    """
    title = (title or "").strip()
    message = (message or "").strip()
    if not title or not message:
        raise HTTPException(400, detail="Please enter a title and message.")
    if type not in BROADCAST_TYPES:
        raise HTTPException(400, detail=f"Unknown broadcast type: {type}")

    audit = Broadcast(
        title=title, message=message, type=type, created_by=created_by
    )
    async with db.gated():
        async with db.session.begin():
            db.session.add(audit)
            recipients = (await db.session.execute(
                select(UserProfile.id, UserProfile.expo_push_token)
            )).all()

    ids = [uid for uid, _ in recipients if uid]
    if not ids:
        raise HTTPException(
            400,
            detail="No user profiles were found to receive this broadcast.",
        )

    rows = [
        new_notification(uid, title, message, "broadcast", audit.id)
        for uid in ids
    ]
    async with timeit("db.broadcast_notifications"):
        await insert_many(db, rows)
    await publish(hub, rows)

    tokens = [t for _, t in recipients if isinstance(t, str) and t]
    pushed = await send_expo_push(http, tokens, title, message) if tokens else 0

    logger.info(
        "broadcast {} ({}) sent to {} user(s), {} push message(s)",
        audit.id, type, len(ids), pushed,
    )
    return {
        "broadcast": to_dict(audit),
        "recipients": len(ids),
        "pushed": pushed,
    }


async def history(db: GatedAsyncSession) -> List[Dict[str, Any]]:
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(Broadcast)
                .order_by(Broadcast.created_at.desc())
                .limit(config.BROADCAST_HISTORY_LIMIT)
            )).scalars().all()
    return [to_dict(r) for r in rows]
