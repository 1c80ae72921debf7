# model/notifications.py
from __future__ import annotations
from typing import Any, Dict, List, Optional, Sequence

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import delete, select

from .. import config
from ..helpers import chunk
from ..infra.sql import GatedAsyncSession
from .db import Notification, to_dict


def new_notification(
    user_id: str,
    title: str,
    message: str,
    type: str = "general",
    related_id: Optional[str] = None,
) -> Notification:
    return Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        related_id=related_id,
        read=False,
    )


async def publish(hub, rows: Sequence[Notification]) -> None:
    """Push committed rows to live subscribers; a hub failure never fails
    the write that produced them."""
    if hub is None:
        return
    for row in rows:
        try:
            await hub.publish(row.user_id, to_dict(row))
        except Exception as e:
            logger.warning(
                "notification publish failed for user {}: {}", row.user_id, e
            )


async def insert_many(
    db: GatedAsyncSession, rows: List[Notification]
) -> int:
    """Bulk insert in chunks; each chunk is its own transaction."""
    n = 0
    for part in chunk(rows, config.NOTIFICATION_CHUNK):
        async with db.gated():
            async with db.session.begin():
                db.session.add_all(list(part))
        n += len(part)
    return n


async def list_user_notifications(
    db: GatedAsyncSession, user_id: str
) -> List[Dict[str, Any]]:
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(Notification)
                .where(Notification.user_id == user_id)
                .order_by(Notification.created_at.desc())
            )).scalars().all()
    return [to_dict(r) for r in rows]


async def delete_user_notification(
    db: GatedAsyncSession, user_id: str, notification_id: str
) -> None:
    async with db.gated():
        async with db.session.begin():
            res = await db.session.execute(
                delete(Notification).where(
                    Notification.id == notification_id,
                    Notification.user_id == user_id,
                )
            )
    if res.rowcount == 0:
        raise HTTPException(404, detail="Notification not found")
