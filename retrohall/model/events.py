# model/events.py
from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from .. import config
from ..helpers import parse_event_date
from ..infra.sql import GatedAsyncSession
from ..infra.timings import timeit
from .db import Event, EventAttendee, to_dict
from .notifications import new_notification, publish


def _counts_subquery():
    return (
        select(
            EventAttendee.event_id,
            func.count(EventAttendee.id).label("participant_count"),
        )
        .group_by(EventAttendee.event_id)
        .subquery()
    )


async def _joined_ids(
    db: GatedAsyncSession, user_id: Optional[str]
) -> set[str]:
    if not user_id:
        return set()
    return set((await db.session.execute(
        select(EventAttendee.event_id).where(EventAttendee.user_id == user_id)
    )).scalars().all())


def _with_counts(event: Event, count, joined: set[str]) -> Dict[str, Any]:
    d = to_dict(event)
    d["participant_count"] = int(count or 0)
    d["is_joined"] = event.id in joined
    return d


async def list_events(
    db: GatedAsyncSession, user_id: Optional[str] = None
) -> List[Dict[str, Any]]:
    counts = _counts_subquery()
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(Event, counts.c.participant_count)
                .outerjoin(counts, counts.c.event_id == Event.id)
                .order_by(Event.date)
            )).all()
            joined = await _joined_ids(db, user_id)
    return [_with_counts(ev, n, joined) for ev, n in rows]


async def get_event(
    db: GatedAsyncSession, event_id: str, user_id: Optional[str] = None
) -> Dict[str, Any]:
    async with db.gated():
        async with db.session.begin():
            ev = await db.session.get(Event, event_id)
            if ev is None:
                raise HTTPException(404, detail="Event not found")
            n = (await db.session.execute(
                select(func.count(EventAttendee.id))
                .where(EventAttendee.event_id == event_id)
            )).scalar_one()
            joined = await _joined_ids(db, user_id)
    return _with_counts(ev, n, joined)


async def join_event(
    db: GatedAsyncSession, hub, user_id: str, event_id: str
) -> Dict[str, Any]:
    """
    Capacity check and insert run in one transaction; the unique
    (event_id, user_id) constraint turns a double join into 409.
    """
    try:
        async with timeit("db.join_event"):
            async with db.gated():
                async with db.session.begin():
                    ev = await db.session.get(Event, event_id)
                    if ev is None:
                        raise HTTPException(404, detail="Event not found")
                    n = (await db.session.execute(
                        select(func.count(EventAttendee.id))
                        .where(EventAttendee.event_id == event_id)
                    )).scalar_one()
                    if n >= ev.max_attendees:
                        raise HTTPException(409, detail="This event is full")
                    db.session.add(
                        EventAttendee(event_id=event_id, user_id=user_id)
                    )
                    await db.session.flush()
                    note = new_notification(
                        user_id,
                        "Event Joined!",
                        f"You're signed up for {ev.title}.",
                        type="event",
                        related_id=event_id,
                    )
                    db.session.add(note)
                    title = ev.title
    except IntegrityError:
        raise HTTPException(409, detail="You already joined this event")

    await publish(hub, [note])
    logger.info("user {} joined event {} ({})", user_id, event_id, title)
    return {"ok": True, "participant_count": int(n) + 1}


async def leave_event(
    db: GatedAsyncSession, user_id: str, event_id: str
) -> Dict[str, Any]:
    async with db.gated():
        async with db.session.begin():
            res = await db.session.execute(
                delete(EventAttendee).where(
                    EventAttendee.event_id == event_id,
                    EventAttendee.user_id == user_id,
                )
            )
    return {"ok": True, "left": res.rowcount > 0}


# ------------------------------------------------------------------------------
# Admin
# ------------------------------------------------------------------------------

def _event_values(
    title: str,
    location: str,
    date: str,
    description: Optional[str],
    max_attendees: Optional[int],
    game_type: Optional[str],
    image_url: Optional[str],
) -> Dict[str, Any]:
    title = (title or "").strip()
    location = (location or "").strip()
    if not title or not location or not (date or "").strip():
        raise HTTPException(
            400, detail="Title, location and date are required"
        )
    when = parse_event_date(date)
    if when is None:
        raise HTTPException(
            400, detail="Invalid date. Use YYYY-MM-DD HH:MM"
        )
    if max_attendees is None:
        max_attendees = config.DEFAULT_MAX_ATTENDEES
    if max_attendees <= 0:
        raise HTTPException(400, detail="max_attendees must be positive")
    return {
        "title": title,
        "location": location,
        "date": when.timestamp(),
        "description": (description or "").strip(),
        "max_attendees": max_attendees,
        "game_type": (game_type or "").strip() or config.DEFAULT_GAME_TYPE,
        "image_url": (image_url or "").strip() or None,
    }


async def create_event(
    db: GatedAsyncSession, created_by: str, **fields
) -> Dict[str, Any]:
    values = _event_values(**fields)
    ev = Event(created_by=created_by, **values)
    async with db.gated():
        async with db.session.begin():
            db.session.add(ev)
    logger.info("event {} created by {}: {}", ev.id, created_by, ev.title)
    return to_dict(ev)


async def update_event(
    db: GatedAsyncSession, event_id: str, **fields
) -> Dict[str, Any]:
    values = _event_values(**fields)
    async with db.gated():
        async with db.session.begin():
            ev = await db.session.get(Event, event_id)
            if ev is None:
                raise HTTPException(404, detail="Event not found")
            for k, v in values.items():
                setattr(ev, k, v)
    return to_dict(ev)


async def delete_event(db: GatedAsyncSession, event_id: str) -> None:
    async with db.gated():
        async with db.session.begin():
            res = await db.session.execute(
                delete(Event).where(Event.id == event_id)
            )
    if res.rowcount == 0:
        raise HTTPException(404, detail="Event not found")
    logger.info("event {} deleted", event_id)
