# model/analytics.py
from __future__ import annotations
from collections import Counter
from datetime import date, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, select

from .. import config
from ..helpers import now_ts, to_iso
from ..infra.sql import GatedAsyncSession
from .db import Event, EventAttendee, Product, TableReservation


async def dashboard(
    db: GatedAsyncSession, today: Optional[date] = None
) -> Dict[str, int]:
    day = (today or date.today()).isoformat()

    def count(model, *where):
        return select(func.count(model.id)).where(*where)

    async with db.gated():
        async with db.session.begin():
            products = (await db.session.execute(count(Product))).scalar_one()
            events = (await db.session.execute(count(Event))).scalar_one()
            today_n = (await db.session.execute(count(
                TableReservation,
                TableReservation.reservation_date == day,
            ))).scalar_one()
            active_n = (await db.session.execute(count(
                TableReservation, TableReservation.status == "active",
            ))).scalar_one()
    return {
        "products": int(products),
        "events": int(events),
        "reservations_today": int(today_n),
        "active_reservations": int(active_n),
    }


async def reservation_stats(
    db: GatedAsyncSession, today: Optional[date] = None
) -> Dict[str, Any]:
    start = (
        (today or date.today())
        - timedelta(days=config.ANALYTICS_RESERVATION_DAYS)
    ).isoformat()
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(
                    TableReservation.reservation_date,
                    TableReservation.time_slot,
                    TableReservation.status,
                )
                .where(TableReservation.reservation_date >= start)
                .order_by(TableReservation.reservation_date)
            )).all()

    statuses = Counter((status or "active") for _, _, status in rows)
    by_day = Counter(day for day, _, _ in rows)
    by_slot = Counter(
        (slot or "").strip() or "Unknown" for _, slot, _ in rows
    )
    return {
        "since": start,
        "total": len(rows),
        "active": statuses["active"],
        "completed": statuses["completed"],
        "cancelled": statuses["cancelled"],
        "no_show": statuses["no_show"],
        "by_day": [
            {"date": d, "count": n} for d, n in sorted(by_day.items())
        ],
        "by_slot": [
            {"slot": s, "count": n}
            for s, n in by_slot.most_common(config.ANALYTICS_TOP_SLOTS)
        ],
    }


async def top_events(
    db: GatedAsyncSession, now: Optional[float] = None
) -> list[Dict[str, Any]]:
    since = (now or now_ts()) - config.ANALYTICS_EVENT_DAYS * 86400
    attendees = func.count(EventAttendee.id).label("attendees")
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(Event.id, Event.title, Event.date, attendees)
                .outerjoin(EventAttendee, EventAttendee.event_id == Event.id)
                .where(Event.date >= since)
                .group_by(Event.id, Event.title, Event.date)
                .order_by(attendees.desc(), Event.date.desc())
                .limit(config.ANALYTICS_TOP_EVENTS)
            )).all()
    return [
        {"id": eid, "title": title, "date": to_iso(ts), "attendees": int(n)}
        for eid, title, ts, n in rows
    ]
