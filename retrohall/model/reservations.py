# model/reservations.py
from __future__ import annotations
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from .. import config
from ..infra.sql import GatedAsyncSession
from ..infra.timings import timeit
from .db import (
    RESERVATION_STATUSES, Event, TableReservation, UserProfile, to_dict,
)


def _check_date(value: str) -> str:
    try:
        return date.fromisoformat(value.strip()).isoformat()
    except ValueError:
        raise HTTPException(400, detail="reservation_date must be YYYY-MM-DD")


async def _active_in_slot(
    db: GatedAsyncSession, reservation_date: str, time_slot: str
) -> int:
    return int((await db.session.execute(
        select(func.count(TableReservation.id)).where(
            TableReservation.reservation_date == reservation_date,
            TableReservation.time_slot == time_slot,
            TableReservation.status == "active",
        )
    )).scalar_one())


async def create_reservation(
    db: GatedAsyncSession,
    user_id: str,
    reservation_date: str,
    time_slot: str,
    party_size: int,
    notes: Optional[str] = None,
    event_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Book a table slot. The slot capacity check and the insert share one
    transaction; concurrent bookings across workers can still overshoot by
    the number of racing requests.
    """
    day = _check_date(reservation_date)
    if time_slot not in config.TIME_SLOTS:
        raise HTTPException(400, detail=f"Unknown time slot: {time_slot}")
    if not (config.PARTY_SIZE_MIN <= party_size <= config.PARTY_SIZE_MAX):
        raise HTTPException(
            400,
            detail=f"party_size must be between {config.PARTY_SIZE_MIN} "
                   f"and {config.PARTY_SIZE_MAX}",
        )

    async with timeit("db.create_reservation"):
        async with db.gated():
            async with db.session.begin():
                if event_id and await db.session.get(Event, event_id) is None:
                    raise HTTPException(404, detail="Event not found")
                taken = await _active_in_slot(db, day, time_slot)
                if taken >= config.MAX_TABLES_PER_SLOT:
                    raise HTTPException(
                        409,
                        detail="That time slot is full. "
                               "Try a different time.",
                    )
                row = TableReservation(
                    user_id=user_id,
                    event_id=event_id or None,
                    reservation_date=day,
                    time_slot=time_slot,
                    party_size=party_size,
                    notes=(notes or "").strip() or None,
                    status="active",
                )
                db.session.add(row)

    logger.info(
        "reservation {} booked: {} {} party={} ({} already in slot)",
        row.id, day, time_slot, party_size, taken,
    )
    return to_dict(row)


async def list_user_reservations(
    db: GatedAsyncSession, user_id: str
) -> List[Dict[str, Any]]:
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(TableReservation)
                .where(TableReservation.user_id == user_id)
                .order_by(TableReservation.reservation_date,
                          TableReservation.time_slot)
            )).scalars().all()
    return [to_dict(r) for r in rows]


async def _set_status(
    db: GatedAsyncSession,
    reservation_id: str,
    status: str,
    user_id: Optional[str] = None,
    allowed_from: Optional[Tuple[str, ...]] = None,
) -> Dict[str, Any]:
    async with db.gated():
        async with db.session.begin():
            q = select(TableReservation).where(
                TableReservation.id == reservation_id
            )
            if user_id is not None:
                q = q.where(TableReservation.user_id == user_id)
            row = (await db.session.execute(q)).scalar_one_or_none()
            if row is None:
                raise HTTPException(404, detail="Reservation not found")

            prev = row.status
            if allowed_from is not None and prev not in allowed_from:
                raise HTTPException(
                    409,
                    detail=f"Cannot move reservation from {prev} to {status}",
                )
            res = await db.session.execute(
                update(TableReservation)
                .where(
                    TableReservation.id == reservation_id,
                    TableReservation.status == prev,
                )
                .values(status=status)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise HTTPException(
                    409, detail="Reservation was modified, retry"
                )
    out = to_dict(row)
    out["status"] = status
    return out


async def cancel_user_reservation(
    db: GatedAsyncSession, user_id: str, reservation_id: str
) -> Dict[str, Any]:
    """Customers can only cancel bookings that are still active."""
    return await _set_status(
        db, reservation_id, "cancelled", user_id=user_id,
        allowed_from=("active",),
    )


async def complete_reservation(
    db: GatedAsyncSession, reservation_id: str
) -> Dict[str, Any]:
    return await _set_status(db, reservation_id, "completed")


async def cancel_reservation(
    db: GatedAsyncSession, reservation_id: str
) -> Dict[str, Any]:
    return await _set_status(db, reservation_id, "cancelled")


# ------------------------------------------------------------------------------
# Admin
# ------------------------------------------------------------------------------

async def _profiles_for(
    db: GatedAsyncSession, user_ids: List[str]
) -> Dict[str, Dict[str, Any]]:
    if not user_ids:
        return {}
    rows = (await db.session.execute(
        select(UserProfile.id, UserProfile.email, UserProfile.display_name)
        .where(UserProfile.id.in_(user_ids))
    )).mappings().all()
    return {r["id"]: dict(r) for r in rows}


async def admin_list(
    db: GatedAsyncSession,
    reservation_date: Optional[str] = None,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    q = (
        select(TableReservation, Event.title)
        .outerjoin(Event, Event.id == TableReservation.event_id)
        .order_by(TableReservation.reservation_date,
                  TableReservation.time_slot)
    )
    if reservation_date and reservation_date.strip():
        q = q.where(
            TableReservation.reservation_date == _check_date(reservation_date)
        )
    if status and status != "all":
        if status not in RESERVATION_STATUSES:
            raise HTTPException(400, detail=f"Unknown status: {status}")
        q = q.where(TableReservation.status == status)

    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(q)).all()
            items = []
            for res, event_title in rows:
                d = to_dict(res)
                d["event_title"] = event_title
                items.append(d)
            user_ids = sorted({r["user_id"] for r in items if r["user_id"]})
            profiles = await _profiles_for(db, user_ids)
    return {"items": items, "profiles": profiles}


async def admin_get(
    db: GatedAsyncSession, reservation_id: str
) -> Dict[str, Any]:
    async with db.gated():
        async with db.session.begin():
            row = (await db.session.execute(
                select(TableReservation, Event.title)
                .outerjoin(Event, Event.id == TableReservation.event_id)
                .where(TableReservation.id == reservation_id)
            )).first()
            if row is None:
                raise HTTPException(404, detail="Reservation not found")
            res, event_title = row
            profile = (await _profiles_for(db, [res.user_id])).get(
                res.user_id
            )
    out = to_dict(res)
    out["event_title"] = event_title
    out["profile"] = profile
    return out


async def admin_update(
    db: GatedAsyncSession,
    reservation_id: str,
    *,
    status: str,
    table_number: Optional[int] = None,
    notes: Optional[str] = None,
    cancel_reason: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Assign a table / change status. A table can only be held by one active
    reservation per date+slot; the read check gives a readable error and the
    partial unique index catches whatever slips past it.
    """
    if status not in RESERVATION_STATUSES:
        raise HTTPException(400, detail=f"Unknown status: {status}")
    if table_number is not None and not (
        config.TABLE_NUMBER_MIN <= table_number <= config.TABLE_NUMBER_MAX
    ):
        raise HTTPException(
            400, detail="Invalid table number. Use a number like 1, 2, 3..."
        )

    try:
        async with db.gated():
            async with db.session.begin():
                res = await db.session.get(TableReservation, reservation_id)
                if res is None:
                    raise HTTPException(404, detail="Reservation not found")

                day, slot = res.reservation_date, res.time_slot
                if status == "active" and res.status != "active":
                    taken = await _active_in_slot(db, day, slot)
                    if taken >= config.MAX_TABLES_PER_SLOT:
                        raise HTTPException(
                            409,
                            detail=f"{day} at {slot} is full. "
                                   "Cancel another booking first.",
                        )
                if table_number is not None and status == "active":
                    clash = (await db.session.execute(
                        select(TableReservation.id).where(
                            TableReservation.reservation_date == day,
                            TableReservation.time_slot == slot,
                            TableReservation.table_number == table_number,
                            TableReservation.status == "active",
                            TableReservation.id != res.id,
                        ).limit(1)
                    )).first()
                    if clash is not None:
                        raise HTTPException(409, detail=_taken_msg(
                            table_number, day, slot
                        ))

                res.status = status
                res.table_number = table_number
                res.notes = (notes or "").strip() or None
                res.cancel_reason = (cancel_reason or "").strip() or None
                await db.session.flush()
    except IntegrityError:
        raise HTTPException(409, detail=_taken_msg(table_number, day, slot))

    logger.info(
        "reservation {} updated: status={} table={}",
        reservation_id, status, table_number,
    )
    return await admin_get(db, reservation_id)


def _taken_msg(table_number, day: str, slot: str) -> str:
    return (
        f"Table {table_number} is already assigned for {day} at {slot}. "
        "Choose a different table number."
    )
