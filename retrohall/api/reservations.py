from fastapi import APIRouter, Depends

from .. import config
from ..auth import CurrentUser, current_user
from ..deps import get_db
from ..infra.sql import GatedAsyncSession
from ..model import reservations
from ..schemas import ReservationCreate

router = APIRouter(prefix="/api/reservations", tags=["reservations"])


@router.get("/slots")
async def time_slots():
    return {
        "time_slots": config.TIME_SLOTS,
        "max_tables_per_slot": config.MAX_TABLES_PER_SLOT,
        "party_size": [config.PARTY_SIZE_MIN, config.PARTY_SIZE_MAX],
    }


@router.post("")
async def create_reservation(
    body: ReservationCreate,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return await reservations.create_reservation(
        db,
        user.id,
        body.reservation_date,
        body.time_slot,
        body.party_size,
        notes=body.notes,
        event_id=body.event_id,
    )


@router.get("")
async def list_my_reservations(
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return {"items": await reservations.list_user_reservations(db, user.id)}


@router.post("/{reservation_id}/cancel")
async def cancel_my_reservation(
    reservation_id: str,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return await reservations.cancel_user_reservation(
        db, user.id, reservation_id
    )
