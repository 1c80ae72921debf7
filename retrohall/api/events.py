from typing import Optional

from fastapi import APIRouter, Depends

from ..auth import CurrentUser, current_user, optional_user
from ..deps import get_db, get_hub
from ..infra.sql import GatedAsyncSession
from ..model import events

router = APIRouter(prefix="/api/events", tags=["events"])


@router.get("")
async def list_events(
    user: Optional[CurrentUser] = Depends(optional_user),
    db: GatedAsyncSession = Depends(get_db),
):
    items = await events.list_events(db, user.id if user else None)
    return {"items": items}


@router.get("/{event_id}")
async def get_event(
    event_id: str,
    user: Optional[CurrentUser] = Depends(optional_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return await events.get_event(db, event_id, user.id if user else None)


@router.post("/{event_id}/join")
async def join_event(
    event_id: str,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
    hub=Depends(get_hub),
):
    return await events.join_event(db, hub, user.id, event_id)


@router.delete("/{event_id}/join")
async def leave_event(
    event_id: str,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return await events.leave_event(db, user.id, event_id)
