import asyncio

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from fastapi import WebSocketDisconnect
from loguru import logger

from ..auth import CurrentUser, current_user, decode_token
from ..deps import get_db
from ..infra.sql import GatedAsyncSession
from ..model import notifications, profiles
from ..schemas import ListingCreate, ProfileUpdate, PushTokenRegister

router = APIRouter(tags=["me"])


# ----------------------------
# Profile
# ----------------------------
@router.get("/api/me/profile")
async def get_my_profile(
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return await profiles.get_profile(db, user.id, user.email)


@router.put("/api/me/profile")
async def update_my_profile(
    body: ProfileUpdate,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return await profiles.update_profile(
        db, user.id, user.email, body.display_name, body.bio
    )


@router.post("/api/me/push-token")
async def register_push_token(
    body: PushTokenRegister,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return await profiles.register_push_token(
        db, user.id, user.email, body.token
    )


# ----------------------------
# Sell & trade
# ----------------------------
@router.get("/api/me/listings")
async def list_my_listings(
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return {"items": await profiles.list_user_listings(db, user.id)}


@router.post("/api/me/listings")
async def create_listing(
    body: ListingCreate,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return await profiles.create_listing(
        db,
        user.id,
        body.title,
        body.system,
        body.asking_price,
        condition=body.condition,
        category=body.category,
        description=body.description,
    )


@router.delete("/api/me/listings/{listing_id}")
async def delete_listing(
    listing_id: str,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    await profiles.delete_listing(db, user.id, listing_id)
    return {"ok": True}


# ----------------------------
# Notifications
# ----------------------------
@router.get("/api/notifications")
async def list_my_notifications(
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return {"items": await notifications.list_user_notifications(db, user.id)}


@router.delete("/api/notifications/{notification_id}")
async def delete_notification(
    notification_id: str,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    await notifications.delete_user_notification(db, user.id, notification_id)
    return {"ok": True}


@router.websocket("/ws/notifications")
async def notifications_ws(websocket: WebSocket, token: str = ""):
    """
    Pushes each notification inserted for the caller, as JSON. The first
    frame, {"type": "subscribed"}, is sent once the subscription is live.
    """
    try:
        user = decode_token(token)
    except HTTPException:
        await websocket.close(code=4401)
        return

    hub = websocket.app.state.hub
    await websocket.accept()
    async with hub.subscribe(user.id) as sub:
        await websocket.send_json({"type": "subscribed", "user_id": user.id})
        # a client disconnect ends the receive task
        closed = asyncio.create_task(_wait_closed(websocket))
        try:
            while not closed.done():
                nxt = asyncio.create_task(sub.get())
                done, _ = await asyncio.wait(
                    {nxt, closed}, return_when=asyncio.FIRST_COMPLETED
                )
                if nxt in done:
                    await websocket.send_json(nxt.result())
                else:
                    nxt.cancel()
        finally:
            closed.cancel()
    logger.debug("notification socket closed for user {}", user.id)


async def _wait_closed(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
