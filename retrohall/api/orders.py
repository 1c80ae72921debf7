import httpx
from fastapi import APIRouter, Depends
from loguru import logger

from ..auth import CurrentUser, current_user
from ..deps import get_adapter, get_db, get_http
from ..infra.sql import GatedAsyncSession
from ..infra.timings import timeit
from ..model import orders
from ..payments import PaymentAdapter
from ..schemas import OrderRequestCreate

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("")
async def create_order_request(
    body: OrderRequestCreate,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return await orders.create_order_request(
        db, user.id, body.product_id, body.quantity
    )


@router.get("")
async def list_my_orders(
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    return {"items": await orders.list_user_orders(db, user.id)}


# polled by the app after returning from checkout
@router.get("/{order_id}")
async def get_my_order(
    order_id: str,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    async with timeit("db.get_order"):
        return await orders.get_order(db, order_id, user_id=user.id)


@router.post("/{order_id}/cancel")
async def cancel_my_order(
    order_id: str,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    res = await orders.cancel_user_order(db, user.id, order_id)
    return {"order": res["order"], "restored": res["restored"]}


@router.post("/{order_id}/checkout")
async def create_checkout_session(
    order_id: str,
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
    adapter: PaymentAdapter = Depends(get_adapter),
    http: httpx.AsyncClient = Depends(get_http),
):
    line_items = await orders.checkout_line_items(db, user.id, order_id)

    async with timeit("payments.create_session"):
        session = await adapter.create_session(
            http, order_id, user.id, line_items
        )
    csid = session["checkout_session_id"]
    url = session["redirect_url"]

    async with timeit("db.save_checkout_session"):
        await orders.save_checkout_session(db, user.id, order_id, csid, url)

    logger.info(
        "checkout session {} ({}) opened for order {}",
        csid, adapter.name, order_id,
    )
    return {"url": url, "id": csid}
