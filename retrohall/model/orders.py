# model/orders.py
"""
Order lifecycle:

    pending -> paid -> fulfilled
    pending -> cancelled | refunded
    paid    -> cancelled | refunded
    fulfilled -> refunded

Every transition is a conditional UPDATE guarded on the previous status, so a
given transition happens at most once (an order cannot be paid twice, stock is
restored at most once). Moving into a terminal status (cancelled/refunded)
restores stock for every item unless the order was a preorder.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from loguru import logger
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..helpers import now_ts, to_cents
from ..infra.sql import GatedAsyncSession
from ..infra.timings import timeit
from ..payments import LineItem
from .db import (
    ORDER_STATUSES, ORDER_TERMINAL, Order, OrderItem, Product,
    WebhookEventSeen, to_dict,
)

TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "pending": ("paid", "fulfilled", "cancelled", "refunded"),
    "paid": ("fulfilled", "cancelled", "refunded"),
    "fulfilled": ("refunded",),
    "cancelled": (),
    "refunded": (),
}

FALLBACK_ITEM_NAME = "Retro Hall Item"


# ------------------------------------------------------------------------------
# Create
# ------------------------------------------------------------------------------

async def create_order_request(
    db: GatedAsyncSession, user_id: str, product_id: str, quantity: int = 1,
) -> Dict[str, Any]:
    """
    Reserve stock when enough is on hand, otherwise record a preorder.
    Returns {order_id, status, total, is_preorder}.
    """
    if quantity < 1:
        raise HTTPException(400, detail="quantity must be at least 1")

    async with timeit("db.create_order_request"):
        async with db.gated():
            async with db.session.begin():
                product = await db.session.get(Product, product_id)
                if product is None:
                    raise HTTPException(404, detail="Product not found")

                # only take stock if it cannot go negative
                res = await db.session.execute(
                    update(Product)
                    .where(
                        Product.id == product_id,
                        Product.stock_qty >= quantity,
                    )
                    .values(stock_qty=Product.stock_qty - quantity)
                    .execution_options(synchronize_session=False)
                )
                is_preorder = res.rowcount != 1

                order = Order(
                    user_id=user_id,
                    status="pending",
                    total=round(float(product.price) * quantity, 2),
                    is_preorder=is_preorder,
                    notes="Preorder" if is_preorder else None,
                )
                db.session.add(order)
                await db.session.flush()
                db.session.add(OrderItem(
                    order_id=order.id,
                    product_id=product.id,
                    quantity=quantity,
                    unit_price=float(product.price),
                ))

    logger.info(
        "order {} created for user {} (product={} qty={} preorder={})",
        order.id, user_id, product_id, quantity, is_preorder,
    )
    return {
        "order_id": order.id,
        "status": order.status,
        "total": order.total,
        "is_preorder": is_preorder,
    }


# ------------------------------------------------------------------------------
# Reads
# ------------------------------------------------------------------------------

async def _items_with_products(
    db: GatedAsyncSession, order_id: str
) -> List[Dict[str, Any]]:
    rows = (await db.session.execute(
        select(OrderItem, Product)
        .outerjoin(Product, Product.id == OrderItem.product_id)
        .where(OrderItem.order_id == order_id)
        .order_by(OrderItem.created_at)
    )).all()
    out = []
    for item, product in rows:
        d = to_dict(item)
        d["product"] = to_dict(product) if product is not None else None
        out.append(d)
    return out


async def list_user_orders(
    db: GatedAsyncSession, user_id: str
) -> List[Dict[str, Any]]:
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(
                select(Order)
                .where(Order.user_id == user_id)
                .order_by(Order.created_at.desc())
            )).scalars().all()
    return [to_dict(o) for o in rows]


async def get_order(
    db: GatedAsyncSession, order_id: str, user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Order with its items. `user_id` scopes the lookup to one owner."""
    async with db.gated():
        async with db.session.begin():
            q = select(Order).where(Order.id == order_id)
            if user_id is not None:
                q = q.where(Order.user_id == user_id)
            order = (await db.session.execute(q)).scalar_one_or_none()
            if order is None:
                raise HTTPException(404, detail="Order not found")
            items = await _items_with_products(db, order_id)
    out = to_dict(order)
    out["items"] = items
    return out


async def list_orders(
    db: GatedAsyncSession,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 200,
) -> List[Dict[str, Any]]:
    q = select(Order).order_by(Order.created_at.desc())
    if status and status != "all":
        q = q.where(Order.status == status)
    if search and search.strip():
        s = f"%{search.strip().lower()}%"
        q = q.where(or_(Order.id.ilike(s), Order.user_id.ilike(s)))
    q = q.limit(max(1, min(limit, 500)))
    async with db.gated():
        async with db.session.begin():
            rows = (await db.session.execute(q)).scalars().all()
    return [to_dict(o) for o in rows]


# ------------------------------------------------------------------------------
# Transitions
# ------------------------------------------------------------------------------

async def restore_stock(
    db: GatedAsyncSession, items: List[Tuple[Optional[str], int]]
) -> int:
    """
    Put item quantities back on the shelf, best-effort per item: a failing
    item is logged and the remaining ones are still restored.
    Returns the number of items restored.
    """
    restored = 0
    for product_id, qty in items:
        if not product_id or qty <= 0:
            continue
        try:
            async with db.gated():
                async with db.session.begin():
                    await db.session.execute(
                        update(Product)
                        .where(Product.id == product_id)
                        .values(stock_qty=Product.stock_qty + qty)
                        .execution_options(synchronize_session=False)
                    )
            restored += 1
        except SQLAlchemyError as e:
            logger.warning(
                "stock restore failed for product {} (+{}): {}",
                product_id, qty, e,
            )
    return restored


async def _transition(
    db: GatedAsyncSession,
    order_id: str,
    next_status: str,
    user_id: Optional[str] = None,
    allowed_from: Optional[Tuple[str, ...]] = None,
) -> Dict[str, Any]:
    async with db.gated():
        async with db.session.begin():
            q = select(Order).where(Order.id == order_id)
            if user_id is not None:
                q = q.where(Order.user_id == user_id)
            order = (await db.session.execute(q)).scalar_one_or_none()
            if order is None:
                raise HTTPException(404, detail="Order not found")

            prev = order.status
            if next_status == prev:
                return {"order": to_dict(order), "changed": False,
                        "restored": 0}

            allowed = (
                allowed_from if allowed_from is not None
                else tuple(s for s, nxt in TRANSITIONS.items()
                           if next_status in nxt)
            )
            if prev not in allowed:
                raise HTTPException(
                    409,
                    detail=f"Cannot move order from {prev} to {next_status}",
                )

            ts = now_ts()
            values: Dict[str, Any] = {"status": next_status, "updated_at": ts}
            if next_status == "paid":
                values["paid_at"] = ts
            res = await db.session.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == prev)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise HTTPException(409, detail="Order was modified, retry")

            items = [
                (pid, int(qty)) for pid, qty in (await db.session.execute(
                    select(OrderItem.product_id, OrderItem.quantity)
                    .where(OrderItem.order_id == order_id)
                )).all()
            ]
            out = to_dict(order)
            out.update({k: v for k, v in values.items()
                        if k not in ("updated_at", "paid_at")})

    restored = 0
    if (next_status in ORDER_TERMINAL and prev not in ORDER_TERMINAL
            and not order.is_preorder):
        restored = await restore_stock(db, items)

    logger.info(
        "order {}: {} -> {} (restored {} item(s))",
        order_id, prev, next_status, restored,
    )
    return {"order": out, "changed": True, "restored": restored}


async def cancel_user_order(
    db: GatedAsyncSession, user_id: str, order_id: str
) -> Dict[str, Any]:
    """Customers can only withdraw requests that are still pending."""
    return await _transition(
        db, order_id, "cancelled", user_id=user_id, allowed_from=("pending",)
    )


async def set_status(
    db: GatedAsyncSession, order_id: str, next_status: str
) -> Dict[str, Any]:
    if next_status not in ORDER_STATUSES:
        raise HTTPException(400, detail=f"Unknown status: {next_status}")
    return await _transition(db, order_id, next_status)


# ------------------------------------------------------------------------------
# Checkout & webhook
# ------------------------------------------------------------------------------

async def checkout_line_items(
    db: GatedAsyncSession, user_id: str, order_id: str
) -> List[LineItem]:
    """Validate an order for payment and build provider line items."""
    async with db.gated():
        async with db.session.begin():
            order = (await db.session.execute(
                select(Order).where(
                    Order.id == order_id, Order.user_id == user_id
                )
            )).scalar_one_or_none()
            if order is None:
                raise HTTPException(404, detail="Order not found")
            if float(order.total) <= 0:
                raise HTTPException(400, detail="Order total must be > 0")
            if order.status != "pending":
                raise HTTPException(
                    400,
                    detail="Order status must be pending to pay "
                           f"(got {order.status})",
                )
            items = await _items_with_products(db, order_id)

    line_items: List[LineItem] = []
    for it in items:
        product = it["product"] or {}
        line_items.append({
            "name": product.get("title") or FALLBACK_ITEM_NAME,
            "description": (
                f"System: {product['system']}"
                if product.get("system") else None
            ),
            "image_url": product.get("image_url") or None,
            "unit_amount": to_cents(it["unit_price"]),
            "quantity": int(it["quantity"] or 1),
        })
    return line_items


async def save_checkout_session(
    db: GatedAsyncSession, user_id: str, order_id: str,
    session_id: str, url: str,
) -> None:
    async with db.gated():
        async with db.session.begin():
            await db.session.execute(
                update(Order)
                .where(Order.id == order_id, Order.user_id == user_id)
                .values(
                    checkout_session_id=session_id,
                    checkout_url=url,
                    updated_at=now_ts(),
                )
                .execution_options(synchronize_session=False)
            )


async def find_by_checkout_session(
    db: GatedAsyncSession, session_id: str
) -> Optional[Dict[str, Any]]:
    async with db.gated():
        async with db.session.begin():
            order = (await db.session.execute(
                select(Order).where(Order.checkout_session_id == session_id)
            )).scalar_one_or_none()
    return to_dict(order) if order is not None else None


async def apply_payment_event(
    db: GatedAsyncSession,
    *,
    kind: str,
    event_id: Optional[str],
    session_id: str,
    order_id: Optional[str],
    payment_intent: Optional[str],
) -> Dict[str, Any]:
    """
    Record the event id and apply it in one transaction, so a replayed event
    is a no-op. `completed` pays a pending order; `expired` clears the
    checkout url of the session that expired.
    """
    if not order_id:
        raise HTTPException(400, detail="missing order_id")
    recorded = False
    try:
        async with db.gated():
            async with db.session.begin():
                if event_id:
                    db.session.add(WebhookEventSeen(idempotency_key=event_id))
                    await db.session.flush()
                recorded = True

                order = await db.session.get(Order, order_id)
                if order is None:
                    logger.warning("webhook for unknown order {}", order_id)
                    return {"ok": True, "order_status": None}

                ts = now_ts()
                if kind == "completed":
                    res = await db.session.execute(
                        update(Order)
                        .where(Order.id == order_id, Order.status == "pending")
                        .values(
                            status="paid",
                            paid_at=ts,
                            updated_at=ts,
                            payment_intent_id=payment_intent,
                            checkout_session_id=session_id or None,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if res.rowcount != 1:
                        logger.warning(
                            "payment for order {} ignored (status {})",
                            order_id, order.status,
                        )
                        return {"ok": True, "order_status": order.status,
                                "ignored": True}
                    logger.info("order {} paid ({})", order_id, session_id)
                    return {"ok": True, "order_status": "paid"}

                if kind == "expired":
                    await db.session.execute(
                        update(Order)
                        .where(
                            Order.id == order_id,
                            Order.checkout_session_id == session_id,
                        )
                        .values(checkout_url=None, updated_at=ts)
                        .execution_options(synchronize_session=False)
                    )
                    return {"ok": True, "order_status": order.status}

                return {"ok": True, "order_status": order.status,
                        "ignored": True}
    except IntegrityError:
        await db.session.rollback()
        if not recorded:
            # replay of an event we already applied
            return {"ok": True, "idempotent": True}
        logger.error(
            "checkout session {} already belongs to another order ({})",
            session_id, order_id,
        )
        raise HTTPException(
            409, detail="Checkout session belongs to another order"
        )
