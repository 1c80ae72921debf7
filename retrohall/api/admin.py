from typing import Optional

import httpx
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response

from ..auth import CurrentUser, admin_row, current_user, require_admin
from ..auth import require_owner
from ..deps import get_db, get_http, get_hub
from ..helpers import today_str
from ..infra import timings
from ..infra.sql import GatedAsyncSession
from ..model import (
    admins, analytics, broadcasts, events, inventory, orders, products,
    reservations,
)
from ..schemas import (
    AdminPromote, AdminRoleChange, BroadcastCreate, EventFields,
    OrderStatusUpdate, ProductFields, ReservationUpdate, StockBump, StockSet,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/me")
async def admin_me(
    user: CurrentUser = Depends(current_user),
    db: GatedAsyncSession = Depends(get_db),
):
    row = await admin_row(db, user.id)
    return {
        "user_id": user.id,
        "is_admin": row is not None,
        "role": row.role if row is not None else None,
    }


@router.get("/timings", dependencies=[Depends(require_admin)])
async def api_timings():
    return {"items": timings.aggregates()}


# ----------------------------
# Products & inventory
# ----------------------------
@router.post("/products", dependencies=[Depends(require_admin)])
async def create_product(
    body: ProductFields, db: GatedAsyncSession = Depends(get_db)
):
    return await products.create_product(
        db, body.model_dump(exclude_unset=True)
    )


@router.patch("/products/{product_id}", dependencies=[Depends(require_admin)])
async def patch_product(
    product_id: str,
    body: ProductFields,
    db: GatedAsyncSession = Depends(get_db),
):
    return await products.patch_product(
        db, product_id, body.model_dump(exclude_unset=True)
    )


@router.delete("/products/{product_id}", dependencies=[Depends(require_admin)])
async def delete_product(
    product_id: str, db: GatedAsyncSession = Depends(get_db)
):
    await products.delete_product(db, product_id)
    return {"ok": True}


@router.get("/inventory", dependencies=[Depends(require_admin)])
async def get_inventory(
    filter: str = "all",
    search: Optional[str] = None,
    db: GatedAsyncSession = Depends(get_db),
):
    return await inventory.inventory(db, filter=filter, search=search)


@router.post(
    "/products/{product_id}/stock/bump", dependencies=[Depends(require_admin)]
)
async def bump_stock(
    product_id: str, body: StockBump, db: GatedAsyncSession = Depends(get_db)
):
    return await inventory.bump_stock(db, product_id, body.delta)


@router.put(
    "/products/{product_id}/stock", dependencies=[Depends(require_admin)]
)
async def set_stock(
    product_id: str, body: StockSet, db: GatedAsyncSession = Depends(get_db)
):
    return await inventory.set_stock(
        db, product_id, body.stock_qty, body.low_stock_threshold
    )


@router.post(
    "/products/{product_id}/featured", dependencies=[Depends(require_admin)]
)
async def toggle_featured(
    product_id: str, db: GatedAsyncSession = Depends(get_db)
):
    return await inventory.toggle_featured(db, product_id)


@router.get("/inventory/export", dependencies=[Depends(require_admin)])
async def export_inventory(db: GatedAsyncSession = Depends(get_db)):
    body = await inventory.export_csv(db)
    filename = f"retrohall_inventory_{today_str()}.csv"
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/inventory/import", dependencies=[Depends(require_admin)])
async def import_inventory(
    file: UploadFile = File(...), db: GatedAsyncSession = Depends(get_db)
):
    raw = await file.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(400, detail="CSV must be UTF-8")
    return await inventory.import_csv(db, text)


# ----------------------------
# Orders
# ----------------------------
@router.get("/orders", dependencies=[Depends(require_admin)])
async def list_orders(
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 200,
    db: GatedAsyncSession = Depends(get_db),
):
    items = await orders.list_orders(db, status=status, search=search,
                                     limit=limit)
    return {"items": items, "limit": limit}


@router.get("/orders/{order_id}", dependencies=[Depends(require_admin)])
async def get_order(order_id: str, db: GatedAsyncSession = Depends(get_db)):
    return await orders.get_order(db, order_id)


@router.put("/orders/{order_id}/status", dependencies=[Depends(require_admin)])
async def set_order_status(
    order_id: str,
    body: OrderStatusUpdate,
    db: GatedAsyncSession = Depends(get_db),
):
    return await orders.set_status(db, order_id, body.status)


# ----------------------------
# Events
# ----------------------------
@router.post("/events")
async def create_event(
    body: EventFields,
    user: CurrentUser = Depends(require_admin),
    db: GatedAsyncSession = Depends(get_db),
):
    return await events.create_event(db, user.id, **body.model_dump())


@router.put("/events/{event_id}", dependencies=[Depends(require_admin)])
async def update_event(
    event_id: str, body: EventFields, db: GatedAsyncSession = Depends(get_db)
):
    return await events.update_event(db, event_id, **body.model_dump())


@router.delete("/events/{event_id}", dependencies=[Depends(require_admin)])
async def delete_event(event_id: str, db: GatedAsyncSession = Depends(get_db)):
    await events.delete_event(db, event_id)
    return {"ok": True}


# ----------------------------
# Reservations
# ----------------------------
@router.get("/reservations", dependencies=[Depends(require_admin)])
async def list_reservations(
    date: Optional[str] = None,
    status: Optional[str] = None,
    db: GatedAsyncSession = Depends(get_db),
):
    return await reservations.admin_list(db, date, status)


@router.get(
    "/reservations/{reservation_id}", dependencies=[Depends(require_admin)]
)
async def get_reservation(
    reservation_id: str, db: GatedAsyncSession = Depends(get_db)
):
    return await reservations.admin_get(db, reservation_id)


@router.put(
    "/reservations/{reservation_id}", dependencies=[Depends(require_admin)]
)
async def update_reservation(
    reservation_id: str,
    body: ReservationUpdate,
    db: GatedAsyncSession = Depends(get_db),
):
    return await reservations.admin_update(
        db,
        reservation_id,
        status=body.status,
        table_number=body.table_number,
        notes=body.notes,
        cancel_reason=body.cancel_reason,
    )


@router.post(
    "/reservations/{reservation_id}/complete",
    dependencies=[Depends(require_admin)],
)
async def complete_reservation(
    reservation_id: str, db: GatedAsyncSession = Depends(get_db)
):
    return await reservations.complete_reservation(db, reservation_id)


@router.post(
    "/reservations/{reservation_id}/cancel",
    dependencies=[Depends(require_admin)],
)
async def cancel_reservation(
    reservation_id: str, db: GatedAsyncSession = Depends(get_db)
):
    return await reservations.cancel_reservation(db, reservation_id)


# ----------------------------
# Broadcasts
# ----------------------------
@router.post("/broadcasts")
async def send_broadcast(
    body: BroadcastCreate,
    user: CurrentUser = Depends(require_admin),
    db: GatedAsyncSession = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http),
    hub=Depends(get_hub),
):
    return await broadcasts.send_broadcast(
        db, http, hub, user.id, body.title, body.message, body.type
    )


@router.get("/broadcasts", dependencies=[Depends(require_admin)])
async def broadcast_history(db: GatedAsyncSession = Depends(get_db)):
    return {"items": await broadcasts.history(db)}


# ----------------------------
# Admin users (owner only)
# ----------------------------
@router.get("/users", dependencies=[Depends(require_owner)])
async def list_admin_users(db: GatedAsyncSession = Depends(get_db)):
    return {"items": await admins.list_admins(db)}


@router.post("/users", dependencies=[Depends(require_owner)])
async def promote_admin(
    body: AdminPromote, db: GatedAsyncSession = Depends(get_db)
):
    return await admins.promote(db, body.user_id, body.role)


@router.put("/users/{user_id}", dependencies=[Depends(require_owner)])
async def change_admin_role(
    user_id: str,
    body: AdminRoleChange,
    db: GatedAsyncSession = Depends(get_db),
):
    return await admins.change_role(db, user_id, body.role)


@router.delete("/users/{user_id}")
async def remove_admin(
    user_id: str,
    user: CurrentUser = Depends(require_owner),
    db: GatedAsyncSession = Depends(get_db),
):
    await admins.remove(db, user.id, user_id)
    return {"ok": True}


# ----------------------------
# Analytics
# ----------------------------
@router.get("/analytics/dashboard", dependencies=[Depends(require_admin)])
async def analytics_dashboard(db: GatedAsyncSession = Depends(get_db)):
    return await analytics.dashboard(db)


@router.get("/analytics/reservations", dependencies=[Depends(require_admin)])
async def analytics_reservations(db: GatedAsyncSession = Depends(get_db)):
    return await analytics.reservation_stats(db)


@router.get("/analytics/events", dependencies=[Depends(require_admin)])
async def analytics_events(db: GatedAsyncSession = Depends(get_db)):
    return {"items": await analytics.top_events(db)}
