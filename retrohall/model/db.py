import uuid
from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from ..helpers import now_ts, to_iso


Base = declarative_base()

# pending | paid | fulfilled | cancelled | refunded
ORDER_STATUSES = ("pending", "paid", "fulfilled", "cancelled", "refunded")
ORDER_TERMINAL = ("cancelled", "refunded")

# active | cancelled | completed | no_show
RESERVATION_STATUSES = ("active", "cancelled", "completed", "no_show")

CATEGORIES = ("Games", "Consoles", "Accessories", "Collectibles")
CONDITIONS = ("Mint", "Good", "Fair", "Poor")
ADMIN_ROLES = ("owner", "staff")
BROADCAST_TYPES = ("broadcast", "promo", "event", "general")


def new_id() -> str:
    return uuid.uuid4().hex


# ----------------------------
# ORM models
# ----------------------------
class Product(Base):
    __tablename__ = "products"
    id = Column(String, primary_key=True, default=new_id)
    sku = Column(String, nullable=True, unique=True)
    barcode = Column(String, nullable=True)
    title = Column(String, nullable=False)
    system = Column(String, nullable=False)
    year = Column(Integer, nullable=True)
    category = Column(String, nullable=False, default="Games")
    condition = Column(String, nullable=False, default="Good")
    price = Column(Float, nullable=False, default=0.0)  # dollars
    cost_price = Column(Float, nullable=True)
    supplier = Column(String, nullable=True)
    stock_qty = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=3)
    featured = Column(Boolean, nullable=False, default=False)
    description = Column(Text, nullable=False, default="")
    image_url = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)

    __table_args__ = (
        CheckConstraint("stock_qty >= 0", name="ck_products_stock_nonneg"),
    )


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, nullable=False, index=True)

    # see ORDER_STATUSES
    status = Column(String, nullable=False, default="pending")
    total = Column(Float, nullable=False)  # dollars
    # preorders took no stock, so they restore none
    is_preorder = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)

    checkout_session_id = Column(String, nullable=True, unique=True)
    checkout_url = Column(String, nullable=True)
    payment_intent_id = Column(String, nullable=True)

    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts)
    paid_at = Column(Float, nullable=True)


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(String, primary_key=True, default=new_id)
    order_id = Column(
        String, ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    product_id = Column(
        String, ForeignKey("products.id", ondelete="SET NULL"), nullable=True
    )
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False)
    created_at = Column(Float, nullable=False, default=now_ts)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_qty_pos"),
    )


class Event(Base):
    __tablename__ = "events"
    id = Column(String, primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    date = Column(Float, nullable=False)  # epoch seconds
    location = Column(String, nullable=False)
    max_attendees = Column(Integer, nullable=False, default=16)
    game_type = Column(String, nullable=False, default="TCG")
    image_url = Column(String, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)


class EventAttendee(Base):
    __tablename__ = "event_attendees"
    id = Column(String, primary_key=True, default=new_id)
    event_id = Column(
        String, ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False, index=True
    )
    user_id = Column(String, nullable=False)
    created_at = Column(Float, nullable=False, default=now_ts)

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_attendee"),
    )


class TableReservation(Base):
    __tablename__ = "table_reservations"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, nullable=False, index=True)
    event_id = Column(
        String, ForeignKey("events.id", ondelete="SET NULL"), nullable=True
    )
    reservation_date = Column(String, nullable=False)  # YYYY-MM-DD
    time_slot = Column(String, nullable=False)
    party_size = Column(Integer, nullable=False)
    table_number = Column(Integer, nullable=True)
    # see RESERVATION_STATUSES
    status = Column(String, nullable=False, default="active")
    notes = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)

    __table_args__ = (
        Index("ix_reservations_date_slot", "reservation_date", "time_slot"),
        # one active booking per table per date+slot
        Index(
            "uq_reservations_active_table",
            "reservation_date", "time_slot", "table_number",
            unique=True,
            sqlite_where=text(
                "status = 'active' AND table_number IS NOT NULL"
            ),
            postgresql_where=text(
                "status = 'active' AND table_number IS NOT NULL"
            ),
        ),
    )


class UserProfile(Base):
    __tablename__ = "user_profiles"
    id = Column(String, primary_key=True)
    display_name = Column(String, nullable=False, default="")
    email = Column(String, nullable=False, default="")
    bio = Column(Text, nullable=False, default="")
    trade_in_credit = Column(Float, nullable=False, default=0.0)
    total_sales = Column(Integer, nullable=False, default=0)
    expo_push_token = Column(String, nullable=True)
    updated_at = Column(Float, nullable=False, default=now_ts)


class AdminUser(Base):
    __tablename__ = "admin_users"
    id = Column(String, primary_key=True)
    role = Column(String, nullable=False, default="staff")  # owner | staff
    created_at = Column(Float, nullable=False, default=now_ts)


class UserListing(Base):
    __tablename__ = "user_listings"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    system = Column(String, nullable=False)
    condition = Column(String, nullable=False, default="Good")
    asking_price = Column(Float, nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String, nullable=False, default="Games")
    status = Column(String, nullable=False, default="active")  # active | sold
    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=False, default=now_ts)


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String, nullable=False, default="general")
    related_id = Column(String, nullable=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(Float, nullable=False, default=now_ts)


class Broadcast(Base):
    __tablename__ = "broadcasts"
    id = Column(String, primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String, nullable=False, default="broadcast")
    created_by = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)


class WebhookEventSeen(Base):
    __tablename__ = "webhook_events_seen"
    idempotency_key = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False, default=now_ts)


# epoch columns rendered as ISO-8601 on the wire
_TS_COLUMNS = {"created_at", "updated_at", "paid_at", "date"}


def to_dict(row) -> dict:
    out = {}
    for col in row.__table__.columns:
        v = getattr(row, col.name)
        if col.name in _TS_COLUMNS:
            v = to_iso(v)
        out[col.name] = v
    return out
