from typing import Optional

from pydantic import BaseModel


# ----------------------------
# Customer
# ----------------------------
class OrderRequestCreate(BaseModel):
    product_id: str
    quantity: int = 1


class ReservationCreate(BaseModel):
    reservation_date: str
    time_slot: str
    party_size: int
    notes: Optional[str] = None
    event_id: Optional[str] = None


class ProfileUpdate(BaseModel):
    display_name: str
    bio: Optional[str] = None


class PushTokenRegister(BaseModel):
    token: str


class ListingCreate(BaseModel):
    title: str
    system: str
    asking_price: Optional[float] = None
    condition: str = "Good"
    category: str = "Games"
    description: Optional[str] = None


# ----------------------------
# Admin
# ----------------------------
class ProductFields(BaseModel):
    sku: Optional[str] = None
    barcode: Optional[str] = None
    title: Optional[str] = None
    system: Optional[str] = None
    year: Optional[int] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    price: Optional[float] = None
    cost_price: Optional[float] = None
    supplier: Optional[str] = None
    stock_qty: Optional[int] = None
    low_stock_threshold: Optional[int] = None
    featured: Optional[bool] = None
    description: Optional[str] = None
    image_url: Optional[str] = None


class StockBump(BaseModel):
    delta: int


class StockSet(BaseModel):
    stock_qty: int
    low_stock_threshold: Optional[int] = None


class OrderStatusUpdate(BaseModel):
    status: str


class EventFields(BaseModel):
    title: str
    location: str
    date: str
    description: Optional[str] = None
    max_attendees: Optional[int] = None
    game_type: Optional[str] = None
    image_url: Optional[str] = None


class ReservationUpdate(BaseModel):
    status: str
    table_number: Optional[int] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None


class BroadcastCreate(BaseModel):
    title: str
    message: str
    type: str = "broadcast"


class AdminPromote(BaseModel):
    user_id: str
    role: str = "staff"


class AdminRoleChange(BaseModel):
    role: str
