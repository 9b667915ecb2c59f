"""
Database Schemas for the Restaurant Floor Service

Each Pydantic model represents a document in a MongoDB collection. The
collection each model lives in is listed in its docstring and in COLLECTIONS.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

TableStatus = Literal["available", "occupied", "reserved"]
OrderStatus = Literal["pending", "preparing", "ready", "served", "paid"]
PaymentStatus = Literal["unpaid", "paid", "refunded"]
ReservationStatus = Literal["confirmed", "cancelled", "completed", "no_show"]
UserRole = Literal["admin", "manager", "waiter", "kitchen", "cashier"]

TABLES = "restaurant_tables"
ORDERS = "orders"
RESERVATIONS = "reservations"
INVENTORY = "inventory"
MENU_ITEMS = "menu_items"
MENU_CATEGORIES = "menu_categories"
PROFILES = "profiles"
USER_ROLES = "user_roles"

COLLECTIONS = (TABLES, ORDERS, RESERVATIONS, INVENTORY, MENU_ITEMS, MENU_CATEGORIES, PROFILES, USER_ROLES)

ACTIVE_ORDER_STATUSES = ("pending", "preparing", "ready", "served")


def to_utc_naive(value: datetime) -> datetime:
    """MongoDB hands datetimes back as naive UTC; store them the same way."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PriceModifier(BaseModel):
    name: str
    price: float = Field(0, description="Price added on top of the base price")


class MenuItem(BaseModel):
    """
    Menu items available for ordering
    Collection name: "menu_items"
    """
    name: str = Field(..., description="Food/Drink name")
    category: Optional[str] = Field(None, description="Category like Starters/Main Course/Desserts")
    category_id: Optional[str] = Field(None, description="Referenced menu category id")
    price: float = Field(..., ge=0, description="Current price")
    description: str = Field("", description="Short description")
    image_url: Optional[str] = None
    variants: List[PriceModifier] = Field(default_factory=list)
    addons: List[PriceModifier] = Field(default_factory=list)
    is_available: bool = Field(True, description="Whether item can be ordered")


class MenuCategory(BaseModel):
    """Collection name: "menu_categories" """
    name: str
    sort_order: int = 0


class Table(BaseModel):
    """
    A table on the fixed floor plan
    Collection name: "restaurant_tables"
    """
    number: int = Field(..., ge=1, description="Display label, unique")
    capacity: int = Field(..., ge=1, description="Seats")
    status: TableStatus = Field("available")
    current_order_id: Optional[str] = Field(None, description="Active order seated at this table")


class OrderItem(BaseModel):
    """Item inside an order (price snapshot captured at order time)."""
    menu_item_id: str = Field(..., description="Referenced menu item id")
    name: str = Field(..., description="Name snapshot")
    quantity: int = Field(..., ge=1, description="Quantity")
    price: float = Field(..., ge=0, description="Unit price snapshot")
    variants: List[str] = Field(default_factory=list)
    addons: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class Order(BaseModel):
    """
    Table order with list of items and status.
    Collection name: "orders"
    """
    table_id: str = Field(..., description="Referenced table id")
    table_number: Optional[int] = Field(None, description="Table label snapshot")
    waiter_id: Optional[str] = None
    items: List[OrderItem] = Field(..., description="Ordered items")
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = Field("pending", description="pending, preparing, ready, served, paid")
    payment_status: PaymentStatus = Field("unpaid")
    payment_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Reservation(BaseModel):
    """
    Table booking
    Collection name: "reservations"
    """
    table_id: str
    customer_name: str = Field(..., min_length=1)
    customer_phone: Optional[str] = None
    party_size: int = Field(..., ge=1)
    reservation_time: datetime
    status: ReservationStatus = Field("confirmed")
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("reservation_time")
    @classmethod
    def _normalise_time(cls, v: datetime) -> datetime:
        return to_utc_naive(v)


class InventoryItem(BaseModel):
    """
    Stock kept in the store room
    Collection name: "inventory"
    """
    item_name: str
    quantity: float = Field(..., ge=0)
    unit: str = Field("unit", description="Unit of measure")
    threshold_level: float = Field(0, ge=0, description="Low stock alert level")
    category: Optional[str] = None


class StaffProfile(BaseModel):
    """Collection name: "profiles" """
    name: str
    email: str
    joined_at: datetime = Field(default_factory=utcnow)


class StaffRole(BaseModel):
    """Collection name: "user_roles" (document id = profile id)"""
    role: UserRole = "waiter"
