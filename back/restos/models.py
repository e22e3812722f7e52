from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import field_validator
from sqlalchemy import JSON, DateTime, Numeric
from sqlmodel import Field, Relationship, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class OrderStatus(str, Enum):
    queue = "queue"
    preparing = "preparing"
    ready = "ready"
    served = "served"
    paid = "paid"
    cancelled = "cancelled"


# Linear progression; cancelled sits outside it
ORDER_STATUS_FLOW = [
    OrderStatus.queue,
    OrderStatus.preparing,
    OrderStatus.ready,
    OrderStatus.served,
    OrderStatus.paid,
]

TERMINAL_STATUSES = {OrderStatus.paid, OrderStatus.cancelled}


class OrderItemStatus(str, Enum):
    active = "active"
    cancelled = "cancelled"


class ModifierMode(str, Enum):
    count = "count"  # pick N in total across the options
    per_piece = "per_piece"  # pick for every discrete piece (e.g. each taco)


class Store(SQLModel, table=True):
    __tablename__ = "stores"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class StoreMixin(SQLModel):
    store_id: int = Field(foreign_key="stores.id", index=True)


class MenuItem(StoreMixin, table=True):
    __tablename__ = "menu_items"

    id: int | None = Field(default=None, primary_key=True)
    name: str
    description: str | None = None
    price: Decimal = Field(default=Decimal("0"), sa_type=Numeric(10, 2))
    category: str = Field(default="Mains", index=True)
    available: bool = Field(default=True, index=True)
    image_url: str | None = None
    # List of ModifierGroupIn documents (see below), validated on write
    modifier_groups: list[dict] | None = Field(default=None, sa_type=JSON)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Order(StoreMixin, table=True):
    __tablename__ = "orders"

    id: int | None = Field(default=None, primary_key=True)
    order_number: int = Field(index=True)
    table_number: str = Field(default="Counter")
    customer_name: str | None = None
    status: OrderStatus = Field(default=OrderStatus.queue, index=True)
    total_amount: Decimal = Field(default=Decimal("0"), sa_type=Numeric(10, 2))
    tip_amount: Decimal = Field(default=Decimal("0"), sa_type=Numeric(10, 2))
    notes: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True), index=True)

    # Payment tracking
    paid_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    payment_method: str | None = None  # 'cash', 'terminal', ...

    items: list["OrderItem"] = Relationship(back_populates="order")


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"

    id: int | None = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    menu_item_id: int = Field(foreign_key="menu_items.id")
    quantity: int
    # Unit price snapshot at order time, modifier deltas included
    price_at_time: Decimal = Field(sa_type=Numeric(10, 2))
    notes: str = ""  # "[PLATE:n] " marker followed by the user's note
    # Snapshot: [{group_id, group_name, mode, selections: [{option_id, option_name, price_delta, quantity, piece}]}]
    modifiers: list[dict] | None = Field(default=None, sa_type=JSON)
    status: OrderItemStatus = Field(default=OrderItemStatus.active, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    cancelled_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))

    order: Order = Relationship(back_populates="items")
    menu_item: MenuItem = Relationship()


# Request/Response Models
class StoreCreate(SQLModel):
    name: str


class ModifierOptionIn(SQLModel):
    id: str
    name: str
    price_delta: Decimal = Decimal("0")
    available: bool = True


class ModifierGroupIn(SQLModel):
    id: str
    name: str
    mode: ModifierMode = ModifierMode.count
    min_select: int = 0  # count mode
    max_select: int = 1  # count mode
    pieces: int = 1  # per_piece mode
    min_per_piece: int = 1  # per_piece mode
    options: list[ModifierOptionIn] = []


class MenuItemUpsert(SQLModel):
    id: int | None = None
    name: str
    description: str | None = None
    price: Decimal
    category: str = "Mains"
    available: bool = True
    image_url: str | None = None
    modifier_groups: list[ModifierGroupIn] | None = None


class ModifierSelectionIn(SQLModel):
    group_id: str
    option_id: str
    quantity: int = 1
    piece: int | None = None  # 1-based, per_piece groups only


class CartLineIn(SQLModel):
    menu_item_id: int
    quantity: int
    plate: int = 1
    notes: str = ""
    modifiers: list[ModifierSelectionIn] = []

    @field_validator("quantity")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("quantity must not be negative")
        return value


class OrderCreate(SQLModel):
    items: list[CartLineIn]
    table_number: str | None = None
    customer_name: str | None = None
    notes: str | None = None
    tip_amount: Decimal = Decimal("0")


class OrderItemsUpdate(SQLModel):
    items: list[CartLineIn]
    tip_amount: Decimal | None = None


class OrderStatusUpdate(SQLModel):
    status: OrderStatus


class OrderMarkPaid(SQLModel):
    tip_amount: Decimal | None = None
    payment_method: str = "cash"


class AdminLogin(SQLModel):
    password: str


class TerminalCheckout(SQLModel):
    device_id: str


class PointPaymentCreate(SQLModel):
    amount: float
    order_id: str
    device_id: str | None = None
