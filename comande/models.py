# comande/models.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    # sempre aware: le versioni recenti di sqlmodel rifiutano i datetime naive
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Datetime in ingresso senza fuso: si assume UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def money_field(**kw):
    return Field(default=Decimal("0"), max_digits=12, decimal_places=4, **kw)


class OrderType(str, Enum):
    DINE_IN = "DINE_IN"
    TAKEAWAY = "TAKEAWAY"
    DELIVERY = "DELIVERY"
    RESERVATION = "RESERVATION"


class OrderStatus(str, Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"
    COMPLETED = "COMPLETED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    VOIDED = "VOIDED"


TERMINAL_STATUSES = frozenset({
    OrderStatus.COMPLETED, OrderStatus.PAID, OrderStatus.CANCELLED, OrderStatus.VOIDED,
})


class ItemStatus(str, Enum):
    DRAFT = "DRAFT"
    FIRED = "FIRED"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"
    CANCELLED = "CANCELLED"


class TableStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    DIRTY = "DIRTY"
    CLEANING = "CLEANING"
    RESERVED = "RESERVED"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"


class Restaurant(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    currency: str = "EUR"
    tax_enabled: bool = False
    tax_rate: Decimal = money_field()             # percentuale, es. 10
    service_charge_enabled: bool = False
    service_charge_rate: Decimal = money_field()  # percentuale, solo DINE_IN
    default_delivery_fee: Decimal = money_field()


class Station(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    restaurant_id: int = Field(foreign_key="restaurant.id", index=True)
    name: str
    prefix: str


class MenuItem(SQLModel, table=True):
    __tablename__ = "menu_item"
    id: Optional[int] = Field(default=None, primary_key=True)
    restaurant_id: int = Field(foreign_key="restaurant.id", index=True)
    name: str
    price: Decimal = money_field()
    category: Optional[str] = None
    station_id: Optional[int] = Field(default=None, foreign_key="station.id")
    requires_prep: bool = True  # False: bevande & co. vanno subito READY
    is_available: bool = True


class DiningTable(SQLModel, table=True):
    __tablename__ = "dining_table"
    id: Optional[int] = Field(default=None, primary_key=True)
    restaurant_id: int = Field(foreign_key="restaurant.id", index=True)
    name: str
    capacity: int = 4
    status: TableStatus = TableStatus.AVAILABLE
    # ⚠️ NESSUNA FK verso order: l'ordine può essere cancellato prima del rilascio
    active_order_id: Optional[int] = Field(default=None, index=True)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class Order(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    restaurant_id: int = Field(foreign_key="restaurant.id", index=True)
    order_number: str = Field(index=True)
    type: OrderType
    status: OrderStatus = OrderStatus.DRAFT
    customer_id: Optional[int] = Field(default=None, foreign_key="customer.id")
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    notes: Optional[str] = None

    subtotal: Decimal = money_field()
    tax: Decimal = money_field()
    service_charge: Decimal = money_field()
    delivery_fee: Decimal = money_field()
    discount: Decimal = money_field()
    total: Decimal = money_field()
    breakdown: Optional[dict] = Field(default=None, sa_type=JSON)

    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)
    fired_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[int] = None
    cancellation_reason: Optional[str] = None
    voided_at: Optional[datetime] = None
    voided_by: Optional[int] = None
    void_reason: Optional[str] = None
    last_action_desc: Optional[str] = None


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_item"
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", index=True)
    menu_item_id: int = Field(foreign_key="menu_item.id")
    item_name: Optional[str] = None
    quantity: int = 1
    unit_price: Decimal = money_field()
    total_price: Decimal = money_field()
    item_status: ItemStatus = ItemStatus.DRAFT
    station_id: Optional[int] = Field(default=None, foreign_key="station.id")
    special_instructions: Optional[str] = None
    modifications: Optional[dict] = Field(default=None, sa_type=JSON)
    started_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class PaymentTransaction(SQLModel, table=True):
    __tablename__ = "payment_transaction"
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", index=True)
    restaurant_id: int = Field(foreign_key="restaurant.id", index=True)
    amount: Decimal = money_field()
    payment_method: str = "cash"
    status: str = "COMPLETED"
    transaction_ref: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class Customer(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("restaurant_id", "phone"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    restaurant_id: int = Field(foreign_key="restaurant.id", index=True)
    name: Optional[str] = None
    phone: str
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class CustomerAddress(SQLModel, table=True):
    __tablename__ = "customer_address"
    id: Optional[int] = Field(default=None, primary_key=True)
    customer_id: int = Field(foreign_key="customer.id", index=True)
    label: str = "Casa"
    full_address: str
    is_default: bool = False
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_log"
    id: Optional[int] = Field(default=None, primary_key=True)
    restaurant_id: Optional[int] = Field(default=None, index=True)
    action_type: str = Field(index=True)   # GUEST_COUNT_REDUCTION | ORDER_VOID | ...
    entity_type: str                        # ORDER | TABLE | ...
    entity_id: Optional[int] = None
    staff_id: Optional[int] = None
    details: Optional[dict] = Field(default=None, sa_type=JSON)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)
