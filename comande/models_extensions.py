# comande/models_extensions.py
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from .models import OrderType, utcnow

# Una sola estensione per ordine: order_id è unique in ogni tabella.
# ⚠️ NESSUNA relationship qui: si lavora per order_id


class DineInOrder(SQLModel, table=True):
    __tablename__ = "dine_in_order"
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", unique=True, index=True)
    table_id: Optional[int] = Field(default=None, foreign_key="dining_table.id")
    guest_count: int = 1
    waiter_id: Optional[int] = None
    seated_at: datetime = Field(default_factory=utcnow, nullable=False)


class TakeawayOrder(SQLModel, table=True):
    __tablename__ = "takeaway_order"
    __table_args__ = (UniqueConstraint("token_date", "token_number"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", unique=True, index=True)
    token_number: str                     # es. "T042"
    token_date: date = Field(index=True)  # giorno di emissione, reset a mezzanotte
    pickup_time: Optional[datetime] = None
    picked_up: bool = False
    picked_up_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


class DeliveryOrder(SQLModel, table=True):
    __tablename__ = "delivery_order"
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", unique=True, index=True)
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_address: Optional[str] = None
    driver_id: Optional[int] = None


class ReservationOrder(SQLModel, table=True):
    __tablename__ = "reservation_order"
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", unique=True, index=True)
    reservation_time: Optional[datetime] = None
    arrival_status: str = "PENDING"  # PENDING | ARRIVED | NO_SHOW | CANCELLED
    guest_count: int = 2
    table_id: Optional[int] = Field(default=None, foreign_key="dining_table.id")
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


EXTENSION_MODELS = {
    OrderType.DINE_IN: DineInOrder,
    OrderType.TAKEAWAY: TakeawayOrder,
    OrderType.DELIVERY: DeliveryOrder,
    OrderType.RESERVATION: ReservationOrder,
}
