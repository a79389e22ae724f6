# comande/orders/requests.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from ..models import ItemStatus, OrderStatus, OrderType, as_utc


class OrderItemIn(BaseModel):
    menu_item_id: int
    quantity: int = Field(1, ge=1)
    unit_price: Decimal = Field(..., ge=0)
    total_price: Optional[Decimal] = None  # override esplicito, altrimenti unit_price × quantity
    item_name: Optional[str] = None
    station_id: Optional[int] = None
    item_status: Optional[ItemStatus] = None
    special_instructions: Optional[str] = None
    modifications: Optional[dict[str, Any]] = None


class CreateOrderRequest(BaseModel):
    restaurant_id: int
    type: OrderType
    status: OrderStatus = OrderStatus.DRAFT
    order_number: Optional[str] = None
    items: List[OrderItemIn] = Field(default_factory=list)
    table_id: Optional[int] = None
    guest_count: Optional[int] = None
    waiter_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_address: Optional[str] = None
    driver_id: Optional[int] = None
    reservation_time: Optional[datetime] = None
    discount: Optional[Decimal] = None
    notes: Optional[str] = None

    @field_validator("reservation_time")
    @classmethod
    def reservation_in_utc(cls, v):
        return as_utc(v)


class UpdateOrderRequest(BaseModel):
    """Aggiornamento parziale: contano solo i campi effettivamente inviati."""
    type: Optional[OrderType] = None
    status: Optional[OrderStatus] = None
    items: Optional[List[OrderItemIn]] = None
    table_id: Optional[int] = None
    guest_count: Optional[int] = None
    waiter_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    delivery_address: Optional[str] = None
    driver_id: Optional[int] = None
    reservation_time: Optional[datetime] = None
    arrival_status: Optional[str] = None
    picked_up: Optional[bool] = None
    discount: Optional[Decimal] = None
    notes: Optional[str] = None
    authorized_by: Optional[int] = None  # staff che ha dato il PIN per le riduzioni
    reason: Optional[str] = None

    @field_validator("reservation_time")
    @classmethod
    def reservation_in_utc(cls, v):
        return as_utc(v)


class SettleOrderRequest(BaseModel):
    payment_method: str = "cash"
    amount: Optional[Decimal] = None
    staff_id: Optional[int] = None
    force: bool = False
    transaction_ref: Optional[str] = None
