# comande/orders/strategies.py
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, NamedTuple, Optional

from sqlalchemy import delete
from sqlmodel import Session, SQLModel, func, select

from ..errors import ValidationError
from ..models import TERMINAL_STATUSES, Order, OrderItem, OrderStatus, OrderType, utcnow
from ..models_extensions import DeliveryOrder, DineInOrder, ReservationOrder, TakeawayOrder
from .audit import AuditAction, AuditRecorder
from .customers import CustomerDirectory
from .tables import TableStateManager
from .tokens import TokenSequencer

log = logging.getLogger("comande.strategies")


class ValidationContext(str, Enum):
    DRAFT = "DRAFT"  # bozza: permissivo
    FIRE = "FIRE"    # invio in cucina: dati completi


class ValidationResult(NamedTuple):
    valid: bool
    errors: list[str]


def _set_present(ext: SQLModel, data: dict, *fields: str) -> None:
    # upsert parziale: solo le chiavi effettivamente inviate
    for f in fields:
        if f in data:
            setattr(ext, f, data[f])


class OrderTypeStrategy:
    """Comportamento specifico per tipo d'ordine.

    Ogni metodo che scrive riceve la transazione ``tx`` del coordinatore e non
    fa mai commit. ``data`` è un dict: completo in creazione, parziale
    (solo i campi inviati) in aggiornamento.
    """

    order_type: OrderType
    extension_model: type[SQLModel]

    def __init__(
        self,
        tables: TableStateManager,
        tokens: TokenSequencer,
        audit: AuditRecorder,
        customers: CustomerDirectory,
        now: Callable[[], datetime] = utcnow,
        today: Callable[[], date] = date.today,
    ):
        self.tables = tables
        self.tokens = tokens
        self.audit = audit
        self.customers = customers
        self.now = now
        self.today = today

    # --- validazione -------------------------------------------------------

    def validate_order(self, data: dict, context: ValidationContext = ValidationContext.DRAFT) -> ValidationResult:
        errors = self._validate_common(data, context) + self._validate_type(data, context)
        return ValidationResult(not errors, errors)

    def _validate_common(self, data: dict, context: ValidationContext) -> list[str]:
        errors: list[str] = []
        guests = data.get("guest_count")
        if guests is not None and int(guests) < 1:
            errors.append("guest_count must be at least 1")
        discount = data.get("discount")
        if discount is not None and Decimal(str(discount)) < 0:
            errors.append("discount cannot be negative")
        if context == ValidationContext.FIRE and not data.get("items"):
            errors.append("Cannot fire an empty order")
        return errors

    def _validate_type(self, data: dict, context: ValidationContext) -> list[str]:
        return []

    # --- estensione --------------------------------------------------------

    def get_extension(self, tx: Session, order_id: int):
        model = self.extension_model
        return tx.exec(select(model).where(model.order_id == order_id)).first()

    def create_extension(self, tx: Session, order: Order, data: dict):
        raise NotImplementedError

    def update_extension(self, tx: Session, order: Order, data: dict):
        ext = self.get_extension(tx, order.id)
        if ext is None:
            # l'ordine sta passando a questo tipo: crea al volo
            return self.create_extension(tx, order, data)
        self._apply_update(tx, order, ext, data)
        tx.add(ext)
        return ext

    def _apply_update(self, tx: Session, order: Order, ext, data: dict) -> None:
        raise NotImplementedError

    def teardown_extension(self, tx: Session, order: Order) -> None:
        model = self.extension_model
        tx.exec(delete(model).where(model.order_id == order.id))

    def close_out(self, tx: Session, order: Order, status: OrderStatus) -> None:
        """Hook per l'ingresso in uno stato terminale (libera le risorse)."""

    def _item_count(self, tx: Session, order_id: int) -> int:
        # pezzi totali, non righe: 3x patatine pesano come 3
        total = tx.exec(
            select(func.coalesce(func.sum(OrderItem.quantity), 0)).where(OrderItem.order_id == order_id)
        ).one()
        return int(total)

    def _customer_fields(self, order: Order, data: dict) -> dict:
        # in un cambio di tipo "data" è parziale: si ripiega sui campi dell'ordine
        return {
            "customer_name": data.get("customer_name") or order.customer_name,
            "customer_phone": data.get("customer_phone") or order.customer_phone,
        }


class DineInStrategy(OrderTypeStrategy):
    order_type = OrderType.DINE_IN
    extension_model = DineInOrder

    def _validate_type(self, data, context):
        errors = []
        if context == ValidationContext.FIRE:
            if not data.get("table_id"):
                errors.append("table_id is required for firing DINE_IN")
            if not data.get("guest_count"):
                errors.append("guest_count is required for firing DINE_IN")
        return errors

    def _claim_table(self, tx, order, table_id) -> None:
        # ⚠️ prima della scrittura dell'estensione: tavolo inesistente = NotFoundError, non errore di FK
        if order.status in TERMINAL_STATUSES:
            self.tables.get(tx, table_id)
        else:
            self.tables.acquire(tx, table_id, order.id)

    def create_extension(self, tx, order, data):
        table_id = data.get("table_id")
        if table_id:
            self._claim_table(tx, order, table_id)
        ext = DineInOrder(
            order_id=order.id,
            table_id=table_id,
            guest_count=int(data.get("guest_count") or 1),
            waiter_id=data.get("waiter_id"),
            seated_at=self.now(),
        )
        tx.add(ext)
        tx.flush()
        return ext

    def _apply_update(self, tx, order, ext, data):
        new_count = data.get("guest_count")
        if new_count is not None and int(new_count) != ext.guest_count:
            new_count = int(new_count)
            if new_count < ext.guest_count:
                staff_id = data.get("authorized_by")
                if staff_id is None:
                    raise ValidationError("authorized_by is required to reduce guest_count")
                # prima l'audit, poi la modifica: se l'audit fallisce salta tutto
                self.audit.record(
                    tx,
                    AuditAction.GUEST_COUNT_REDUCTION,
                    entity_type="ORDER",
                    entity_id=order.id,
                    staff_id=staff_id,
                    details={"old_count": ext.guest_count, "new_count": new_count},
                    restaurant_id=order.restaurant_id,
                )
            ext.guest_count = new_count

        if "table_id" in data and data["table_id"] != ext.table_id:
            # cambio tavolo: prima il nuovo, così un id sbagliato non tocca il vecchio
            new_table = data["table_id"]
            if new_table:
                self._claim_table(tx, order, new_table)
            if ext.table_id:
                self.tables.release(tx, ext.table_id, order.id)
            ext.table_id = new_table

        _set_present(ext, data, "waiter_id")

    def teardown_extension(self, tx, order):
        ext = self.get_extension(tx, order.id)
        if ext and ext.table_id:
            self.tables.release(tx, ext.table_id, order.id)
        super().teardown_extension(tx, order)

    def close_out(self, tx, order, status):
        ext = self.get_extension(tx, order.id)
        if not ext or not ext.table_id:
            return
        if status in (OrderStatus.CANCELLED, OrderStatus.VOIDED):
            self.tables.release(tx, ext.table_id, order.id)
        else:
            # pagato/chiuso: il tavolo va pulito prima di riassegnarlo
            self.tables.mark_dirty(tx, ext.table_id, order.id)


class TakeawayStrategy(OrderTypeStrategy):
    order_type = OrderType.TAKEAWAY
    extension_model = TakeawayOrder

    def create_extension(self, tx, order, data):
        now = self.now()
        ext = TakeawayOrder(
            order_id=order.id,
            token_number=self.tokens.allocate(tx, self.today()),
            token_date=self.today(),
            pickup_time=self.tokens.estimate_pickup(self._item_count(tx, order.id), now),
            **self._customer_fields(order, data),
        )
        tx.add(ext)
        tx.flush()
        log.info("ordine %s: token %s, ritiro %s", order.id, ext.token_number, ext.pickup_time)
        return ext

    def _apply_update(self, tx, order, ext, data):
        _set_present(ext, data, "customer_name", "customer_phone")
        if data.get("items") is not None:
            # righe sostituite: ricalcola la stima di ritiro
            ext.pickup_time = self.tokens.estimate_pickup(self._item_count(tx, order.id), self.now())
        if data.get("picked_up") and not ext.picked_up:
            ext.picked_up = True
            ext.picked_up_at = self.now()
        elif data.get("picked_up") is False:
            ext.picked_up = False
            ext.picked_up_at = None


class DeliveryStrategy(OrderTypeStrategy):
    order_type = OrderType.DELIVERY
    extension_model = DeliveryOrder

    def _validate_type(self, data, context):
        errors = []
        if context == ValidationContext.FIRE:
            if not data.get("delivery_address"):
                errors.append("delivery_address is required for firing DELIVERY")
            if not data.get("customer_phone"):
                errors.append("customer_phone is required for firing DELIVERY")
        return errors

    def create_extension(self, tx, order, data):
        ext = DeliveryOrder(
            order_id=order.id,
            **self._customer_fields(order, data),
            delivery_address=data.get("delivery_address"),
            driver_id=data.get("driver_id"),
        )
        tx.add(ext)
        self._link_customer(tx, order, ext)
        tx.flush()
        return ext

    def _apply_update(self, tx, order, ext, data):
        _set_present(ext, data, "customer_name", "customer_phone", "delivery_address", "driver_id")
        if "customer_phone" in data or "delivery_address" in data:
            self._link_customer(tx, order, ext)

    def _link_customer(self, tx, order, ext) -> None:
        if not ext.customer_phone:
            return
        customer = self.customers.resolve(tx, order.restaurant_id, ext.customer_phone, ext.customer_name)
        if order.customer_id != customer.id:
            order.customer_id = customer.id
            tx.add(order)
        if ext.delivery_address:
            self.customers.remember_address(tx, customer.id, ext.delivery_address)


class ReservationStrategy(OrderTypeStrategy):
    order_type = OrderType.RESERVATION
    extension_model = ReservationOrder

    def _validate_type(self, data, context):
        if context == ValidationContext.FIRE and not data.get("reservation_time"):
            return ["reservation_time is required for RESERVATION"]
        return []

    def create_extension(self, tx, order, data):
        if data.get("table_id"):
            self.tables.get(tx, data["table_id"])
        ext = ReservationOrder(
            order_id=order.id,
            reservation_time=data.get("reservation_time"),
            guest_count=int(data.get("guest_count") or 2),
            table_id=data.get("table_id"),
            **self._customer_fields(order, data),
            arrival_status="PENDING",
        )
        tx.add(ext)
        tx.flush()
        return ext

    def _apply_update(self, tx, order, ext, data):
        if data.get("table_id"):
            self.tables.get(tx, data["table_id"])
        _set_present(
            ext, data,
            "reservation_time", "table_id",
            "customer_name", "customer_phone",
        )
        if data.get("arrival_status"):
            ext.arrival_status = data["arrival_status"]
        if data.get("guest_count") is not None:
            ext.guest_count = int(data["guest_count"])


STRATEGY_CLASSES: dict[OrderType, type[OrderTypeStrategy]] = {
    cls.order_type: cls
    for cls in (DineInStrategy, TakeawayStrategy, DeliveryStrategy, ReservationStrategy)
}


def extension_as_dict(ext: Optional[SQLModel]) -> dict:
    return ext.model_dump() if ext is not None else {}
