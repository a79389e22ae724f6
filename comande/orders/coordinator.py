# comande/orders/coordinator.py
from __future__ import annotations

import logging
import secrets
import string
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, select

from ..config import CONFIG, OrdersConfig
from ..errors import NotFoundError, StateTransitionError, TransactionError, ValidationError
from ..models import (
    TERMINAL_STATUSES,
    ItemStatus,
    MenuItem,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentTransaction,
    Restaurant,
    utcnow,
)
from ..models_extensions import EXTENSION_MODELS, TakeawayOrder
from .audit import AuditAction
from .factory import OrderServiceFactory
from .financials import FinancialBreakdownCalculator
from .requests import CreateOrderRequest, UpdateOrderRequest
from .strategies import ValidationContext, extension_as_dict
from .tokens import format_token_display

log = logging.getLogger("comande.orders")

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


@dataclass
class OrderAggregate:
    order: Order
    items: List[OrderItem]
    extension: Optional[SQLModel]

    @property
    def extension_kind(self) -> Optional[OrderType]:
        for order_type, model in EXTENSION_MODELS.items():
            if isinstance(self.extension, model):
                return order_type
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = self.order.model_dump()
        data["items"] = [it.model_dump() for it in self.items]
        data["extension"] = extension_as_dict(self.extension)
        data["extension_kind"] = self.extension_kind
        if isinstance(self.extension, TakeawayOrder):
            data["token_display"] = format_token_display(self.extension.token_number)
        return data


def _parse(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ) from None


def _check_transition(order: Order, target: Optional[OrderStatus]) -> None:
    """Stati ammessi via update: CONFIRMED solo con il fire, mai ritorno a DRAFT."""
    if target is None or target == order.status:
        return
    if target == OrderStatus.CONFIRMED:
        raise StateTransitionError(
            f"Order {order.id}: CONFIRMED is reached only through fire_order_to_kitchen"
        )
    if target == OrderStatus.DRAFT:
        raise StateTransitionError(f"Order {order.id} has left DRAFT and cannot go back")
    if order.status == OrderStatus.DRAFT and target not in (OrderStatus.CANCELLED, OrderStatus.VOIDED):
        raise StateTransitionError(
            f"Order {order.id} is DRAFT: fire it before moving to {target.value}"
        )


class OrderLifecycleCoordinator:
    """Ciclo di vita degli ordini: create / update / fire / delete / settle.

    Ogni operazione è una sola transazione; la ``Session`` viene passata
    esplicitamente a strategie e componenti foglia. ``notifier`` è il bus
    esterno (``emit(event, payload)``): viene chiamato solo dopo il commit,
    una volta sola, senza retry.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        notifier=None,
        factory: Optional[OrderServiceFactory] = None,
        calculator: Optional[FinancialBreakdownCalculator] = None,
        config: OrdersConfig = CONFIG.orders,
        now: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.notifier = notifier
        self.factory = factory or OrderServiceFactory()
        self.calculator = calculator or FinancialBreakdownCalculator()
        self.config = config
        self.now = now

    # --- infrastruttura ----------------------------------------------------

    @contextmanager
    def _transaction(self):
        with self._session_factory() as tx:
            try:
                with tx.begin():
                    yield tx
            except SQLAlchemyError as e:
                log.exception("transazione annullata")
                raise TransactionError(str(e)) from e

    def _emit(self, event: str, payload: dict) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.emit(event, payload)
        except Exception:
            # at-most-once: la notifica persa non si ritenta
            log.warning("notifica %s non consegnata", event, exc_info=True)

    def _order_number(self, now: datetime) -> str:
        suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(3))
        return f"{self.config.order_number_prefix}-{now:%H%M%S}-{suffix}"

    def _item_rows(self, tx: Session, order_id: int, items: List[dict]) -> List[OrderItem]:
        menu_ids = {it["menu_item_id"] for it in items}
        names = {}
        if menu_ids:
            names = {m.id: m.name for m in tx.exec(select(MenuItem).where(MenuItem.id.in_(menu_ids))).all()}

        rows = []
        for it in items:
            qty = int(it["quantity"])
            unit = Decimal(str(it["unit_price"]))
            total = it.get("total_price")
            rows.append(OrderItem(
                order_id=order_id,
                menu_item_id=it["menu_item_id"],
                item_name=it.get("item_name") or names.get(it["menu_item_id"]),
                quantity=qty,
                unit_price=unit,
                total_price=unit * qty if total is None else Decimal(str(total)),
                item_status=it.get("item_status") or ItemStatus.DRAFT,
                station_id=it.get("station_id"),
                special_instructions=it.get("special_instructions"),
                modifications=it.get("modifications"),
            ))
        return rows

    def _recalculate(self, tx: Session, order: Order) -> None:
        restaurant = tx.get(Restaurant, order.restaurant_id)
        if restaurant is None:
            raise NotFoundError(f"Ristorante {order.restaurant_id} non trovato")
        items = tx.exec(select(OrderItem).where(OrderItem.order_id == order.id)).all()
        b = self.calculator.calculate(items, restaurant, order.type, order.discount)
        order.subtotal = b.subtotal
        order.tax = b.tax
        order.service_charge = b.service_charge
        order.delivery_fee = b.delivery_fee
        order.discount = b.discount
        order.total = b.total
        order.breakdown = b.as_json()
        tx.add(order)

    def _load(self, tx: Session, order: Order) -> OrderAggregate:
        tx.flush()
        items = tx.exec(
            select(OrderItem).where(OrderItem.order_id == order.id).order_by(OrderItem.id)
        ).all()
        ext = self.factory.get_service(order.type).get_extension(tx, order.id)
        return OrderAggregate(order=order, items=list(items), extension=ext)

    # --- operazioni --------------------------------------------------------

    def create_order(self, data) -> OrderAggregate:
        req = _parse(CreateOrderRequest, data)
        if req.status != OrderStatus.DRAFT:
            # si nasce sempre DRAFT: CONFIRMED arriva solo dal fire
            raise StateTransitionError(f"Orders are created in DRAFT, not {req.status.value}")
        strategy = self.factory.get_service(req.type)
        payload = req.model_dump()
        result = strategy.validate_order(payload, ValidationContext.DRAFT)
        if not result.valid:
            raise ValidationError(result.errors)

        with self._transaction() as tx:
            now = self.now()
            order = Order(
                restaurant_id=req.restaurant_id,
                order_number=req.order_number or self._order_number(now),
                type=req.type,
                status=req.status,
                customer_name=req.customer_name,
                customer_phone=req.customer_phone,
                notes=req.notes,
                discount=req.discount or Decimal("0"),
                created_at=now,
                updated_at=now,
            )
            tx.add(order)
            tx.flush()  # ottieni order.id

            tx.add_all(self._item_rows(tx, order.id, payload["items"]))
            tx.flush()

            strategy.create_extension(tx, order, payload)
            self._recalculate(tx, order)
            aggregate = self._load(tx, order)

        log.info("ordine %s (%s, %s) creato: totale %s",
                 order.id, order.order_number, order.type.value, order.total)
        return aggregate

    def update_order(self, order_id: int, data) -> Optional[OrderAggregate]:
        req = _parse(UpdateOrderRequest, data)
        changes = req.model_dump(exclude_unset=True)

        with self._transaction() as tx:
            order = tx.get(Order, order_id)
            if order is None:
                return None
            if order.status in TERMINAL_STATUSES:
                raise StateTransitionError(
                    f"Order {order_id} is {order.status.value}: no further changes allowed"
                )

            current = self.factory.get_service(order.type)
            new_type = changes.get("type") or order.type
            target = self.factory.get_service(new_type)
            new_status = changes.get("status")
            _check_transition(order, new_status)

            result = target.validate_order(changes, ValidationContext.DRAFT)
            if not result.valid:
                raise ValidationError(result.errors)

            type_changed = new_type != order.type
            if type_changed:
                # smonta la vecchia estensione (DINE_IN libera il tavolo)
                current.teardown_extension(tx, order)

            if new_status in (OrderStatus.CANCELLED, OrderStatus.VOIDED):
                if not type_changed:
                    current.close_out(tx, order, new_status)
                self._stamp_cancellation(tx, order, new_status, changes)

            for f in ("customer_name", "customer_phone", "notes", "discount"):
                if f in changes:
                    setattr(order, f, changes[f] if f != "discount" else (changes[f] or Decimal("0")))
            order.type = new_type
            if new_status is not None:
                order.status = new_status
            order.updated_at = self.now()
            tx.add(order)

            if changes.get("items") is not None:
                # sostituzione completa: la storia per-riga (started_at ecc.) si perde
                tx.exec(delete(OrderItem).where(OrderItem.order_id == order.id))
                tx.add_all(self._item_rows(tx, order.id, changes["items"]))
                tx.flush()

            # crea l'estensione se il tipo è cambiato, altrimenti upsert
            target.update_extension(tx, order, changes)

            if new_status in (OrderStatus.COMPLETED, OrderStatus.PAID):
                target.close_out(tx, order, new_status)

            self._recalculate(tx, order)
            aggregate = self._load(tx, order)

        log.info("ordine %s aggiornato: %s", order_id, sorted(changes))
        return aggregate

    def _stamp_cancellation(self, tx: Session, order: Order, status: OrderStatus, changes: dict) -> None:
        now = self.now()
        staff_id = changes.get("authorized_by")
        reason = changes.get("reason")
        if status == OrderStatus.CANCELLED:
            order.cancelled_at, order.cancelled_by, order.cancellation_reason = now, staff_id, reason
            action = AuditAction.ORDER_CANCEL
        else:
            order.voided_at, order.voided_by, order.void_reason = now, staff_id, reason
            action = AuditAction.ORDER_VOID
        order.last_action_desc = f"Order {status.value.lower()}"
        self.factory.audit.record(
            tx,
            action,
            entity_type="ORDER",
            entity_id=order.id,
            staff_id=staff_id,
            details={"reason": reason, "previous_status": order.status.value, "total": str(order.total)},
            restaurant_id=order.restaurant_id,
        )

    def get_order_details(self, order_id: int) -> Optional[OrderAggregate]:
        with self._transaction() as tx:
            order = tx.get(Order, order_id)
            if order is None:
                return None
            return self._load(tx, order)

    def _fire_snapshot(self, aggregate: OrderAggregate) -> dict:
        order = aggregate.order
        snap = extension_as_dict(aggregate.extension)
        snap["items"] = [it.model_dump() for it in aggregate.items]
        snap["customer_phone"] = snap.get("customer_phone") or order.customer_phone
        snap["customer_name"] = snap.get("customer_name") or order.customer_name
        snap["discount"] = order.discount
        return snap

    def fire_order_to_kitchen(self, order_id: int) -> OrderAggregate:
        current = self.get_order_details(order_id)
        if current is None:
            raise NotFoundError(f"Order {order_id} not found")
        if current.order.status in TERMINAL_STATUSES:
            raise StateTransitionError(f"Order {order_id} is {current.order.status.value}: cannot fire")

        strategy = self.factory.get_service(current.order.type)
        result = strategy.validate_order(self._fire_snapshot(current), ValidationContext.FIRE)
        if not result.valid:
            log.warning("ordine %s non inviato in cucina: %s", order_id, result.errors)
            raise ValidationError(result.errors)

        with self._transaction() as tx:
            order = tx.get(Order, order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            items = tx.exec(select(OrderItem).where(OrderItem.order_id == order_id)).all()
            menu_ids = {it.menu_item_id for it in items}
            menu = {m.id: m for m in tx.exec(select(MenuItem).where(MenuItem.id.in_(menu_ids))).all()}

            fired_at = self.now()
            fired: List[OrderItem] = []
            for it in items:
                mi = menu.get(it.menu_item_id)
                requires_prep = mi.requires_prep if mi is not None else True
                it.item_status = ItemStatus.FIRED if requires_prep else ItemStatus.READY
                it.started_at = fired_at
                if it.station_id is None and mi is not None:
                    it.station_id = mi.station_id  # snapshot della postazione
                tx.add(it)
                if requires_prep:
                    fired.append(it)

            order.status = OrderStatus.CONFIRMED
            order.fired_at = fired_at
            order.updated_at = fired_at
            order.last_action_desc = "Order fired to kitchen"
            tx.add(order)
            aggregate = self._load(tx, order)

        log.info("ordine %s inviato in cucina: %d righe da preparare", order_id, len(fired))

        # commit riuscito: eventi fuori dalla transazione
        if fired:
            self._emit("NEW_KITCHEN_ORDER", {
                "order_id": order_id,
                "restaurant_id": aggregate.order.restaurant_id,
                "items": [it.model_dump() for it in fired],
                "fired_at": fired_at,
            })
        self._emit("db_change", {"table": "orders", "eventType": "UPDATE", "data": aggregate.order.model_dump()})
        return aggregate

    def delete_order(self, order_id: int) -> bool:
        with self._transaction() as tx:
            order = tx.get(Order, order_id)
            if order is None:
                return False
            if order.status != OrderStatus.DRAFT:
                raise StateTransitionError(
                    f"Order {order_id} is {order.status.value}: only DRAFT orders can be deleted"
                )
            # DINE_IN: rilascia il tavolo prima di eliminare l'estensione
            self.factory.get_service(order.type).teardown_extension(tx, order)
            tx.exec(delete(OrderItem).where(OrderItem.order_id == order_id))
            tx.exec(delete(PaymentTransaction).where(PaymentTransaction.order_id == order_id))
            tx.delete(order)

        log.info("ordine %s eliminato", order_id)
        self._emit("db_change", {"table": "orders", "eventType": "DELETE", "id": order_id})
        return True

    def settle_order(
        self,
        order_id: int,
        payment_method: str = "cash",
        amount=None,
        staff_id: Optional[int] = None,
        force: bool = False,
        transaction_ref: Optional[str] = None,
    ) -> Optional[OrderAggregate]:
        """Registra il pagamento come fatto avvenuto (nessun gateway qui)."""
        with self._transaction() as tx:
            order = tx.get(Order, order_id)
            if order is None:
                return None
            if order.status in TERMINAL_STATUSES:
                raise StateTransitionError(f"Order {order_id} is {order.status.value}: cannot settle")

            items = tx.exec(select(OrderItem).where(OrderItem.order_id == order_id)).all()
            unfinished = [it.id for it in items if it.item_status in (ItemStatus.FIRED, ItemStatus.PREPARING)]
            if unfinished and not force:
                raise ValidationError(f"{len(unfinished)} item(s) still in preparation: force settle required")
            if unfinished:
                self.factory.audit.record(
                    tx,
                    AuditAction.FORCE_SETTLE,
                    entity_type="ORDER",
                    entity_id=order_id,
                    staff_id=staff_id,
                    details={"unfinished_items": unfinished, "total": str(order.total)},
                    restaurant_id=order.restaurant_id,
                )

            tx.add(PaymentTransaction(
                order_id=order_id,
                restaurant_id=order.restaurant_id,
                amount=order.total if amount is None else Decimal(str(amount)),
                payment_method=payment_method,
                transaction_ref=transaction_ref,
            ))
            order.status = OrderStatus.PAID
            order.updated_at = self.now()
            order.last_action_desc = "Order settled" + (" (forced)" if unfinished else "")
            tx.add(order)
            self.factory.get_service(order.type).close_out(tx, order, OrderStatus.PAID)
            aggregate = self._load(tx, order)

        log.info("ordine %s pagato (%s)", order_id, payment_method)
        self._emit("db_change", {"table": "orders", "eventType": "UPDATE", "data": aggregate.order.model_dump()})
        return aggregate
