# comande/orders/financials.py
from __future__ import annotations

from dataclasses import dataclass, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from ..models import OrderType, Restaurant

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class Breakdown:
    subtotal: Decimal
    tax: Decimal
    service_charge: Decimal
    delivery_fee: Decimal
    discount: Decimal
    total: Decimal

    def as_json(self) -> dict:
        # normalize: le aliquote da Numeric(12,4) gonfiano la scala ("17.25000000")
        return {k: format(v.normalize(), "f") for k, v in asdict(self).items()}

    def display(self) -> dict:
        # arrotondamento a unità intere solo per la visualizzazione
        return {k: int(v.quantize(Decimal("1"), rounding=ROUND_HALF_UP)) for k, v in asdict(self).items()}


def _d(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


class FinancialBreakdownCalculator:
    """Regole:
    - DINE_IN: +tasse, +coperto/servizio
    - TAKEAWAY: +tasse
    - DELIVERY: +tasse, +costo consegna fisso
    """

    def calculate(
        self,
        items: Iterable,
        restaurant: Restaurant,
        order_type: OrderType,
        discount=None,
    ) -> Breakdown:
        subtotal = sum((_d(it.unit_price) * int(it.quantity or 0) for it in items), ZERO)

        tax = subtotal * _d(restaurant.tax_rate) / HUNDRED if restaurant.tax_enabled else ZERO
        service_charge = ZERO
        if restaurant.service_charge_enabled and order_type == OrderType.DINE_IN:
            service_charge = subtotal * _d(restaurant.service_charge_rate) / HUNDRED
        delivery_fee = _d(restaurant.default_delivery_fee) if order_type == OrderType.DELIVERY else ZERO
        discount = _d(discount)

        total = subtotal + tax + service_charge + delivery_fee - discount
        return Breakdown(subtotal, tax, service_charge, delivery_fee, discount, total)
