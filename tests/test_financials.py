from decimal import Decimal
from types import SimpleNamespace

import pytest

from comande.models import OrderType, Restaurant
from comande.orders.financials import FinancialBreakdownCalculator


def _restaurant(**kw):
    base = dict(
        name="Test",
        tax_enabled=True, tax_rate=Decimal("10"),
        service_charge_enabled=True, service_charge_rate=Decimal("5"),
        default_delivery_fee=Decimal("100"),
    )
    base.update(kw)
    return Restaurant(**base)


def _items():
    # subtotal 1000
    return [
        SimpleNamespace(unit_price=Decimal("250"), quantity=2),
        SimpleNamespace(unit_price=Decimal("500"), quantity=1),
    ]


@pytest.fixture
def calc():
    return FinancialBreakdownCalculator()


def test_dine_in_gets_tax_and_service_charge(calc):
    b = calc.calculate(_items(), _restaurant(), OrderType.DINE_IN)
    assert b.subtotal == Decimal("1000")
    assert b.tax == Decimal("100")
    assert b.service_charge == Decimal("50")
    assert b.delivery_fee == 0
    assert b.total == Decimal("1150")


def test_takeaway_has_no_service_charge(calc):
    b = calc.calculate(_items(), _restaurant(), OrderType.TAKEAWAY)
    assert b.tax == Decimal("100")
    assert b.service_charge == 0
    assert b.total == Decimal("1100")


def test_delivery_adds_flat_fee(calc):
    b = calc.calculate(_items(), _restaurant(), OrderType.DELIVERY)
    assert b.tax == Decimal("100")
    assert b.delivery_fee == Decimal("100")
    assert b.service_charge == 0
    assert b.total == Decimal("1200")


def test_reservation_is_taxed_only(calc):
    b = calc.calculate(_items(), _restaurant(), OrderType.RESERVATION)
    assert b.total == Decimal("1100")


def test_disabled_flags_contribute_zero(calc):
    r = _restaurant(tax_enabled=False, service_charge_enabled=False)
    b = calc.calculate(_items(), r, OrderType.DINE_IN)
    assert b.tax == 0 and b.service_charge == 0
    assert b.total == Decimal("1000")


def test_discount_is_subtracted(calc):
    b = calc.calculate(_items(), _restaurant(), OrderType.TAKEAWAY, discount=Decimal("30"))
    assert b.discount == Decimal("30")
    assert b.total == Decimal("1070")


def test_no_items_means_zero_subtotal(calc):
    b = calc.calculate([], _restaurant(), OrderType.DELIVERY)
    assert b.subtotal == 0
    assert b.total == Decimal("100")


def test_fractional_amounts_keep_precision_until_display(calc):
    items = [SimpleNamespace(unit_price=Decimal("7.00"), quantity=2), SimpleNamespace(unit_price=Decimal("1.00"), quantity=1)]
    b = calc.calculate(items, _restaurant(), OrderType.DINE_IN)
    assert b.tax == Decimal("1.5")
    assert b.service_charge == Decimal("0.75")
    assert b.total == Decimal("17.25")
    assert b.display()["total"] == 17
    assert b.display()["tax"] == 2  # ROUND_HALF_UP
    assert b.as_json()["service_charge"] == "0.75"


def test_json_breakdown_is_normalized_for_database_scale_rates(calc):
    # le aliquote lette da Numeric(12,4) arrivano come Decimal("10.0000")
    r = _restaurant(tax_rate=Decimal("10.0000"), service_charge_rate=Decimal("5.0000"))
    items = [SimpleNamespace(unit_price=Decimal("7.0000"), quantity=2), SimpleNamespace(unit_price=Decimal("1.0000"), quantity=1)]
    data = calc.calculate(items, r, OrderType.DINE_IN).as_json()
    assert data["total"] == "17.25"
    assert data["tax"] == "1.5"
    assert data["subtotal"] == "15"
    assert data["delivery_fee"] == "0"
