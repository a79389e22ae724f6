import pytest

from comande.errors import UnsupportedTypeError
from comande.models import OrderType
from comande.orders.factory import OrderServiceFactory
from comande.orders.strategies import (
    DeliveryStrategy,
    DineInStrategy,
    ReservationStrategy,
    TakeawayStrategy,
    ValidationContext,
)

ITEMS = [{"menu_item_id": 1, "quantity": 1, "unit_price": "7.00"}]


@pytest.fixture
def factory():
    return OrderServiceFactory()


@pytest.mark.parametrize("order_type, cls", [
    (OrderType.DINE_IN, DineInStrategy),
    (OrderType.TAKEAWAY, TakeawayStrategy),
    (OrderType.DELIVERY, DeliveryStrategy),
    (OrderType.RESERVATION, ReservationStrategy),
    ("DELIVERY", DeliveryStrategy),
])
def test_factory_picks_strategy(factory, order_type, cls):
    assert isinstance(factory.get_service(order_type), cls)


def test_factory_rejects_unknown_type(factory):
    with pytest.raises(UnsupportedTypeError) as exc:
        factory.get_service("CATERING")
    assert exc.value.order_type == "CATERING"


def test_strategies_share_leaf_components(factory):
    a = factory.get_service(OrderType.DINE_IN)
    b = factory.get_service(OrderType.TAKEAWAY)
    assert a.tables is b.tables is factory.tables
    assert a.audit is b.audit


@pytest.mark.parametrize("order_type", list(OrderType))
def test_empty_order_never_fires(factory, order_type):
    result = factory.get_service(order_type).validate_order({"items": []}, ValidationContext.FIRE)
    assert not result.valid
    assert "Cannot fire an empty order" in result.errors


@pytest.mark.parametrize("order_type", list(OrderType))
def test_draft_is_lenient(factory, order_type):
    assert factory.get_service(order_type).validate_order({}, ValidationContext.DRAFT).valid


def test_delivery_fire_needs_address_and_phone(factory):
    s = factory.get_service(OrderType.DELIVERY)
    result = s.validate_order({"items": ITEMS}, ValidationContext.FIRE)
    assert len(result.errors) == 2
    ok = s.validate_order(
        {"items": ITEMS, "delivery_address": "Via Roma 1", "customer_phone": "333"},
        ValidationContext.FIRE,
    )
    assert ok.valid


def test_dine_in_fire_needs_table_and_guests(factory):
    s = factory.get_service(OrderType.DINE_IN)
    result = s.validate_order({"items": ITEMS, "table_id": 1}, ValidationContext.FIRE)
    assert result.errors == ["guest_count is required for firing DINE_IN"]
    assert s.validate_order({"items": ITEMS, "table_id": 1, "guest_count": 2}, ValidationContext.FIRE).valid


def test_reservation_fire_needs_time(factory):
    s = factory.get_service(OrderType.RESERVATION)
    result = s.validate_order({"items": ITEMS}, ValidationContext.FIRE)
    assert result.errors == ["reservation_time is required for RESERVATION"]


def test_common_rules_apply_in_draft(factory):
    s = factory.get_service(OrderType.TAKEAWAY)
    result = s.validate_order({"guest_count": 0, "discount": "-1"}, ValidationContext.DRAFT)
    assert not result.valid
    assert len(result.errors) == 2
