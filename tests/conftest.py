import pytest
from sqlmodel import Session, select

from comande.db import create_db_and_tables, make_engine, seed_if_empty, session_factory
from comande.models import MenuItem, Restaurant
from comande.orders.coordinator import OrderLifecycleCoordinator


class FakeNotifier:
    """Registra gli eventi invece di trasmetterli."""

    def __init__(self):
        self.events = []

    def emit(self, event, payload):
        self.events.append((event, payload))

    def names(self):
        return [name for name, _ in self.events]


@pytest.fixture
def engine(tmp_path):
    # file vero (non :memory:) per avere WAL e più connessioni
    eng = make_engine(f"sqlite:///{tmp_path / 'comande_test.db'}")
    create_db_and_tables(eng)
    seed_if_empty(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def fetch(engine):
    """Lettura in una sessione breve: non tiene aperta la transazione (BEGIN IMMEDIATE)."""
    def _fetch(model, pk):
        with Session(engine) as s:
            return s.get(model, pk)
    return _fetch


@pytest.fixture
def query(engine):
    def _query(stmt):
        with Session(engine) as s:
            return list(s.exec(stmt).all())
    return _query


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def coordinator(engine, notifier):
    return OrderLifecycleCoordinator(session_factory(engine), notifier=notifier)


@pytest.fixture
def restaurant(query):
    return query(select(Restaurant))[0]


@pytest.fixture
def menu(query):
    return {m.name: m for m in query(select(MenuItem))}


@pytest.fixture
def line(menu):
    def _line(name, quantity=1, **kw):
        m = menu[name]
        return {"menu_item_id": m.id, "quantity": quantity, "unit_price": str(m.price), **kw}
    return _line
