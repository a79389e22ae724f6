from decimal import Decimal
from functools import partial

from sqlmodel import SQLModel, create_engine, Session, select
from sqlalchemy import event

from .config import CONFIG

# Modelli (solo import: nessuna logica qui)
from .models import Restaurant, Station, MenuItem, DiningTable
from . import models_extensions  # noqa: F401  (registra le tabelle estensione)


# ---- Engine ----
def make_engine(url: str, echo: bool = False):
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False, "timeout": 30} if is_sqlite else {}

    # Nota: alzare il pool non "cura" i leak, ma rende il sistema meno fragile.
    engine = create_engine(
        url,
        echo=echo,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_size=10,       # default 5 -> un po' più ampio
        max_overflow=20,    # default 10
        pool_timeout=10,    # attesa per prendere una connessione
        pool_recycle=1800,  # ricicla connessioni stantie
    )

    # Migliorie per SQLite
    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragmas(dbapi_connection, connection_record):
            # transazioni gestite da noi (vedi "begin" sotto), non da pysqlite
            dbapi_connection.isolation_level = None
            cur = dbapi_connection.cursor()
            # WAL migliora i read paralleli con write
            cur.execute("PRAGMA journal_mode=WAL;")
            # Timeout quando il DB è lockato da un writer
            cur.execute("PRAGMA busy_timeout=30000;")
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.close()

        @event.listens_for(engine, "begin")
        def begin_immediate(conn):
            # Writer serializzati: il lettura-poi-scrittura dei token non può interlacciarsi
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = make_engine(CONFIG.database.url, echo=CONFIG.database.echo)


# ---- Schema ----
def create_db_and_tables(bind=None):
    SQLModel.metadata.create_all(bind or engine)


# ---- Sessioni ----
def session_factory(bind=None):
    """Factory esplicita per il coordinatore: ogni chiamata apre una Session nuova."""
    return partial(Session, bind or engine, expire_on_commit=False)


# ---- Seed helpers ----
def seed_if_empty(bind=None):
    """Seed minimale: apre una sola sessione e la chiude correttamente."""
    with Session(bind or engine) as session:
        if session.exec(select(Restaurant)).first():
            return

        r = Restaurant(
            name="Trattoria Demo",
            tax_enabled=True, tax_rate=Decimal("10"),
            service_charge_enabled=True, service_charge_rate=Decimal("5"),
            default_delivery_fee=Decimal("3.50"),
        )
        session.add(r)
        session.flush()

        cucina = Station(restaurant_id=r.id, name="Cucina", prefix="C")
        bar = Station(restaurant_id=r.id, name="Bar", prefix="B")
        session.add_all([cucina, bar])
        session.flush()

        session.add_all([
            MenuItem(restaurant_id=r.id, name="Panino porchetta", price=Decimal("7.00"), station_id=cucina.id),
            MenuItem(restaurant_id=r.id, name="Salsiccia",        price=Decimal("8.00"), station_id=cucina.id),
            MenuItem(restaurant_id=r.id, name="Patatine",         price=Decimal("4.00"), station_id=cucina.id),
            MenuItem(restaurant_id=r.id, name="Acqua 0.5L",       price=Decimal("1.00"), station_id=bar.id, requires_prep=False),
            MenuItem(restaurant_id=r.id, name="Birra 0.4L",       price=Decimal("4.00"), station_id=bar.id, requires_prep=False),
        ])
        session.add_all([
            DiningTable(restaurant_id=r.id, name=f"T{n}", capacity=4 if n < 5 else 6)
            for n in range(1, 9)
        ])
        session.commit()
