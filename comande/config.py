# comande/config.py
from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

log = logging.getLogger("comande.config")

CONFIG_FILE = Path(os.getenv("COMANDE_CONFIG", Path(__file__).resolve().parent / "config.json"))

@dataclass
class DatabaseConfig:
    url: str = "sqlite:///comande.db"
    echo: bool = False

@dataclass
class OrdersConfig:
    token_prefix: str = "T"
    token_width: int = 3
    pickup_base_minutes: int = 10
    pickup_per_item_minutes: int = 2
    pickup_max_minutes: int = 30
    order_number_prefix: str = "ORD"
    create_retries: int = 3  # solo lato HTTP: il core non ritenta mai

@dataclass
class LoggingConfig:
    level: str = "INFO"

@dataclass
class AppConfig:
    # ⚠️ Usare default_factory per oggetti mutabili
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    orders: OrdersConfig = field(default_factory=OrdersConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

def _merge(dst: dict, src: dict) -> dict:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            dst[k] = _merge(dst[k], v)
        else:
            dst[k] = v
    return dst

def load_config(path: Path = CONFIG_FILE) -> AppConfig:
    # default
    data = {
        "database": {"url": "sqlite:///comande.db", "echo": False},
        "orders": {
            "token_prefix": "T",
            "token_width": 3,
            "pickup_base_minutes": 10,
            "pickup_per_item_minutes": 2,
            "pickup_max_minutes": 30,
            "order_number_prefix": "ORD",
            "create_retries": 3,
        },
        "logging": {"level": "INFO"},
    }
    if path.exists():
        try:
            file_data = json.loads(path.read_text(encoding="utf-8"))
            data = _merge(data, file_data or {})
        except (OSError, ValueError) as e:
            # file malformato → mantieni default
            log.warning("config %s ignorata: %s", path, e)

    db = data["database"]
    o = data["orders"]
    return AppConfig(
        database=DatabaseConfig(
            url=os.getenv("COMANDE_DB_URL") or str(db.get("url", "sqlite:///comande.db")),
            echo=bool(db.get("echo", False)),
        ),
        orders=OrdersConfig(
            token_prefix=str(o.get("token_prefix", "T")),
            token_width=int(o.get("token_width", 3)),
            pickup_base_minutes=int(o.get("pickup_base_minutes", 10)),
            pickup_per_item_minutes=int(o.get("pickup_per_item_minutes", 2)),
            pickup_max_minutes=int(o.get("pickup_max_minutes", 30)),
            order_number_prefix=str(o.get("order_number_prefix", "ORD")),
            create_retries=max(1, int(o.get("create_retries", 3))),
        ),
        logging=LoggingConfig(level=str(data["logging"].get("level", "INFO")).upper()),
    )

# istanza singleton caricata a import
CONFIG = load_config()
