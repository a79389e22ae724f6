# comande/orders/tokens.py
from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta

from sqlmodel import Session, select

from ..config import CONFIG, OrdersConfig
from ..models_extensions import TakeawayOrder

log = logging.getLogger("comande.tokens")

_SUFFIX_RE = re.compile(r"(\d+)$")


class TokenSequencer:
    """Numeri di ritiro giornalieri per l'asporto: T001, T002, ... reset ogni giorno.

    La lettura del massimo e l'inserimento devono stare nella stessa transazione
    della creazione dell'estensione. Due transazioni concorrenti sullo stesso
    giorno sono serializzate da ``BEGIN IMMEDIATE`` (vedi ``db.make_engine``);
    su altri database fa da rete il vincolo unique (token_date, token_number):
    chi perde fallisce e il chiamante ritenta.
    """

    def __init__(self, config: OrdersConfig = CONFIG.orders):
        self.prefix = config.token_prefix
        self.width = config.token_width
        self.base_minutes = config.pickup_base_minutes
        self.per_item_minutes = config.pickup_per_item_minutes
        self.max_minutes = config.pickup_max_minutes

    def allocate(self, tx: Session, token_date: date) -> str:
        issued = tx.exec(
            select(TakeawayOrder.token_number).where(TakeawayOrder.token_date == token_date)
        ).all()
        highest = 0
        for token in issued:
            m = _SUFFIX_RE.search(token or "")
            if not m:
                continue  # token malformato: ignorato
            highest = max(highest, int(m.group(1)))
        # oltre 999 il numero resta semplicemente senza padding
        token = f"{self.prefix}{highest + 1:0{self.width}d}"
        log.debug("token %s allocato per %s", token, token_date)
        return token

    def pickup_minutes(self, item_count: int) -> int:
        return min(self.base_minutes + self.per_item_minutes * max(0, item_count), self.max_minutes)

    def estimate_pickup(self, item_count: int, now: datetime) -> datetime:
        return now + timedelta(minutes=self.pickup_minutes(item_count))


def format_token_display(token: str) -> str:
    """ "T042" -> "T 0 4 2" per il display grande del ritiro."""
    if not token or not token[0].isalpha():
        return token
    head, digits = token[0], token[1:]
    return f"{head} {' '.join(digits)}"
