# comande/orders/factory.py
from __future__ import annotations

from datetime import date, datetime
from typing import Callable, Optional

from ..errors import UnsupportedTypeError
from ..models import OrderType, utcnow
from .audit import AuditRecorder
from .customers import CustomerDirectory
from .strategies import STRATEGY_CLASSES, OrderTypeStrategy
from .tables import TableStateManager
from .tokens import TokenSequencer


class OrderServiceFactory:
    """Tag del tipo d'ordine -> strategia. Le foglie sono condivise fra le strategie."""

    def __init__(
        self,
        tables: Optional[TableStateManager] = None,
        tokens: Optional[TokenSequencer] = None,
        audit: Optional[AuditRecorder] = None,
        customers: Optional[CustomerDirectory] = None,
        now: Callable[[], datetime] = utcnow,
        today: Callable[[], date] = date.today,
    ):
        self.tables = tables or TableStateManager()
        self.tokens = tokens or TokenSequencer()
        self.audit = audit or AuditRecorder()
        self.customers = customers or CustomerDirectory()
        self._strategies: dict[OrderType, OrderTypeStrategy] = {
            order_type: cls(self.tables, self.tokens, self.audit, self.customers, now=now, today=today)
            for order_type, cls in STRATEGY_CLASSES.items()
        }

    def get_service(self, order_type) -> OrderTypeStrategy:
        try:
            return self._strategies[OrderType(order_type)]
        except (ValueError, KeyError):
            raise UnsupportedTypeError(order_type) from None
