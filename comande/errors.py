# comande/errors.py
from __future__ import annotations

from typing import Iterable


class OrderError(Exception):
    """Radice degli errori del ciclo di vita ordini."""


class ValidationError(OrderError):
    """Dati non validi: sollevata prima di aprire la transazione (o la annulla)."""

    def __init__(self, errors: Iterable[str] | str):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: list[str] = list(errors)
        super().__init__("; ".join(self.errors) or "validation failed")


class StateTransitionError(ValidationError):
    """Transizione non permessa (es. da uno stato terminale)."""


class NotFoundError(OrderError):
    pass


class UnsupportedTypeError(OrderError):
    def __init__(self, order_type):
        self.order_type = order_type
        super().__init__(f"Unsupported order type: {order_type}")


class TransactionError(OrderError):
    """Errore del database: l'intera operazione è stata annullata."""
