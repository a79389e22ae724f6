# comande/orders/audit.py
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

from sqlalchemy import event
from sqlmodel import Session

from ..models import AuditLog

log = logging.getLogger("comande.audit")


class AuditAction(str, Enum):
    GUEST_COUNT_REDUCTION = "GUEST_COUNT_REDUCTION"
    ORDER_VOID = "ORDER_VOID"
    ORDER_CANCEL = "ORDER_CANCEL"
    FORCE_SETTLE = "FORCE_SETTLE"


class AuditRecorder:
    """Log append-only delle eccezioni autorizzate (PIN manager ecc.).

    L'insert avviene nella stessa transazione della modifica che documenta e
    viene flushato subito: se l'audit fallisce, fallisce tutta l'operazione.
    """

    def record(
        self,
        tx: Session,
        action_type: AuditAction | str,
        entity_type: str,
        entity_id: Optional[int],
        staff_id: Optional[int],
        details: Optional[dict[str, Any]] = None,
        restaurant_id: Optional[int] = None,
    ) -> AuditLog:
        entry = AuditLog(
            restaurant_id=restaurant_id,
            action_type=getattr(action_type, "value", action_type),
            entity_type=entity_type,
            entity_id=entity_id,
            staff_id=staff_id,
            details=details or {},
        )
        tx.add(entry)
        tx.flush()
        log.info("audit %s %s#%s staff=%s", entry.action_type, entity_type, entity_id, staff_id)
        return entry


# Append-only anche a livello ORM: niente update né delete
@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise RuntimeError("audit_log è append-only: update non permesso")


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise RuntimeError("audit_log è append-only: delete non permesso")
