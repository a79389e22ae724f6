import pytest
from sqlmodel import Session, select

from comande.models import AuditLog
from comande.orders.audit import AuditAction, AuditRecorder


def test_record_is_persisted_with_details(engine, query):
    with Session(engine) as tx, tx.begin():
        entry = AuditRecorder().record(
            tx, AuditAction.ORDER_VOID, "ORDER", 7, staff_id=3,
            details={"reason": "errore cassa"}, restaurant_id=1,
        )
        assert entry.id is not None  # flush immediato
    rows = query(select(AuditLog))
    assert len(rows) == 1
    assert rows[0].action_type == "ORDER_VOID"
    assert rows[0].staff_id == 3
    assert rows[0].details == {"reason": "errore cassa"}


def test_audit_rows_cannot_be_updated(engine):
    with Session(engine) as tx, tx.begin():
        AuditRecorder().record(tx, AuditAction.FORCE_SETTLE, "ORDER", 1, staff_id=1)
    with Session(engine) as tx:
        entry = tx.exec(select(AuditLog)).first()
        entry.staff_id = 99
        tx.add(entry)
        with pytest.raises(RuntimeError):
            tx.flush()
        tx.rollback()


def test_audit_rows_cannot_be_deleted(engine):
    with Session(engine) as tx, tx.begin():
        AuditRecorder().record(tx, "GUEST_COUNT_REDUCTION", "ORDER", 1, staff_id=1)
    with Session(engine) as tx:
        entry = tx.exec(select(AuditLog)).first()
        tx.delete(entry)
        with pytest.raises(RuntimeError):
            tx.flush()
        tx.rollback()
