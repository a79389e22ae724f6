# comande/orders/tables.py
from __future__ import annotations

import logging
from typing import Optional

from sqlmodel import Session

from ..errors import NotFoundError
from ..models import DiningTable, TableStatus, utcnow

log = logging.getLogger("comande.tables")


class TableStateManager:
    """Transizioni di occupazione del tavolo.

    Tutti i metodi ricevono la transazione ``tx`` del chiamante e non fanno
    commit. Il controllo "tavolo già occupato da un altro ordine" spetta a chi
    chiama ``create_order``: qui si registra solo un warning.
    """

    def get(self, tx: Session, table_id: int) -> DiningTable:
        table = tx.get(DiningTable, table_id)
        if not table:
            raise NotFoundError(f"Tavolo {table_id} non trovato")
        return table

    def acquire(self, tx: Session, table_id: int, order_id: int) -> DiningTable:
        table = self.get(tx, table_id)
        if table.status == TableStatus.OCCUPIED and table.active_order_id == order_id:
            return table
        if table.status == TableStatus.OCCUPIED and table.active_order_id not in (None, order_id):
            log.warning(
                "tavolo %s già occupato dall'ordine %s: lo prende l'ordine %s",
                table_id, table.active_order_id, order_id,
            )
        table.status = TableStatus.OCCUPIED
        table.active_order_id = order_id
        table.updated_at = utcnow()
        tx.add(table)
        log.debug("tavolo %s -> OCCUPIED (ordine %s)", table_id, order_id)
        return table

    def release(self, tx: Session, table_id: int, order_id: Optional[int] = None) -> DiningTable:
        return self._free(tx, table_id, TableStatus.AVAILABLE, order_id)

    def mark_dirty(self, tx: Session, table_id: int, order_id: Optional[int] = None) -> DiningTable:
        """Dopo il pagamento il tavolo va pulito: DIRTY, senza ordine attivo."""
        return self._free(tx, table_id, TableStatus.DIRTY, order_id)

    def _free(self, tx: Session, table_id: int, target: TableStatus, order_id: Optional[int]) -> DiningTable:
        table = self.get(tx, table_id)
        if order_id is not None and table.active_order_id not in (None, order_id):
            # il tavolo è già passato a un altro ordine: non toccarlo
            log.info("tavolo %s ora appartiene all'ordine %s, skip", table_id, table.active_order_id)
            return table
        if table.status == target and table.active_order_id is None:
            return table
        table.status = target
        table.active_order_id = None
        table.updated_at = utcnow()
        tx.add(table)
        log.debug("tavolo %s -> %s", table_id, target.value)
        return table
