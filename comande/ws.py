# comande/ws.py
import asyncio
import json
import logging
from typing import Set

from fastapi import WebSocket

log = logging.getLogger("comande.ws")


class ConnectionManager:
    """Bus notifiche verso cucina/sala: broadcast JSON ai client /ws."""

    def __init__(self) -> None:
        self.active_connections: Set[WebSocket] = set()
        self._pending: Set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)

    async def broadcast_text(self, message: str):
        """Invia testo a tutti i client connessi; rimuove quelli morti."""
        dead = []
        for ws in list(self.active_connections):
            try:
                await ws.send_text(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.disconnect(ws)

    async def broadcast_json(self, payload: dict):
        """Invia JSON a tutti i client connessi (Decimal/datetime come stringhe)."""
        await self.broadcast_text(json.dumps(payload, default=str))

    def emit(self, event: str, payload: dict) -> None:
        """Fire-and-forget, chiamabile da codice sincrono.

        Nessun retry: se non c'è un event loop attivo la notifica va persa.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.warning("evento %s scartato: nessun event loop attivo", event)
            return
        task = loop.create_task(self.broadcast_json({"event": event, "payload": payload}))
        # riferimento forte finché il task non termina
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


manager = ConnectionManager()
