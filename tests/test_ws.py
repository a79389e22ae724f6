import asyncio
import json
from decimal import Decimal

from comande.ws import ConnectionManager


class FakeSocket:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_text(self, message):
        if self.fail:
            raise RuntimeError("chiuso")
        self.sent.append(message)


def test_emit_without_loop_is_dropped():
    mgr = ConnectionManager()
    sock = FakeSocket()
    mgr.active_connections.add(sock)
    mgr.emit("db_change", {"table": "orders"})
    assert sock.sent == []


def test_emit_inside_loop_broadcasts_and_prunes_dead_sockets():
    mgr = ConnectionManager()
    alive, dead = FakeSocket(), FakeSocket(fail=True)
    mgr.active_connections.update({alive, dead})

    async def run():
        mgr.emit("NEW_KITCHEN_ORDER", {"order_id": 1, "total": Decimal("17.25")})
        await asyncio.gather(*mgr._pending)

    asyncio.run(run())
    msg = json.loads(alive.sent[0])
    assert msg == {"event": "NEW_KITCHEN_ORDER", "payload": {"order_id": 1, "total": "17.25"}}
    assert dead not in mgr.active_connections
