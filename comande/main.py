import logging

from fastapi import FastAPI, WebSocket
from fastapi.responses import PlainTextResponse
from fastapi.websockets import WebSocketDisconnect

from .config import CONFIG
from .db import create_db_and_tables, seed_if_empty
from . import views_orders
from .ws import manager

logging.basicConfig(
    level=CONFIG.logging.level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# ✅ crea l'app PRIMA di includere i router
app = FastAPI(title="Comande — ciclo di vita ordini")


@app.on_event("startup")
def on_startup():
    create_db_and_tables()
    seed_if_empty()


@app.get("/health", response_class=PlainTextResponse)
def health():
    return "OK"


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)


# ✅ include dei router DOPO la creazione dell'app
app.include_router(views_orders.router)
