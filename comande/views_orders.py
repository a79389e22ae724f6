# comande/views_orders.py
from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from .config import CONFIG
from .db import session_factory
from .errors import (
    NotFoundError,
    OrderError,
    StateTransitionError,
    TransactionError,
    UnsupportedTypeError,
    ValidationError,
)
from .orders.coordinator import OrderLifecycleCoordinator
from .orders.requests import SettleOrderRequest
from .ws import manager

log = logging.getLogger("comande.api")

router = APIRouter()

_coordinator: OrderLifecycleCoordinator | None = None


def get_coordinator() -> OrderLifecycleCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = OrderLifecycleCoordinator(session_factory(), notifier=manager)
    return _coordinator


CoordinatorDep = Annotated[OrderLifecycleCoordinator, Depends(get_coordinator)]


# --- util -------------------------------------------------------------------

def _ok(payload: dict, status_code: int = 200) -> JSONResponse:
    return JSONResponse(jsonable_encoder({"ok": True, **payload}), status_code=status_code)


def _error(e: OrderError) -> JSONResponse:
    # ⚠️ StateTransitionError è una ValidationError: va controllata prima
    if isinstance(e, StateTransitionError):
        status = 409
    elif isinstance(e, ValidationError):
        status = 422
    elif isinstance(e, NotFoundError):
        status = 404
    elif isinstance(e, UnsupportedTypeError):
        status = 400
    elif isinstance(e, TransactionError):
        status = 503
    else:
        status = 500
    body = {"ok": False, "error": str(e)}
    if isinstance(e, ValidationError):
        body["errors"] = e.errors
    return JSONResponse(body, status_code=status)


def _not_found(order_id: int) -> JSONResponse:
    return JSONResponse({"ok": False, "error": f"Ordine {order_id} non trovato"}, status_code=404)


async def _json_body(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Body JSON non valido") from None
    if not isinstance(data, dict):
        raise ValidationError("Il body deve essere un oggetto JSON")
    return data


def _is_token_collision(e: TransactionError) -> bool:
    # solo il vincolo unico (token_date, token_number); le FK rotte non si ritentano
    cause = e.__cause__
    return isinstance(cause, IntegrityError) and "token_number" in str(cause.orig)


def _create_with_retry(coordinator: OrderLifecycleCoordinator, data: dict):
    # Solo qui si ritenta: collisione sul vincolo unico (token/giorno)
    retries = CONFIG.orders.create_retries
    for attempt in range(1, retries + 1):
        try:
            return coordinator.create_order(data)
        except TransactionError as e:
            if not _is_token_collision(e) or attempt == retries:
                raise
            log.warning("create_order: conflitto di unicità, tentativo %d/%d", attempt, retries)


# --- API ordini -------------------------------------------------------------

@router.post("/api/orders")
async def create_order(request: Request, coordinator: CoordinatorDep):
    try:
        aggregate = _create_with_retry(coordinator, await _json_body(request))
    except OrderError as e:
        return _error(e)
    return _ok({"order": aggregate.to_dict()}, status_code=201)


@router.get("/api/orders/{order_id}")
async def get_order(order_id: int, coordinator: CoordinatorDep):
    try:
        aggregate = coordinator.get_order_details(order_id)
    except OrderError as e:
        return _error(e)
    if aggregate is None:
        return _not_found(order_id)
    return _ok({"order": aggregate.to_dict()})


@router.patch("/api/orders/{order_id}")
async def update_order(order_id: int, request: Request, coordinator: CoordinatorDep):
    try:
        aggregate = coordinator.update_order(order_id, await _json_body(request))
    except OrderError as e:
        return _error(e)
    if aggregate is None:
        return _not_found(order_id)
    return _ok({"order": aggregate.to_dict()})


@router.delete("/api/orders/{order_id}")
async def delete_order(order_id: int, coordinator: CoordinatorDep):
    try:
        deleted = coordinator.delete_order(order_id)
    except OrderError as e:
        return _error(e)
    if not deleted:
        return _not_found(order_id)
    return _ok({"deleted": order_id})


@router.post("/api/orders/{order_id}/fire")
async def fire_order(order_id: int, coordinator: CoordinatorDep):
    try:
        aggregate = coordinator.fire_order_to_kitchen(order_id)
    except OrderError as e:
        return _error(e)
    return _ok({"order": aggregate.to_dict()})


@router.post("/api/orders/{order_id}/settle")
async def settle_order(order_id: int, request: Request, coordinator: CoordinatorDep):
    try:
        body = await _json_body(request) if await request.body() else {}
        try:
            req = SettleOrderRequest.model_validate(body)
        except ValueError as e:
            raise ValidationError(str(e)) from None
        aggregate = coordinator.settle_order(order_id, **req.model_dump())
    except OrderError as e:
        return _error(e)
    if aggregate is None:
        return _not_found(order_id)
    return _ok({"order": aggregate.to_dict()})
