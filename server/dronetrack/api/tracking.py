"""Tracking session endpoints.

Thin FastAPI adapter over the session registry: open, read and stop a
session, or watch it over a websocket.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from dronetrack.core.tracking import SessionLoadError, TrackingSessionController

log = structlog.get_logger()

router = APIRouter(prefix="/api/v1")

# Websocket close code sent when the order can't be loaded.
WS_CLOSE_NOT_FOUND = 4404


def _load_error() -> JSONResponse:
    return JSONResponse({"error": "unable to load order"}, status_code=404)


@router.post("/tracking/{order_id}")
async def start_tracking(order_id: str) -> JSONResponse:
    """Start (or join) the tracking session for an order and return its snapshot."""
    from dronetrack.main import get_registry

    try:
        controller = await get_registry().open(order_id)
    except SessionLoadError:
        return _load_error()
    except ValueError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    return JSONResponse(controller.snapshot())


@router.get("/tracking/{order_id}")
async def get_tracking(order_id: str) -> JSONResponse:
    from dronetrack.main import get_registry

    controller = get_registry().get(order_id)
    if controller is None:
        return JSONResponse({"error": "no active session"}, status_code=404)
    return JSONResponse(controller.snapshot())


@router.delete("/tracking/{order_id}")
async def stop_tracking(order_id: str) -> dict:
    from dronetrack.main import get_registry

    stopped = await get_registry().close(order_id)
    return {"order_id": order_id, "stopped": stopped}


async def _send_updates(ws: WebSocket, controller: TrackingSessionController) -> None:
    async for snapshot in controller.updates():
        await ws.send_json(snapshot)


async def _wait_for_disconnect(ws: WebSocket) -> None:
    # Clients may send pings; the content is ignored.
    while True:
        await ws.receive_text()


@router.websocket("/tracking/{order_id}/ws")
async def tracking_ws(ws: WebSocket, order_id: str) -> None:
    """Push a snapshot on every session change until either side goes away."""
    from dronetrack.main import get_registry

    await ws.accept()
    try:
        controller = await get_registry().open(order_id)
    except (SessionLoadError, ValueError):
        await ws.send_json({"error": "unable to load order"})
        await ws.close(code=WS_CLOSE_NOT_FOUND)
        return

    sender = asyncio.create_task(_send_updates(ws, controller))
    receiver = asyncio.create_task(_wait_for_disconnect(ws))
    done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    for task in done:
        exc = task.exception()
        if exc is not None and not isinstance(exc, WebSocketDisconnect):
            log.warning("tracking_ws_failed", order=order_id, error=str(exc))

    if sender in done and receiver not in done:
        # Session stopped; the client is still connected.
        await ws.close()
    log.debug("tracking_ws_closed", order=order_id)
