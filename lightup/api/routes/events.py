"""
Lightup Events Endpoints

Server-Sent Events and WebSocket endpoints fed by the in-process event bus.
"""

import asyncio
import json
from typing import AsyncGenerator, Callable, Optional

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse

from lightup.api.dependencies import get_bus, token_is_valid
from lightup.config import load_config
from lightup.logging import get_logger
from lightup.services.events import EventBroadcaster

logger = get_logger(__name__)

KEEPALIVE_SECONDS = 15.0

router = APIRouter(tags=["Events"])
ws_router = APIRouter(tags=["Events"])


# ==================== SSE Endpoint ====================

async def event_generator(
    bus: EventBroadcaster,
    request: Optional[Request] = None,
    *,
    keepalive_seconds: float = KEEPALIVE_SECONDS,
) -> AsyncGenerator[str, None]:
    """Forward every bus message as an SSE `data:` frame, with keep-alive comments."""
    sub = bus.subscribe()
    try:
        yield ": connected\n\n"
        while True:
            if request is not None and await request.is_disconnected():
                break
            try:
                message = await asyncio.wait_for(sub.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            if message is None:
                if sub.lagged:
                    logger.warning("sse_client_lagged", extra={"subscriber_id": sub.id})
                break
            yield f"data: {message}\n\n"
    finally:
        bus.unsubscribe(sub)


@router.get("/events")
async def stream_events(
    request: Request,
    bus: EventBroadcaster = Depends(get_bus),
):
    """Live board events (SSE). Clients that fall too far behind are disconnected."""
    return StreamingResponse(
        event_generator(bus, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ==================== WebSocket Endpoints ====================

def agent_log_filter(card_id: str) -> Callable[[str], bool]:
    """Accept only AgentLogCreated messages for one card."""

    def accept(message: str) -> bool:
        try:
            payload = json.loads(message)
        except ValueError:
            return False
        return payload.get("type") == "AgentLogCreated" and payload.get("card_id") == card_id

    return accept


def _websocket_authorized(websocket: WebSocket) -> bool:
    return token_is_valid(
        load_config().api_token,
        websocket.headers.get("authorization"),
        websocket.headers.get("x-lightup-token") or websocket.query_params.get("token"),
    )


async def _pump(websocket: WebSocket, bus: EventBroadcaster, accept: Callable[[str], bool]) -> None:
    if not _websocket_authorized(websocket):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    sub = bus.subscribe()
    await websocket.accept()

    async def watch_disconnect() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            sub.close()

    watcher = asyncio.create_task(watch_disconnect())
    try:
        while True:
            message = await sub.get()
            if message is None:
                break
            if accept(message):
                await websocket.send_text(message)
    except WebSocketDisconnect:
        pass
    finally:
        watcher.cancel()
        bus.unsubscribe(sub)
    if sub.lagged:
        logger.warning("websocket_client_lagged", extra={"subscriber_id": sub.id})
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)


@ws_router.websocket("/ws/cards/{card_id}/logs")
async def card_logs_websocket(websocket: WebSocket, card_id: str):
    """Agent log entries for one card as they are persisted."""
    await _pump(websocket, websocket.app.state.bus, agent_log_filter(card_id))


@ws_router.websocket("/ws/events")
async def events_websocket(websocket: WebSocket):
    await _pump(websocket, websocket.app.state.bus, lambda _message: True)
