# coding: utf-8
"""
WebSocket push channel

    ws://host/ws[?apiKey=...]

On connect the client receives the current twap_status, then every
trade_executed / balance_update / twap_status / error event.
Browsers cannot set X-API-Key on a WebSocket, so the key goes in the query.
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from loguru import logger

from src.api import api_key_auth
from src.services.notification_service import EVENT_TWAP_STATUS, NotificationHub


router = APIRouter(tags=["ws"])


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
    """Pump hub messages to one client until the socket breaks"""
    while True:
        message = await queue.get()
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"WebSocket send failed, closing forwarder: {e}")
            return


@router.websocket("/ws")
async def updates_websocket(
    websocket: WebSocket,
    api_key: Optional[str] = Query(default=None, alias="apiKey"),
):
    if api_key_auth.API_KEY and not api_key_auth.key_matches(api_key):
        logger.warning("WebSocket connection rejected: invalid API key")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    services = websocket.app.state.services
    hub: NotificationHub = services.hub

    await websocket.accept()

    current = await services.scheduler.get_status()
    queue = hub.subscribe(initial=hub.build_message(EVENT_TWAP_STATUS, current))
    logger.info(f"WebSocket client connected ({hub.subscriber_count()} total)")

    forwarder = asyncio.create_task(_forward(websocket, queue))
    try:
        # Client messages are ignored; receiving only detects disconnects
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        forwarder.cancel()
        hub.unsubscribe(queue)
        logger.info(f"WebSocket client disconnected ({hub.subscriber_count()} remaining)")
