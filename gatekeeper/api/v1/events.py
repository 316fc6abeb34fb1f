"""Live, city-scoped event stream over WebSocket"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from gatekeeper.core.database import session_scope
from gatekeeper.core.exceptions import BaseAPIException
from gatekeeper.core.scope import ActorContext, require_city_id
from gatekeeper.services.notifier import TenantEventHub, event_hub
from gatekeeper.services.token_service import token_service

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_PENDING_EVENTS = 256


def _offer(queue: asyncio.Queue, message: dict) -> None:
    # Slow consumers lose events instead of stalling publishers
    if not queue.full():
        queue.put_nowait(message)


async def stream_events(websocket: WebSocket, city_id: Optional[str], hub: TenantEventHub = event_hub) -> None:
    """
    Relay hub events for ``city_id`` to an authenticated socket until either side stops.

    The stream ends when the client disconnects or a send fails; both tasks
    are collected before returning and the subscription is always dropped.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=MAX_PENDING_EVENTS)

    def deliver(event: str, payload: dict) -> None:
        loop.call_soon_threadsafe(_offer, queue, {"event": event, "data": payload})

    async def forward() -> None:
        while True:
            message = await queue.get()
            await websocket.send_json(message)

    async def drain() -> None:
        # Inbound frames are ignored; only the disconnect matters
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    # Subscription precedes accept()
    unsubscribe = hub.subscribe(city_id, deliver)
    tasks = []
    try:
        await websocket.accept()
        tasks = [asyncio.create_task(forward()), asyncio.create_task(drain())]
        await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        unsubscribe()
        for task in tasks:
            task.cancel()
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, Exception) and not isinstance(outcome, WebSocketDisconnect):
                logger.info("Event stream for city %s closed: %r", city_id or "*", outcome)


@router.websocket("/ws")
async def tenant_events(
    websocket: WebSocket,
    token: str = Query(...),
    city_id: Optional[str] = None,
):
    """
    Stream access and session events for the caller's city.

    A super admin without city_id receives every city's events.
    """
    try:
        with session_scope() as db:
            actor = ActorContext.from_user(token_service.validate_access_token(db, token))
        scoped_city = require_city_id(actor, city_id)
    except BaseAPIException as exc:
        logger.info("Rejected event stream connection: %s", exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await stream_events(websocket, scoped_city)
