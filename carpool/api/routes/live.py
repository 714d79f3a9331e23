"""
Live ride updates
=================

WS /ws/rides/{ride_id} -- pushes every committed change to the ride as
JSON ``{"collection", "id", "op", "data"}``.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from carpool.infrastructure.changefeed import ChangeFeed
from carpool.infrastructure.redis_client import get_redis
from carpool.infrastructure.store import RIDES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])


@router.websocket("/ws/rides/{ride_id}")
async def watch_ride(websocket: WebSocket, ride_id: str):
    await websocket.accept()
    feed = ChangeFeed(await get_redis())
    unsubscribe = await feed.subscribe(RIDES, websocket.send_json, doc_id=ride_id)
    try:
        # Clients only listen; drain anything they send until they leave
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Watcher of ride %s disconnected", ride_id)
    finally:
        await unsubscribe()
