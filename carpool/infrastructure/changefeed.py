"""
Change subscriptions over Redis pub/sub.

The store queues a ``ChangeEvent`` for every write; once the unit of work
commits, ``publish_pending_changes`` pushes them to one channel per
collection.  Subscribers filter by document id and/or store conditions on
their side, so a single channel serves both "watch this ride" and "watch
rides matching X".

Events of a rolled-back transaction are discarded, never published.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from .redis_client import get_redis
from .store import (
    ChangeEvent,
    Condition,
    discard_pending_changes,
    pending_changes,
)
from carpool.config import settings

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[dict[str, Any]], Optional[Awaitable[None]]]


def channel_for(collection: str) -> str:
    return f"{settings.lock_prefix}:changes:{collection}"


def event_matches(
    event: dict[str, Any],
    doc_id: Optional[str] = None,
    conditions: Iterable[Condition] = (),
) -> bool:
    if doc_id is not None and event.get("id") != doc_id:
        return False
    data = event.get("data")
    if data is None:
        # deletes carry no body; only id-scoped watchers care about them
        return doc_id is not None
    return all(condition.matches(data) for condition in conditions)


class ChangeFeed:
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, event: ChangeEvent) -> None:
        await self.redis.publish(
            channel_for(event.collection), json.dumps(event.to_dict())
        )

    async def subscribe(
        self,
        collection: str,
        callback: ChangeCallback,
        *,
        doc_id: Optional[str] = None,
        conditions: Iterable[Condition] = (),
    ) -> Callable[[], Awaitable[None]]:
        """Start delivering matching events to *callback*.

        Returns an async ``unsubscribe`` function.
        """
        conditions = tuple(conditions)
        channel = channel_for(collection)
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel)

        async def _reader() -> None:
            try:
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    try:
                        event = json.loads(message["data"])
                    except (TypeError, ValueError):
                        logger.warning("Dropping malformed change event on %s", channel)
                        continue
                    if not event_matches(event, doc_id, conditions):
                        continue
                    try:
                        result = callback(event)
                        if inspect.isawaitable(result):
                            await result
                    except Exception:
                        logger.exception(
                            "Change subscriber on %s failed for %s", channel, event.get("id")
                        )
            except RedisError:
                logger.warning("Change subscription on %s lost", channel, exc_info=True)

        task = asyncio.create_task(_reader())

        async def unsubscribe() -> None:
            try:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            finally:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()

        return unsubscribe


async def publish_pending_changes(session: AsyncSession) -> int:
    """Broadcast the committed session's change events.  Best effort."""
    events = pending_changes(session)
    discard_pending_changes(session)
    if not events:
        return 0
    try:
        feed = ChangeFeed(await get_redis())
        for event in events:
            await feed.publish(event)
    except RedisError:
        logger.warning("Could not publish %d change event(s)", len(events), exc_info=True)
        return 0
    return len(events)
