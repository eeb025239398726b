"""Server-sent event fan-out of store changes to live viewers."""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from pydantic import BaseModel

from config import SSE_KEEPALIVE_INTERVAL, SUBSCRIBER_QUEUE_SIZE
from store.models import FileEntry

logger = logging.getLogger(__name__)

FILE_RECEIVED = "file-received"
FILE_UPDATED = "file-updated"
FILE_REMOVED = "file-removed"


def format_frame(event: str, payload) -> str:
    """Render one ``text/event-stream`` frame with a JSON data line."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    data = json.dumps(payload, separators=(",", ":"))
    return f"event: {event}\ndata: {data}\n\n"


class Subscription:
    """Bounded frame queue owned by one live connection."""

    def __init__(self, maxsize: int) -> None:
        # One extra slot so close() can always enqueue its sentinel
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, frame: str) -> bool:
        """Enqueue without waiting. Returns False if the frame was dropped."""
        if self._closed or self._queue.qsize() >= self._maxsize:
            return False
        self._queue.put_nowait(frame)
        return True

    async def get(self, timeout: float | None = None) -> str | None:
        """
        Next frame, or None once the subscription is closed.

        Raises:
            asyncio.TimeoutError: nothing arrived within ``timeout``.
        """
        return await asyncio.wait_for(self._queue.get(), timeout)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)


class UpdateBroker:
    """
    Delivers store-change events to every subscribed viewer.

    Publishing never waits on a viewer: a subscriber whose queue is full
    misses that event and is expected to refresh its listing.
    """

    def __init__(self, queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: set[Subscription] = set()
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self) -> Subscription:
        subscription = Subscription(self._queue_size)
        async with self._lock:
            self._subscribers.add(subscription)
        logger.info(f"Live viewer connected. Total: {len(self._subscribers)}")
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        async with self._lock:
            if subscription not in self._subscribers:
                return
            self._subscribers.discard(subscription)
            subscription.close()
        logger.info(f"Live viewer disconnected. Total: {len(self._subscribers)}")

    async def publish(self, event: str, payload) -> int:
        """Send an event to all subscribers. Returns how many accepted it."""
        frame = format_frame(event, payload)
        delivered = 0
        async with self._lock:
            for subscription in self._subscribers:
                if subscription.offer(frame):
                    delivered += 1
        dropped = self.subscriber_count - delivered
        if dropped:
            logger.debug(f"Dropped {event} for {dropped} slow viewer(s)")
        return delivered

    async def publish_received(self, entry: FileEntry) -> int:
        return await self.publish(FILE_RECEIVED, entry)

    async def publish_updated(self, entry: FileEntry) -> int:
        return await self.publish(FILE_UPDATED, entry)

    async def publish_removed(self, entry_id: str) -> int:
        return await self.publish(FILE_REMOVED, {"id": entry_id})

    async def stream(
        self,
        subscription: Subscription,
        is_disconnected: Callable[[], Awaitable[bool]],
        keepalive: float = SSE_KEEPALIVE_INTERVAL,
    ) -> AsyncIterator[str]:
        """
        Yield event-stream text for one viewer until it goes away.

        The subscription is always released when the stream ends.
        """
        try:
            yield ": connected\n\n"
            while True:
                try:
                    frame = await subscription.get(timeout=keepalive)
                except asyncio.TimeoutError:
                    if await is_disconnected():
                        break
                    yield ": keepalive\n\n"
                    continue
                if frame is None:
                    break
                yield frame
        finally:
            await self.unsubscribe(subscription)
