"""SSE bridge: event bus listeners → async event streams."""

import asyncio
import threading


class EventStreamBridge:
    """Broadcasts bus events to every connected SSE subscriber.

    Usage:
        bridge = EventStreamBridge(loop)
        bus.subscribe(SSEEventListener(bridge.callback))
        # In async endpoint:
        queue = bridge.subscribe()
        ...
        bridge.unsubscribe(queue)

    Thread-safe: callback() may be called from any thread (the MCP stdio
    server emits from its own), while subscribe/unsubscribe are called from
    async request handlers.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int = 1000):
        self._loop = loop
        self._maxsize = maxsize
        self._subscribers: list[asyncio.Queue[dict | None]] = []
        self._lock = threading.Lock()

    def callback(self, event: dict) -> None:
        """Fan one event out to all subscriber queues."""
        with self._lock:
            for q in self._subscribers:
                self._loop.call_soon_threadsafe(self._offer, q, event)

    @staticmethod
    def _offer(q: asyncio.Queue, event: dict) -> None:
        # A subscriber that stopped reading loses events, it does not block the bus
        if not q.full():
            q.put_nowait(event)

    @staticmethod
    def _end(q: asyncio.Queue) -> None:
        # The end marker must land even when the reader fell behind
        if q.full():
            q.get_nowait()
        q.put_nowait(None)

    def subscribe(self) -> asyncio.Queue[dict | None]:
        """Create a new subscriber queue. Returns a queue that yields events."""
        q: asyncio.Queue[dict | None] = asyncio.Queue(maxsize=self._maxsize)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Remove a subscriber queue."""
        with self._lock:
            try:
                self._subscribers.remove(q)
            except ValueError:
                pass

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def close(self) -> None:
        """Signal all subscribers to stop and clear the subscriber list."""
        with self._lock:
            for q in self._subscribers:
                self._loop.call_soon_threadsafe(self._end, q)
            self._subscribers.clear()
