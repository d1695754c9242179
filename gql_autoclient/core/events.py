"""Per-subscription event streams.

An ``EventStream`` is what a subscriber holds. The multiplexer emits
``data`` events for pushed results, ``error`` events for channel-wide
failures and a final ``close`` event on unsubscribe or teardown.
Consumers either register callbacks or iterate asynchronously:

    stream = await client.subscribe("newBlock")
    stream.on("data", print)

    async for event in stream:
        if event.kind is EventKind.DATA:
            handle(event.payload)

Events of a kind nobody is listening for are held back and replayed, in
order, once a callback for that kind or an iterator attaches.
"""

import asyncio
import logging
from collections import defaultdict, deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

BACKLOG_SIZE = 100


class EventKind(str, Enum):
    DATA = "data"
    ERROR = "error"
    CLOSE = "close"


@dataclass(frozen=True)
class StreamEvent:
    kind: EventKind
    payload: Any = None


Listener = Callable[[Any], None]


class EventStream:
    """Event channel owned by one subscription."""

    def __init__(self, query_id: str, backlog_size: int = BACKLOG_SIZE):
        self.query_id = query_id
        self.closed = False
        self._listeners: dict[EventKind, list[Listener]] = defaultdict(list)
        self._queues: list[asyncio.Queue] = []
        self._backlog: deque[StreamEvent] = deque(maxlen=backlog_size)

    def __repr__(self) -> str:
        return f"EventStream({self.query_id[:12]!r}, closed={self.closed})"

    def on(self, kind: EventKind | str, callback: Listener) -> Listener:
        """Call ``callback(payload)`` for every event of ``kind``."""
        kind = EventKind(kind)
        self._listeners[kind].append(callback)
        self._replay_backlog(kind)
        return callback

    def once(self, kind: EventKind | str, callback: Listener) -> Listener:
        """Call ``callback(payload)`` for the next event of ``kind`` only."""
        kind = EventKind(kind)

        def wrapper(payload: Any):
            self.off(kind, wrapper)
            callback(payload)

        return self.on(kind, wrapper)

    def off(self, kind: EventKind | str, callback: Listener):
        listeners = self._listeners[EventKind(kind)]
        if callback in listeners:
            listeners.remove(callback)

    def emit(self, kind: EventKind | str, payload: Any = None):
        """Deliver an event to callbacks and to every active iterator."""
        kind = EventKind(kind)
        if self.closed:
            logger.debug("dropping %s event on closed stream %s", kind.value, self.query_id[:12])
            return
        event = StreamEvent(kind, payload)
        if not self._queues and not self._listeners[kind]:
            self._backlog.append(event)
            return
        self._deliver(event)

    def close(self):
        """Emit the final ``close`` event and end all iterators.

        Events still held back for a consumer that never attached are
        discarded.
        """
        if self.closed:
            return
        self.emit(EventKind.CLOSE)
        self.closed = True
        self._listeners.clear()
        self._backlog.clear()

    def events(self) -> AsyncIterator[StreamEvent]:
        """Iterate over events in arrival order until the stream closes.

        The iterator receives every event emitted after this call, even
        before it is first advanced.
        """
        if self.closed:
            return self._drain(None)
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        self._replay_backlog()
        return self._drain(queue)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events()

    async def _drain(self, queue: asyncio.Queue | None) -> AsyncIterator[StreamEvent]:
        if queue is None:
            return
        try:
            while True:
                event = await queue.get()
                yield event
                if event.kind is EventKind.CLOSE:
                    return
        finally:
            self._queues.remove(queue)

    def _deliver(self, event: StreamEvent):
        for callback in list(self._listeners[event.kind]):
            try:
                callback(event.payload)
            except Exception:
                logger.exception("listener for %s event raised", event.kind.value)
        for queue in self._queues:
            queue.put_nowait(event)

    def _replay_backlog(self, kind: EventKind | None = None):
        """Hand held-back events to a consumer that just attached.

        A callback only takes events of its own kind, and only while a
        callback for that kind remains. Everything else stays held back.
        """
        pending, self._backlog = self._backlog, deque(maxlen=self._backlog.maxlen)
        for event in pending:
            if kind is None or (event.kind is kind and self._listeners[kind]):
                self._deliver(event)
            else:
                self._backlog.append(event)
