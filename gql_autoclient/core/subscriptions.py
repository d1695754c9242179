"""Subscription multiplexer over a single Phoenix channel.

One websocket connection and one joined control channel are shared by
every subscription. Logically identical subscriptions (same rendered
operation) share one server-side subscription and one EventStream.
Inbound ``subscription:data`` frames are routed to the owning stream by
server subscription id. Transport failures are broadcast to every live
stream as ``error`` events and a reconnect is scheduled.

State machine::

    DISCONNECTED -> CONNECTING -> JOINING -> JOINED
          ^                                    |
          +------------ transport error -------+
    (reconnect after ReconnectPolicy.delay)
"""

import asyncio
import hashlib
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

import websockets
from graphql import GraphQLError, parse, print_ast
from pydantic import ValidationError
from websockets.exceptions import WebSocketException

from .channel import (
    CONTROL_TOPIC,
    EVENT_CLOSE,
    EVENT_DOC,
    EVENT_ERROR,
    EVENT_HEARTBEAT,
    EVENT_JOIN,
    EVENT_REPLY,
    EVENT_SUBSCRIPTION_DATA,
    EVENT_UNSUBSCRIBE,
    HEARTBEAT_TOPIC,
    Connection,
    Connector,
    PhoenixMessage,
)
from .errors import ChannelError, InvalidQuery, SubscriptionRejected
from .events import EventKind, EventStream

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (OSError, WebSocketException)

ReplyHook = Callable[[PhoenixMessage], None]


class ChannelState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    JOINING = "joining"
    JOINED = "joined"


@dataclass(frozen=True)
class ReconnectPolicy:
    """When to retry the channel after a transport error.

    Args:
        delay: Seconds to wait before each reconnect attempt
        max_attempts: Consecutive failed attempts before giving up (None retries forever)
    """
    delay: float = 1.0
    max_attempts: int | None = None

    def next_delay(self, attempt: int) -> float | None:
        """Delay before reconnect attempt number ``attempt + 1``, or None to stop."""
        if self.max_attempts is not None and attempt >= self.max_attempts:
            return None
        return self.delay


@dataclass
class SubscriptionRecord:
    """A live subscription: the rendered query, its stream and the server's id for it."""
    query_id: str
    query: str
    stream: EventStream
    server_subscription_id: str | None = None


def query_fingerprint(query: str) -> str:
    """Stable id for a rendered operation; whitespace and formatting do not matter."""
    try:
        normalized = print_ast(parse(query))
    except GraphQLError as exc:
        raise InvalidQuery(f"invalid subscription query: {exc.message}") from exc
    return hashlib.sha256(normalized.encode()).hexdigest()


def _reply_subscription_id(reply: PhoenixMessage) -> str | None:
    """The server subscription id carried by an ok reply to a ``doc`` push."""
    response = reply.response
    if reply.status != "ok" or not isinstance(response, dict):
        return None
    subscription_id = response.get("subscriptionId")
    return subscription_id if isinstance(subscription_id, str) and subscription_id else None


def _subscription_id(reply: PhoenixMessage) -> str:
    subscription_id = _reply_subscription_id(reply)
    if subscription_id is None:
        raise ChannelError(f"subscribe reply carries no subscriptionId: {reply.response!r}")
    return subscription_id


class SubscriptionMultiplexer:
    """Owns the shared channel and the mapping from query id to subscription."""

    def __init__(
        self,
        url: str,
        *,
        connector: Connector | None = None,
        reconnect: ReconnectPolicy | None = None,
        push_timeout: float = 10.0,
        heartbeat_interval: float | None = 30.0,
        resubscribe: bool = True,
    ):
        """Initialize the multiplexer; nothing connects until the first subscribe.

        Args:
            url: Websocket endpoint of the channel socket
            connector: Coroutine ``url -> Connection``; defaults to ``websockets.connect``
            reconnect: Reconnect policy after transport errors
            push_timeout: Seconds to wait for a reply to any push
            heartbeat_interval: Seconds between heartbeats while joined (None disables)
            resubscribe: Re-issue surviving subscriptions after a reconnect
        """
        self.url = url
        self.reconnect_policy = reconnect or ReconnectPolicy()
        self.push_timeout = push_timeout
        self.heartbeat_interval = heartbeat_interval
        self.resubscribe = resubscribe
        self._connector = connector or websockets.connect

        self._state = ChannelState.DISCONNECTED
        self._connection: Connection | None = None
        self._records: dict[str, SubscriptionRecord] = {}
        self._by_server_id: dict[str, str] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._reply_hooks: dict[str, ReplyHook] = {}
        self._ref = 0

        self._join_task: asyncio.Task | None = None
        self._reader_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._reconnect_attempts = 0
        self._closing = False

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def subscriptions(self) -> Mapping[str, SubscriptionRecord]:
        """Live subscriptions keyed by query id (read-only view)."""
        return MappingProxyType(self._records)

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def _set_state(self, state: ChannelState):
        if state is not self._state:
            logger.debug("channel %s -> %s", self._state.value, state.value)
            self._state = state

    async def subscribe(self, query: str) -> EventStream:
        """Subscribe to a rendered subscription operation.

        Returns the existing stream when an identical query is already
        subscribed or being subscribed. Data pushed before the caller
        attaches a listener is held on the stream, so the first event is
        never lost.

        Raises:
            SubscriptionRejected: If the server rejects the subscription
            ChannelError: If the channel cannot be connected or joined
        """
        query_id = query_fingerprint(query)
        record = self._records.get(query_id)
        if record is not None:
            logger.debug("reusing subscription %s", query_id[:12])
            return record.stream

        task = self._inflight.get(query_id)
        if task is None:
            task = asyncio.ensure_future(self._open_subscription(query_id, query))
            self._inflight[query_id] = task
            task.add_done_callback(lambda _: self._inflight.pop(query_id, None))
        return await asyncio.shield(task)

    async def unsubscribe(self, target: EventStream | str) -> bool:
        """Drop a subscription by stream or query id and close its stream.

        Returns False when nothing was subscribed under that id.
        """
        query_id = target.query_id if isinstance(target, EventStream) else target
        record = self._records.pop(query_id, None)
        if record is None:
            return False
        self._unbind(record)
        record.stream.close()

        if self._state is ChannelState.JOINED and record.server_subscription_id is not None:
            reply = await self._push(
                CONTROL_TOPIC, EVENT_UNSUBSCRIBE, {"subscriptionId": record.server_subscription_id}
            )
            logger.debug("unsubscribe %s: %s", record.server_subscription_id, reply.status)
        return True

    async def close(self):
        """Tear down: cancel background tasks, close the socket and every stream."""
        self._closing = True
        try:
            tasks = [
                task
                for task in (
                    self._reconnect_task,
                    self._join_task,
                    self._heartbeat_task,
                    self._reader_task,
                    *self._inflight.values(),
                )
                if task is not None and not task.done()
            ]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._reconnect_task = self._join_task = None
            self._heartbeat_task = self._reader_task = None

            for future in self._pending.values():
                future.cancel()
            self._pending.clear()
            self._reply_hooks.clear()

            connection, self._connection = self._connection, None
            if connection is not None:
                await self._close_connection(connection)

            for record in self._records.values():
                record.stream.close()
            self._records.clear()
            self._by_server_id.clear()
            self._reconnect_attempts = 0
            self._set_state(ChannelState.DISCONNECTED)
        finally:
            self._closing = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _open_subscription(self, query_id: str, query: str) -> EventStream:
        await self._ensure_joined()
        record = SubscriptionRecord(query_id=query_id, query=query, stream=EventStream(query_id))

        def register(reply: PhoenixMessage):
            # runs inside the read loop, before the frame behind the reply is read
            subscription_id = _reply_subscription_id(reply)
            if subscription_id is not None:
                self._records[query_id] = record
                self._bind(record, subscription_id)

        reply = await self._push(CONTROL_TOPIC, EVENT_DOC, {"query": query}, on_reply=register)
        if reply.status != "ok":
            logger.debug("subscription error %s: %r", query_id[:12], reply.response)
            raise SubscriptionRejected(query_id, reply.response)

        subscription_id = _subscription_id(reply)
        if self._records.get(query_id) is not record:
            raise ChannelError(f"subscription {query_id[:12]} was dropped before it was returned")
        logger.debug("subscription success %s -> %s", query_id[:12], subscription_id)
        return record.stream

    async def _ensure_joined(self):
        """Drive the channel to JOINED; concurrent callers share one attempt."""
        if self._state is ChannelState.JOINED:
            return
        if self._closing:
            raise ChannelError("subscription channel is closing")
        if self._join_task is None or self._join_task.done():
            self._join_task = asyncio.ensure_future(self._connect_and_join())
        await asyncio.shield(self._join_task)

    async def _connect_and_join(self):
        self._set_state(ChannelState.CONNECTING)
        try:
            connection = await self._connector(self.url)
        except TRANSPORT_ERRORS as exc:
            error = ChannelError(f"failed to connect to {self.url}: {exc}")
            error.__cause__ = exc
            self._on_transport_error(error)
            raise error

        self._connection = connection
        self._set_state(ChannelState.JOINING)
        self._reader_task = asyncio.ensure_future(self._read_loop(connection))

        try:
            reply = await self._push(CONTROL_TOPIC, EVENT_JOIN, {})
        except ChannelError as exc:
            if self._on_transport_error(exc, connection):
                await self._close_connection(connection)
            raise

        if reply.status != "ok":
            logger.debug("channel join error %r", reply.response)
            error = ChannelError(f"channel join rejected: {reply.response!r}")
            self._release_connection()
            self._set_state(ChannelState.DISCONNECTED)
            await self._close_connection(connection)
            self._broadcast_error(error)
            raise error

        logger.debug("channel join success %r", reply.response)
        self._set_state(ChannelState.JOINED)
        self._reconnect_attempts = 0
        if self.heartbeat_interval:
            self._heartbeat_task = asyncio.ensure_future(self._heartbeat(connection))
        if self.resubscribe and self._records:
            await self._resubscribe_all()

    async def _resubscribe_all(self):
        """Re-issue every surviving subscription on a freshly joined channel."""
        for record in list(self._records.values()):

            def rebind(reply: PhoenixMessage, record: SubscriptionRecord = record):
                subscription_id = _reply_subscription_id(reply)
                if subscription_id is not None and self._records.get(record.query_id) is record:
                    self._bind(record, subscription_id)

            try:
                reply = await self._push(CONTROL_TOPIC, EVENT_DOC, {"query": record.query}, on_reply=rebind)
            except ChannelError as exc:
                # the transport error has already been broadcast to every stream
                logger.debug("resubscribe interrupted: %s", exc)
                return
            if self._records.get(record.query_id) is not record:
                continue

            if reply.status == "ok":
                subscription_id = _subscription_id(reply)
                logger.debug("resubscribed %s -> %s", record.query_id[:12], subscription_id)
            else:
                self._unbind(record)
                del self._records[record.query_id]
                record.stream.emit(EventKind.ERROR, SubscriptionRejected(record.query_id, reply.response))
                record.stream.close()

    def _bind(self, record: SubscriptionRecord, subscription_id: str):
        """Route data for ``subscription_id`` to ``record``, replacing any earlier id."""
        self._unbind(record)
        record.server_subscription_id = subscription_id
        self._by_server_id[subscription_id] = record.query_id

    def _unbind(self, record: SubscriptionRecord):
        if record.server_subscription_id is not None:
            self._by_server_id.pop(record.server_subscription_id, None)

    async def _push(
        self, topic: str, event: str, payload: dict, on_reply: ReplyHook | None = None
    ) -> PhoenixMessage:
        """Send a frame and wait for its ``phx_reply``.

        ``on_reply`` is called with the reply as soon as the read loop
        receives it, before any later frame is dispatched.
        """
        connection = self._connection
        if connection is None:
            raise ChannelError(f"cannot push {event}: channel is not connected")

        self._ref += 1
        ref = str(self._ref)
        future = asyncio.get_running_loop().create_future()
        self._pending[ref] = future
        if on_reply is not None:
            self._reply_hooks[ref] = on_reply
        message = PhoenixMessage(topic=topic, event=event, payload=payload, ref=ref)
        try:
            await connection.send(message.encode())
            return await asyncio.wait_for(future, self.push_timeout)
        except asyncio.TimeoutError as exc:
            raise ChannelError(f"timed out waiting for {event} reply") from exc
        except TRANSPORT_ERRORS as exc:
            raise ChannelError(f"failed to push {event}: {exc}") from exc
        finally:
            self._pending.pop(ref, None)
            self._reply_hooks.pop(ref, None)

    async def _read_loop(self, connection: Connection):
        try:
            while True:
                raw = await connection.recv()
                self._dispatch(raw)
        except TRANSPORT_ERRORS as exc:
            error = ChannelError(f"connection lost: {exc}")
            error.__cause__ = exc
        except ChannelError as exc:
            error = exc
        except Exception as exc:
            logger.exception("channel reader failed")
            error = ChannelError(f"channel reader failed: {exc!r}")
            error.__cause__ = exc
        if self._on_transport_error(error, connection):
            await self._close_connection(connection)

    async def _heartbeat(self, connection: Connection):
        try:
            while True:
                await asyncio.sleep(self.heartbeat_interval)
                self._ref += 1
                frame = PhoenixMessage(topic=HEARTBEAT_TOPIC, event=EVENT_HEARTBEAT, ref=str(self._ref))
                await connection.send(frame.encode())
        except TRANSPORT_ERRORS as exc:
            error = ChannelError(f"heartbeat failed: {exc}")
            error.__cause__ = exc
            if self._on_transport_error(error, connection):
                await self._close_connection(connection)

    def _dispatch(self, raw: str | bytes):
        try:
            message = PhoenixMessage.decode(raw)
        except ValidationError as exc:
            logger.warning("dropping malformed channel frame: %s", exc)
            return
        logger.debug("socket.onMessage %s %s %r", message.topic, message.event, message.payload)

        if message.event == EVENT_REPLY:
            future = self._pending.get(message.ref) if message.ref else None
            if future is not None and not future.done():
                hook = self._reply_hooks.pop(message.ref, None)
                if hook is not None:
                    hook(message)
                future.set_result(message)
        elif message.event == EVENT_SUBSCRIPTION_DATA:
            self._deliver(message.payload)
        elif message.topic == CONTROL_TOPIC and message.event in (EVENT_ERROR, EVENT_CLOSE):
            raise ChannelError(f"control channel {message.event}: {message.payload!r}")

    def _deliver(self, payload: dict):
        subscription_id = payload.get("subscriptionId")
        if not isinstance(subscription_id, str):
            logger.warning("dropping data with invalid subscriptionId %r", subscription_id)
            return
        query_id = self._by_server_id.get(subscription_id)
        record = self._records.get(query_id) if query_id is not None else None
        if record is None:
            logger.debug("dropping data for unknown subscription %s", subscription_id)
            return
        logger.debug("subscription.onMessage %s %s", query_id[:12], subscription_id)
        result = payload.get("result")
        record.stream.emit(EventKind.DATA, result.get("data") if isinstance(result, dict) else None)

    def _release_connection(self):
        """Forget the current connection and stop the tasks bound to it."""
        self._connection = None
        current = asyncio.current_task()
        for task in (self._heartbeat_task, self._reader_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._heartbeat_task = self._reader_task = None

    def _on_transport_error(self, error: ChannelError, connection: Connection | None = None) -> bool:
        """Handle a transport failure once per connection.

        Returns True when the error was handled here, False when it belonged
        to a connection that is already gone.
        """
        if self._closing:
            return False
        if connection is not None and connection is not self._connection:
            return False

        logger.debug("socket.onConnError %s", error)
        self._release_connection()
        self._set_state(ChannelState.DISCONNECTED)
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._broadcast_error(error)
        self._schedule_reconnect()
        return True

    def _broadcast_error(self, error: Exception):
        for record in list(self._records.values()):
            record.stream.emit(EventKind.ERROR, error)

    def _schedule_reconnect(self):
        if self._closing or self.reconnect_scheduled:
            return
        delay = self.reconnect_policy.next_delay(self._reconnect_attempts)
        if delay is None:
            logger.warning(
                "giving up reconnecting to %s after %d attempts", self.url, self._reconnect_attempts
            )
            return
        self._reconnect_attempts += 1
        logger.debug("reconnecting in %.2fs (attempt %d)", delay, self._reconnect_attempts)
        self._reconnect_task = asyncio.ensure_future(self._reconnect(delay))

    async def _reconnect(self, delay: float):
        await asyncio.sleep(delay)
        self._reconnect_task = None
        try:
            await self._ensure_joined()
        except ChannelError as exc:
            # failures re-enter _on_transport_error, which schedules the next attempt
            logger.debug("reconnect attempt failed: %s", exc)

    @staticmethod
    async def _close_connection(connection: Connection):
        try:
            await connection.close()
        except TRANSPORT_ERRORS as exc:
            logger.debug("error closing connection: %s", exc)
