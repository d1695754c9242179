"""Phoenix channel wire protocol used for subscriptions.

Frames are JSON text messages ``{"topic", "event", "payload", "ref"}``
(serializer version 1.0.0). Subscriptions are managed on the Absinthe
control topic: a ``doc`` push carries ``{"query": ...}`` and is answered
with a ``phx_reply`` whose payload is ``{"status": "ok"|"error",
"response": {...}}``. Results arrive as ``subscription:data`` events.
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, Field

CONTROL_TOPIC = "__absinthe__:control"
HEARTBEAT_TOPIC = "phoenix"
SERIALIZER_VSN = "1.0.0"

EVENT_JOIN = "phx_join"
EVENT_LEAVE = "phx_leave"
EVENT_REPLY = "phx_reply"
EVENT_ERROR = "phx_error"
EVENT_CLOSE = "phx_close"
EVENT_HEARTBEAT = "heartbeat"
EVENT_DOC = "doc"
EVENT_UNSUBSCRIBE = "unsubscribe"
EVENT_SUBSCRIPTION_DATA = "subscription:data"


@runtime_checkable
class Connection(Protocol):
    """Protocol for the bidirectional connection carrying channel frames.

    ``websockets`` client connections satisfy it; tests use in-memory fakes.
    """

    async def send(self, message: str) -> None:
        ...

    async def recv(self) -> str | bytes:
        """Wait for the next frame; raise when the connection is lost."""
        ...

    async def close(self) -> None:
        ...


Connector = Callable[[str], Awaitable[Connection]]


class PhoenixMessage(BaseModel):
    """A single channel frame."""
    topic: str
    event: str
    payload: dict[str, Any] = Field(default_factory=dict)
    ref: str | None = None

    def encode(self) -> str:
        return self.model_dump_json()

    @classmethod
    def decode(cls, raw: str | bytes) -> "PhoenixMessage":
        return cls.model_validate_json(raw)

    @property
    def status(self) -> str | None:
        """Reply status for ``phx_reply`` frames."""
        return self.payload.get("status")

    @property
    def response(self) -> Any:
        """Reply body for ``phx_reply`` frames."""
        return self.payload.get("response")


def socket_endpoint(base_url: str, vsn: str = SERIALIZER_VSN) -> str:
    """Turn a socket base URL (``wss://host/api/ds/socket``) into the websocket endpoint.

    Appends the ``/websocket`` transport path and the serializer version
    unless they are already present.
    """
    parts = urlsplit(base_url)
    path = parts.path.rstrip("/")
    if not path.endswith("/websocket"):
        path = f"{path}/websocket"
    params = parse_qsl(parts.query)
    if not any(key == "vsn" for key, _ in params):
        params.append(("vsn", vsn))
    return urlunsplit((parts.scheme, parts.netloc, path, urlencode(params), parts.fragment))
