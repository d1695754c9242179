"""Custom scalar serializers for argument rendering.

Values passed for a custom scalar argument go through the registered
handler before they are written into an operation as a literal:

    class MoneyHandler:
        def serialize(self, value):
            return str(value)

    scalars = ScalarRegistry()
    scalars.register("Money", MoneyHandler())
    client = GraphQLClient(schema, data_source="eth", scalars=scalars)

Scalars without a handler are rendered from the Python value as is.
"""

from datetime import date, datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID


@runtime_checkable
class ScalarHandler(Protocol):
    def serialize(self, value: Any) -> Any:
        """Return a JSON-compatible value for ``value``."""
        ...


class DateTimeHandler:
    """ISO 8601 timestamps; strings are assumed to be formatted already."""

    def serialize(self, value: datetime | str) -> str:
        return value if isinstance(value, str) else value.isoformat()


class DateHandler(DateTimeHandler):
    def serialize(self, value: date | str) -> str:
        if isinstance(value, datetime):
            value = value.date()
        return super().serialize(value)


class UUIDHandler:
    def serialize(self, value: UUID | str) -> str:
        return str(value)


class JSONHandler:
    """Pass-through for JSON scalars."""

    def serialize(self, value: Any) -> Any:
        return value


DEFAULT_HANDLERS: dict[str, ScalarHandler] = {
    "DateTime": DateTimeHandler(),
    "Date": DateHandler(),
    "UUID": UUIDHandler(),
    "JSON": JSONHandler(),
    "JSONObject": JSONHandler(),
}


class ScalarRegistry:
    """Maps scalar names to handlers, starting from ``DEFAULT_HANDLERS``."""

    def __init__(self, handlers: dict[str, ScalarHandler] | None = None):
        self._handlers = {**DEFAULT_HANDLERS, **(handlers or {})}

    def register(self, scalar_name: str, handler: ScalarHandler):
        self._handlers[scalar_name] = handler

    def get(self, scalar_name: str) -> ScalarHandler | None:
        return self._handlers.get(scalar_name)

    def has(self, scalar_name: str) -> bool:
        return scalar_name in self._handlers

    def serialize(self, scalar_name: str, value: Any) -> Any:
        """Serialize with the scalar's handler, or return the value unchanged."""
        handler = self._handlers.get(scalar_name)
        return value if handler is None else handler.serialize(value)
