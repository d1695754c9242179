"""Tests for custom scalar handlers."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

import pytest

from gql_autoclient.core.parser import parse_sdl
from gql_autoclient.core.query_builder import build_operations
from gql_autoclient.core.scalars import (
    DateHandler,
    DateTimeHandler,
    JSONHandler,
    ScalarHandler,
    ScalarRegistry,
    UUIDHandler,
)


class MoneyHandler:
    def serialize(self, value):
        return str(value)


class TestHandlers:
    def test_datetime(self):
        assert DateTimeHandler().serialize(datetime(2024, 1, 15, 10, 30)) == "2024-01-15T10:30:00"

    def test_datetime_string_passes_through(self):
        assert DateTimeHandler().serialize("2024-01-15T10:30:00Z") == "2024-01-15T10:30:00Z"

    def test_date(self):
        assert DateHandler().serialize(date(2024, 1, 15)) == "2024-01-15"

    def test_date_from_datetime(self):
        assert DateHandler().serialize(datetime(2024, 1, 15, 23, 59)) == "2024-01-15"

    def test_uuid(self):
        uid = UUID("12345678-1234-5678-1234-567812345678")
        assert UUIDHandler().serialize(uid) == "12345678-1234-5678-1234-567812345678"

    def test_json(self):
        data = {"key": "value", "number": 42}
        assert JSONHandler().serialize(data) == data

    @pytest.mark.parametrize("handler", [DateTimeHandler(), DateHandler(), UUIDHandler(), JSONHandler()])
    def test_protocol(self, handler):
        assert isinstance(handler, ScalarHandler)


class TestScalarRegistry:
    def test_default_handlers_registered(self):
        registry = ScalarRegistry()
        for name in ("DateTime", "Date", "UUID", "JSON", "JSONObject"):
            assert registry.has(name)

    def test_get_nonexistent(self):
        assert ScalarRegistry().get("NonExistent") is None

    def test_serialize_unknown_scalar_is_identity(self):
        value = object()
        assert ScalarRegistry().serialize("NonExistent", value) is value

    def test_register_custom(self):
        registry = ScalarRegistry()
        registry.register("Money", MoneyHandler())
        assert registry.serialize("Money", Decimal("9.99")) == "9.99"

    def test_handlers_argument_overrides_defaults(self):
        registry = ScalarRegistry({"DateTime": JSONHandler()})
        moment = datetime(2024, 1, 15)
        assert registry.serialize("DateTime", moment) is moment
        assert registry.has("UUID")

    def test_registries_do_not_share_state(self):
        ScalarRegistry().register("Money", MoneyHandler())
        assert not ScalarRegistry().has("Money")

    def test_custom_scalar_used_when_rendering(self):
        schema = parse_sdl("scalar Money type Query { price(amount: Money!): String }")
        operations = build_operations(schema, "Query", scalars=ScalarRegistry({"Money": MoneyHandler()}))
        assert 'price(amount: "9.99")' in operations["price"].build({"amount": Decimal("9.99")})
