"""Schema-driven GraphQL client.

Every operation of the schema is available without hand-written
bindings. Queries and mutations go over HTTP; subscriptions share one
Phoenix channel through the SubscriptionMultiplexer.

Example:
    schema = load_schema("schema.graphql")
    async with GraphQLClient(schema, data_source="eth") as client:
        print(client.get_queries())
        block = await client.call("getBlockByHeight", height=1000)

        get_block = client.operation("getBlockByHeight")
        get_block.args      # {"height": "Int!"}
        block = await get_block(height=1000)

        stream = await client.subscribe("newBlockMined")
        stream.on("data", print)
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from graphql import GraphQLError, parse, print_ast
from pydantic import BaseModel, ConfigDict, Field

from .channel import Connector, socket_endpoint
from .errors import InvalidQuery
from .events import EventStream
from .executor import GraphQLExecutor
from .ir import IRSchema
from .query_builder import ExclusionPredicate, OperationDescriptor, OperationKind
from .registry import OperationRegistry
from .scalars import ScalarRegistry
from .subscriptions import ReconnectPolicy, SubscriptionMultiplexer

logger = logging.getLogger(__name__)

DEFAULT_HTTP_BASE_URL = "https://ocap.arcblock.io/api"


def default_socket_base_url(data_source: str) -> str:
    return f"wss://ocap.arcblock.io/api/{data_source}/socket"


class ClientConfig(BaseModel):
    """Client configuration.

    ``socket_base_url`` may be a string or a callable receiving the data source.
    """
    model_config = ConfigDict(frozen=True)

    data_source: str = Field(min_length=1)
    http_base_url: str = DEFAULT_HTTP_BASE_URL
    socket_base_url: str | Callable[[str], str] = default_socket_base_url
    enable_query: bool = True
    enable_mutation: bool = True
    enable_subscription: bool = True
    timeout: float = 30.0
    push_timeout: float = 10.0
    reconnect_delay: float = 1.0
    max_reconnect_attempts: int | None = None
    heartbeat_interval: float | None = 30.0
    resubscribe_on_reconnect: bool = True

    @property
    def http_url(self) -> str:
        return f"{self.http_base_url.rstrip('/')}/{self.data_source}"

    @property
    def socket_url(self) -> str:
        base = self.socket_base_url
        if callable(base):
            base = base(self.data_source)
        return socket_endpoint(base)

    @property
    def enabled_kinds(self) -> list[OperationKind]:
        flags = {
            OperationKind.QUERY: self.enable_query,
            OperationKind.MUTATION: self.enable_mutation,
            OperationKind.SUBSCRIPTION: self.enable_subscription,
        }
        return [kind for kind, enabled in flags.items() if enabled]


@dataclass(frozen=True)
class BoundOperation:
    """A generated operation bound to a client, callable with its arguments."""
    client: "GraphQLClient"
    descriptor: OperationDescriptor

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def kind(self) -> OperationKind:
        return self.descriptor.kind

    @property
    def args(self):
        return self.descriptor.args_shape

    @property
    def builder(self):
        return self.descriptor.build

    async def __call__(self, args: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        return await self.client._invoke(self.descriptor, {**(args or {}), **kwargs})


class GraphQLClient:
    """Client exposing every schema operation through an OperationRegistry."""

    def __init__(
        self,
        schema: IRSchema,
        config: ClientConfig | None = None,
        *,
        exclude: ExclusionPredicate | None = None,
        scalars: ScalarRegistry | None = None,
        max_depth: int | None = None,
        executor: GraphQLExecutor | None = None,
        multiplexer: SubscriptionMultiplexer | None = None,
        connector: Connector | None = None,
        **options: Any,
    ):
        """Generate the operations and prepare the transports.

        Args:
            schema: The loaded type graph
            config: Client configuration; alternatively pass its fields as keyword options
            exclude: Predicate ``(type_name, field_name) -> bool`` removing fields from selections
            scalars: Serializers for custom scalar argument values
            max_depth: Maximum selection nesting
            executor: HTTP executor (defaults to one for ``config.http_url``)
            multiplexer: Subscription multiplexer (created on first subscribe by default)
            connector: Websocket connector for the default multiplexer

        Raises:
            SchemaInconsistency: If the schema cannot be turned into operations
        """
        self.config = config or ClientConfig(**options)
        self.schema = schema
        self.registry = OperationRegistry.from_schema(
            schema,
            exclude,
            kinds=self.config.enabled_kinds,
            scalars=scalars,
            max_depth=max_depth,
        )
        self.executor = executor or GraphQLExecutor(self.config.http_url, timeout=self.config.timeout)
        self._multiplexer = multiplexer
        self._connector = connector
        logger.debug(
            "client for %s: %d queries, %d mutations, %d subscriptions",
            self.config.data_source,
            len(self.get_queries()),
            len(self.get_mutations()),
            len(self.get_subscriptions()),
        )

    @property
    def multiplexer(self) -> SubscriptionMultiplexer:
        if self._multiplexer is None:
            self._multiplexer = SubscriptionMultiplexer(
                self.config.socket_url,
                connector=self._connector,
                reconnect=ReconnectPolicy(
                    delay=self.config.reconnect_delay,
                    max_attempts=self.config.max_reconnect_attempts,
                ),
                push_timeout=self.config.push_timeout,
                heartbeat_interval=self.config.heartbeat_interval,
                resubscribe=self.config.resubscribe_on_reconnect,
            )
        return self._multiplexer

    def get_queries(self) -> list[str]:
        return self.registry.list_by_kind(OperationKind.QUERY)

    def get_mutations(self) -> list[str]:
        return self.registry.list_by_kind(OperationKind.MUTATION)

    def get_subscriptions(self) -> list[str]:
        return self.registry.list_by_kind(OperationKind.SUBSCRIPTION)

    def operation(self, name: str, kind: OperationKind | str | None = None) -> BoundOperation:
        """Return the callable for a generated operation.

        Raises:
            KeyError: If the schema has no such (enabled) operation
        """
        descriptor = self.registry.get(name, kind)
        if descriptor is None:
            raise KeyError(f"Unknown operation: {name}")
        return BoundOperation(self, descriptor)

    async def call(self, name: str, args: dict[str, Any] | None = None, **kwargs: Any) -> Any:
        """Invoke a query or mutation (returns its result) or a subscription (returns its stream)."""
        return await self.operation(name)(args, **kwargs)

    async def subscribe(self, name: str, args: dict[str, Any] | None = None, **kwargs: Any) -> EventStream:
        """Subscribe to a generated subscription operation."""
        return await self.operation(name, OperationKind.SUBSCRIPTION)(args, **kwargs)

    async def unsubscribe(self, stream: EventStream) -> bool:
        if self._multiplexer is None:
            return False
        return await self._multiplexer.unsubscribe(stream)

    async def do_raw_query(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a hand-written query, normalized through the GraphQL parser.

        Raises:
            InvalidQuery: If the query does not parse
        """
        try:
            clean_query = print_ast(parse(query))
        except GraphQLError as exc:
            raise InvalidQuery(f"invalid raw query: {exc.message}") from exc
        return await self.executor.execute(clean_query, variables)

    async def _invoke(self, descriptor: OperationDescriptor, args: dict[str, Any]) -> Any:
        if descriptor.kind is OperationKind.SUBSCRIPTION:
            query = descriptor.build(args)
            return await self.multiplexer.subscribe(query)
        return await self.executor.execute_operation(descriptor, args)

    async def close(self):
        """Close the HTTP client and tear down the subscription channel."""
        await self.executor.close()
        if self._multiplexer is not None:
            await self._multiplexer.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
