"""Core modules for schema-driven GraphQL clients."""

from .channel import Connection, PhoenixMessage, socket_endpoint
from .client import BoundOperation, ClientConfig, GraphQLClient
from .errors import (
    AutoClientError,
    ChannelError,
    GraphQLResponseError,
    InvalidQuery,
    MissingArgument,
    RequestFailed,
    SchemaInconsistency,
    SubscriptionRejected,
)
from .events import EventKind, EventStream, StreamEvent
from .executor import GraphQLExecutor
from .ir import (
    IRArgument,
    IREnumValue,
    IRField,
    IRSchema,
    IRType,
    TypeKind,
)
from .parser import SchemaParser, load_schema, parse_introspection, parse_sdl
from .query_builder import (
    FieldExclusion,
    OperationDescriptor,
    OperationKind,
    QueryBuilder,
    build_operations,
)
from .registry import OperationRegistry
from .scalars import (
    DateHandler,
    DateTimeHandler,
    JSONHandler,
    ScalarHandler,
    ScalarRegistry,
    UUIDHandler,
)
from .subscriptions import (
    ChannelState,
    ReconnectPolicy,
    SubscriptionMultiplexer,
    SubscriptionRecord,
    query_fingerprint,
)

__all__ = [
    # Errors
    "AutoClientError",
    "ChannelError",
    "GraphQLResponseError",
    "InvalidQuery",
    "MissingArgument",
    "RequestFailed",
    "SchemaInconsistency",
    "SubscriptionRejected",
    # Scalars
    "ScalarHandler",
    "ScalarRegistry",
    "DateTimeHandler",
    "DateHandler",
    "UUIDHandler",
    "JSONHandler",
    # IR types
    "IRArgument",
    "IREnumValue",
    "IRField",
    "IRSchema",
    "IRType",
    "TypeKind",
    # Parser
    "SchemaParser",
    "load_schema",
    "parse_introspection",
    "parse_sdl",
    # Query Builder
    "FieldExclusion",
    "OperationDescriptor",
    "OperationKind",
    "QueryBuilder",
    "build_operations",
    "OperationRegistry",
    # Transports
    "GraphQLExecutor",
    "Connection",
    "PhoenixMessage",
    "socket_endpoint",
    "ChannelState",
    "ReconnectPolicy",
    "SubscriptionMultiplexer",
    "SubscriptionRecord",
    "query_fingerprint",
    "EventKind",
    "EventStream",
    "StreamEvent",
    # Client
    "BoundOperation",
    "ClientConfig",
    "GraphQLClient",
]
