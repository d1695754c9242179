"""Exceptions raised by the generated client.

Generation-time errors (``SchemaInconsistency``) abort client construction.
Per-call errors are raised to the caller of that call. Channel-wide errors
(``ChannelError``) are also delivered to every live subscription stream.
"""

from typing import Any


class AutoClientError(Exception):
    """Base class for all client errors."""


class SchemaInconsistency(AutoClientError):
    """The type graph is missing a root type or references an unknown type."""


class MissingArgument(AutoClientError):
    """A required operation argument was not supplied."""

    def __init__(self, operation: str, argument: str):
        self.operation = operation
        self.argument = argument
        super().__init__(f"{operation}: missing required argument '{argument}'")


class InvalidQuery(AutoClientError):
    """A raw query string could not be parsed."""


class RequestFailed(AutoClientError):
    """A query or mutation request did not succeed."""

    def __init__(self, message: str, status_code: int | None = None, body: Any = None):
        self.message = message
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class GraphQLResponseError(RequestFailed):
    """The server answered 200 but reported errors instead of data."""

    def __init__(self, message: str, errors: list[dict[str, Any]], status_code: int = 200):
        self.errors = errors
        super().__init__(message, status_code=status_code, body={"errors": errors})


class SubscriptionRejected(AutoClientError):
    """The channel answered a subscribe push with an error reply."""

    def __init__(self, query_id: str, reason: Any = None):
        self.query_id = query_id
        self.reason = reason
        super().__init__(f"subscription {query_id[:12]} rejected: {reason!r}")


class ChannelError(AutoClientError):
    """The subscription channel failed at the transport level."""
