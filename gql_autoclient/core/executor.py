"""GraphQL executor for queries and mutations.

Handles HTTP communication, error handling, and response parsing.
"""

import logging
from typing import Any

import httpx
from pydantic import TypeAdapter

from .errors import GraphQLResponseError, RequestFailed
from .query_builder import OperationDescriptor

logger = logging.getLogger(__name__)

_VARIABLES = TypeAdapter(Any)


class GraphQLExecutor:
    """Executes GraphQL operations against an HTTP endpoint.

    Examples:
        executor = GraphQLExecutor("https://ocap.arcblock.io/api/eth")
        data = await executor.execute("{ getChainInfo { height } }")

        # In tests, route requests to a handler instead of the network
        executor = GraphQLExecutor(url, transport=httpx.MockTransport(handler))
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the executor.

        Args:
            url: GraphQL endpoint URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
        """
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def execute(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute a raw GraphQL query.

        Args:
            query: GraphQL query string
            variables: Query variables

        Returns:
            The 'data' portion of the response

        Raises:
            RequestFailed: If the request fails or the status is not 200
            GraphQLResponseError: If the response carries errors and no data
        """
        client = await self._get_client()

        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = self._serialize_variables(variables)

        logger.debug("doRequest.query %s", query)
        try:
            response = await client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            raise RequestFailed(f"request to {self.url} failed: {exc}") from exc

        if response.status_code != 200:
            raise RequestFailed(
                f"doRequest.error: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            result = response.json()
        except ValueError as exc:
            raise RequestFailed("response is not valid JSON", status_code=200, body=response.text) from exc

        if not isinstance(result, dict):
            raise RequestFailed("response is not a GraphQL result object", status_code=200, body=response.text)

        data = result.get("data")
        errors = result.get("errors")
        logger.debug("doRequest.response status=%s data=%r errors=%r", response.status_code, data, errors)

        if errors and data is None:
            error_messages = "; ".join(e.get("message", str(e)) for e in errors)
            raise GraphQLResponseError(f"GraphQL errors: {error_messages}", errors)
        if errors:
            logger.warning("partial response from %s with %d errors", self.url, len(errors))

        return data or {}

    async def execute_operation(
        self,
        operation: OperationDescriptor,
        args: dict[str, Any] | None = None,
    ) -> Any:
        """Build and execute a generated query or mutation.

        Returns:
            The value under the operation's root field
        """
        data = await self.execute(operation.build(args))
        return data.get(operation.name)

    def _serialize_variables(self, variables: dict[str, Any]) -> dict[str, Any]:
        """Make variables JSON-ready; models are dumped by alias and None values dropped."""
        return {
            key: _VARIABLES.dump_python(value, mode="json", by_alias=True, exclude_none=True)
            for key, value in variables.items()
            if value is not None
        }
