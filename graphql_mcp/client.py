"""HTTP client for the GraphQL backend."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class GraphQLClient:
    """Posts GraphQL requests to the configured endpoint.

    No timeout, retry or caching is applied: each call issues exactly one
    POST and hands the raw response back to the caller for shaping.
    """

    def __init__(
        self,
        endpoint: str,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.endpoint = endpoint
        # Configured headers override the default content type
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._client = client
        self._owns_client = client is None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=None)
        return self._client

    async def post(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        operation_name: str | None = None,
    ) -> httpx.Response:
        """Send one GraphQL request.

        Raises:
            httpx.HTTPError: on connection level failures.
        """
        payload: dict[str, Any] = {"query": query}
        if variables is not None:
            payload["variables"] = variables
        if operation_name:
            payload["operationName"] = operation_name

        logger.debug(f"POST {self.endpoint} ({len(query)} chars)")
        return await self.http.post(self.endpoint, json=payload, headers=self.headers)

    async def fetch_text(self, url: str) -> str:
        """GET a document (e.g. a remote schema file) as text."""
        response = await self.http.get(url)
        response.raise_for_status()
        return response.text

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
