"""HTTP transport for the chat-completions endpoint.

One call per attempt. Owns (or borrows) the ``httpx.AsyncClient`` connection
pool and classifies every outcome: a successful response is returned, any
failure is raised as a ChatClientError whose ``retryable`` flag tells the
retry controller what to do.
"""

import asyncio
from contextlib import AsyncExitStack
from typing import Any

import httpx

from chat_client.config import ClientConfig
from chat_client.exceptions import error_from_httpx, error_from_status
from chat_client.llm.request import build_headers
from chat_client.logging_config import get_logger

logger = get_logger(__name__)


class HTTPTransport:
    """Sends chat-completion requests over a shared connection pool.

    Headers are fixed for the lifetime of the transport. When
    ``max_concurrent_requests`` is set, at most that many requests are
    being sent at once; a stream holds its slot only until its response
    headers arrive.
    """

    def __init__(
        self,
        config: ClientConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            config: Client configuration.
            client: HTTP client to borrow (its lifecycle stays with the caller).
        """
        self._config = config
        self._client = client
        self._owns_client = client is None
        api_key = config.api_key.get_secret_value()
        self._headers = build_headers(api_key)
        self._stream_headers = build_headers(api_key, stream=True)
        self._timeout = httpx.Timeout(config.timeout, connect=config.connect_timeout)
        self._limit = (
            asyncio.Semaphore(config.max_concurrent_requests)
            if config.max_concurrent_requests
            else None
        )

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                limits=httpx.Limits(
                    max_keepalive_connections=self._config.pool_max_keepalive,
                    keepalive_expiry=self._config.pool_idle_timeout,
                ),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def send(self, payload: dict[str, Any]) -> bytes:
        """Perform one non-streaming request.

        Args:
            payload: JSON request body.

        Returns:
            The response body of a 2xx response.

        Raises:
            ChatClientError: Classified transport or HTTP failure.
        """
        client = self._get_client()
        async with AsyncExitStack() as stack:
            if self._limit is not None:
                await stack.enter_async_context(self._limit)
            try:
                response = await client.post(
                    self._config.endpoint,
                    json=payload,
                    headers=self._headers,
                    timeout=self._timeout,
                )
            except httpx.HTTPError as e:
                logger.warning(f"LLM request failed: {e!r}")
                raise error_from_httpx(e) from e

        if not response.is_success:
            logger.warning(
                f"LLM service returned {response.status_code}",
                extra={"status_code": response.status_code},
            )
            raise error_from_status(response.status_code, response.text, response.headers)

        return response.content

    async def open_stream(self, payload: dict[str, Any]) -> httpx.Response:
        """Open a streaming request and return the response once headers arrive.

        The caller owns the returned response and must close it.

        Args:
            payload: JSON request body (with ``stream`` set).

        Returns:
            An open response with a 2xx status.

        Raises:
            ChatClientError: Classified transport or HTTP failure.
        """
        client = self._get_client()
        request = client.build_request(
            "POST",
            self._config.endpoint,
            json=payload,
            headers=self._stream_headers,
            timeout=self._timeout,
        )

        async with AsyncExitStack() as stack:
            if self._limit is not None:
                await stack.enter_async_context(self._limit)
            try:
                response = await client.send(request, stream=True)
            except httpx.HTTPError as e:
                logger.warning(f"LLM stream request failed: {e!r}")
                raise error_from_httpx(e) from e

        if response.is_success:
            return response

        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError as e:
            logger.debug(f"Could not read error body: {e!r}")
            body = ""
        finally:
            await response.aclose()

        logger.warning(
            f"LLM service returned {response.status_code} for stream",
            extra={"status_code": response.status_code},
        )
        raise error_from_status(response.status_code, body, response.headers)
