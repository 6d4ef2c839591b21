"""LLM client interface and implementations."""

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any

import httpx

from chat_client.config import ClientConfig, load_config
from chat_client.decoding.completion import decode_completion
from chat_client.decoding.stream import CompletionStream
from chat_client.exceptions import ChatClientError
from chat_client.llm.request import build_params, prepare_messages
from chat_client.llm.retry import RetryController, RetryPolicy
from chat_client.llm.transport import HTTPTransport
from chat_client.logging_config import get_logger
from chat_client.models import Message, ResponseWithStats
from chat_client.observability.metrics import track_llm_request

logger = get_logger(__name__)


class ChatClient(ABC):
    """Abstract base class for chat clients.

    Defines the interface for generating text with LLMs, either as a single
    response or as a stream of fragments.
    """

    @abstractmethod
    async def generate_with_context_stats(
        self,
        system_message: str | None,
        history: Sequence[Message],
        prompt: str | None = None,
    ) -> ResponseWithStats:
        """Generate a response for a conversation.

        Args:
            system_message: System message (None for the configured default).
            history: Prior conversation, oldest first.
            prompt: New user prompt appended after the history.

        Returns:
            ResponseWithStats with the generated text.

        Raises:
            ChatClientError: If generation fails.
        """
        ...

    @abstractmethod
    async def generate_stream_with_context(
        self,
        system_message: str | None,
        history: Sequence[Message],
        prompt: str | None = None,
        raise_on_decode_error: bool = False,
    ) -> CompletionStream:
        """Open a streamed response for a conversation.

        Args:
            system_message: System message (None for the configured default).
            history: Prior conversation, oldest first.
            prompt: New user prompt appended after the history.
            raise_on_decode_error: Raise malformed events instead of skipping them.

        Returns:
            An open CompletionStream; the caller must close it.

        Raises:
            ChatClientError: If the connection cannot be established.
        """
        ...

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the model name."""
        ...

    async def generate(self, prompt: str) -> str:
        """Generate text for a single prompt with the default system message."""
        result = await self.generate_with_stats(prompt)
        return result.content

    async def generate_with_stats(
        self,
        prompt: str,
        system_message: str | None = None,
    ) -> ResponseWithStats:
        """Generate text for a single prompt, with request statistics."""
        return await self.generate_with_context_stats(system_message, [], prompt)

    async def generate_with_context(
        self,
        system_message: str | None,
        history: Sequence[Message],
        prompt: str | None = None,
    ) -> str:
        """Generate text for a conversation."""
        result = await self.generate_with_context_stats(system_message, history, prompt)
        return result.content

    async def generate_stream(
        self,
        prompt: str,
        system_message: str | None = None,
        raise_on_decode_error: bool = False,
    ) -> CompletionStream:
        """Open a streamed response for a single prompt."""
        return await self.generate_stream_with_context(
            system_message,
            [],
            prompt,
            raise_on_decode_error=raise_on_decode_error,
        )

    @asynccontextmanager
    async def stream(
        self,
        prompt: str,
        system_message: str | None = None,
        raise_on_decode_error: bool = False,
    ) -> AsyncIterator[CompletionStream]:
        """Stream a response, closing the connection when the block exits.

        Example:
            async with client.stream("Hello") as fragments:
                async for text in fragments:
                    print(text, end="")
        """
        completion = await self.generate_stream(
            prompt,
            system_message=system_message,
            raise_on_decode_error=raise_on_decode_error,
        )
        try:
            yield completion
        finally:
            await completion.aclose()

    async def batch_generate(self, prompts: Iterable[str]) -> list[str | ChatClientError]:
        """Generate text for several prompts concurrently.

        Args:
            prompts: Prompts to send, each with the default system message.

        Returns:
            One entry per prompt, in input order: the generated text, or
            the ChatClientError raised for that prompt.
        """
        results = await asyncio.gather(
            *(self.generate(prompt) for prompt in prompts),
            return_exceptions=True,
        )

        outcomes: list[str | ChatClientError] = []
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, ChatClientError):
                raise result
            outcomes.append(result)
        return outcomes


class OpenAICompatibleClient(ChatClient):
    """Chat client for OpenAI-compatible APIs.

    Works with:
    - OpenRouter (the default base URL)
    - OpenAI API
    - vLLM
    - Ollama (localhost:11434/v1)
    - Any OpenAI-compatible endpoint

    One instance is meant to be shared by concurrent tasks: it holds only
    the immutable configuration and the connection pool.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the OpenAI-compatible client.

        Args:
            config: Client configuration (loaded from the environment if None).
            client: HTTP client (for testing or a shared pool).
            sleep: Backoff wait (for testing).
        """
        self._config = config or load_config()
        self._transport = HTTPTransport(self._config, client=client)
        self._retry = RetryController(
            RetryPolicy.from_config(self._config),
            sleep=sleep,
            model=self._config.model,
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def model_name(self) -> str:
        """Get the model name."""
        return self._config.model

    def _messages(
        self,
        system_message: str | None,
        history: Sequence[Message],
        prompt: str | None,
    ) -> list[Message]:
        if system_message is None:
            system_message = self._config.system_message
        return prepare_messages(system_message, history, prompt)

    async def _send_and_decode(
        self,
        payload: dict[str, Any],
        started: float,
    ) -> ResponseWithStats:
        # Decoding is part of the attempt: an error object in a 200 body is
        # retried like the equivalent status.
        body = await self._transport.send(payload)
        return decode_completion(
            body,
            fallback_model=self._config.model,
            duration_ms=int((time.perf_counter() - started) * 1000),
        )

    async def generate_with_context_stats(
        self,
        system_message: str | None,
        history: Sequence[Message],
        prompt: str | None = None,
    ) -> ResponseWithStats:
        """Generate a response using the chat completions API."""
        messages = self._messages(system_message, history, prompt)
        payload = build_params(self._config, messages).to_payload()

        started = time.perf_counter()
        try:
            result = await self._retry.run(
                lambda: self._send_and_decode(payload, started),
                description="Chat completion",
            )
        except ChatClientError:
            track_llm_request(
                model=self._config.model,
                duration=time.perf_counter() - started,
                success=False,
            )
            raise

        track_llm_request(
            model=result.stats.model,
            duration=time.perf_counter() - started,
            prompt_tokens=result.stats.prompt_tokens,
            completion_tokens=result.stats.completion_tokens,
        )
        logger.info(
            f"Generated {len(result.content)} chars in {result.stats.duration_ms}ms",
            extra={
                "model": result.stats.model,
                "total_tokens": result.stats.total_tokens,
                "finish_reason": result.finish_reason,
            },
        )
        return result

    async def generate_stream_with_context(
        self,
        system_message: str | None,
        history: Sequence[Message],
        prompt: str | None = None,
        raise_on_decode_error: bool = False,
    ) -> CompletionStream:
        """Open a streamed response using the chat completions API.

        Only establishing the connection is retried. Failures after the
        first byte has been handed out surface through the stream.
        """
        messages = self._messages(system_message, history, prompt)
        payload = build_params(self._config, messages, stream=True).to_payload()

        started = time.perf_counter()
        try:
            response = await self._retry.run(
                lambda: self._transport.open_stream(payload),
                description="Chat completion stream",
            )
        except ChatClientError:
            track_llm_request(
                model=self._config.model,
                duration=time.perf_counter() - started,
                success=False,
                mode="stream",
            )
            raise

        logger.debug("Stream opened", extra={"model": self._config.model})
        return CompletionStream(
            response,
            model=self._config.model,
            raise_on_decode_error=raise_on_decode_error,
        )

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        await self._transport.close()

    async def __aenter__(self) -> "OpenAICompatibleClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
