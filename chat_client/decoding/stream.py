"""Incremental decoder for server-sent-event chat-completion streams.

``StreamDecoder`` is a pure state machine: it takes raw byte chunks split at
arbitrary boundaries and returns decoded text fragments. ``CompletionStream``
drives it from an ``httpx.Response``, pulling bytes from the network only
when the consumer asks for the next fragment.
"""

import time
from collections import deque
from collections.abc import AsyncIterator
from types import TracebackType
from typing import NoReturn

import httpx
from pydantic import ValidationError

from chat_client.decoding.models import StreamResponse, Usage
from chat_client.exceptions import (
    ChatClientError,
    StreamDecodeError,
    error_from_httpx,
    error_from_payload,
)
from chat_client.logging_config import get_logger
from chat_client.observability.metrics import track_llm_request, track_stream_fragments

logger = get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class StreamDecoder:
    """Reassembles SSE lines and decodes ``data:`` events into fragments.

    ``feed`` returns, in order, the text fragments and per-event decode
    errors found in the newly completed lines. A malformed event does not
    stop decoding; a ``[DONE]`` sentinel or a finish reason does, after
    which further input is discarded.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.finished = False
        self.finish_reason: str | None = None
        self.model: str | None = None
        self.usage: Usage | None = None

    def feed(self, chunk: bytes) -> list[str | ChatClientError]:
        """Consume a chunk and return whatever it completed.

        Args:
            chunk: Raw bytes as received.

        Returns:
            Fragments (``str``) and per-event errors, in stream order.
        """
        if self.finished:
            return []

        self._buffer.extend(chunk)
        items: list[str | ChatClientError] = []

        while not self.finished:
            newline = self._buffer.find(b"\n")
            if newline == -1:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            items.extend(self._process_line(line))

        if self.finished:
            self._buffer.clear()
        return items

    def flush(self) -> list[str | ChatClientError]:
        """Process an unterminated final line as if it were complete."""
        if self.finished or not self._buffer:
            return []
        line = bytes(self._buffer)
        self._buffer.clear()
        return self._process_line(line)

    def close(self) -> list[str | ChatClientError]:
        """Signal end of input.

        Returns:
            Items decoded from an unterminated final line.

        Raises:
            StreamDecodeError: If the stream ended before ``[DONE]`` or a
                finish reason was seen.
        """
        items = self.flush()
        if not self.finished:
            raise StreamDecodeError(
                "Stream ended before completion was signalled",
                details={"reason": "no [DONE] sentinel or finish reason"},
            )
        return items

    def _process_line(self, raw: bytes) -> list[str | ChatClientError]:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        if not raw.strip():
            return []

        try:
            line = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            return [StreamDecodeError(f"Invalid UTF-8 in stream: {e}")]

        # Comments (":") and event/id/retry fields carry no content.
        if not line.startswith(DATA_PREFIX):
            return []

        payload = line[len(DATA_PREFIX) :].strip()
        if not payload:
            return []
        if payload == DONE_SENTINEL:
            self.finished = True
            return []

        try:
            event = StreamResponse.model_validate_json(payload)
        except ValidationError as e:
            return [
                StreamDecodeError(
                    f"Failed to parse stream event: {e.error_count()} error(s)",
                    details={"payload": payload[:200]},
                )
            ]

        if event.error is not None and not event.choices:
            self.finished = True
            return [error_from_payload(event.error.as_mapping())]

        if event.model:
            self.model = event.model
        if event.usage is not None:
            self.usage = event.usage

        if not event.choices:
            return []

        choice = event.choices[0]
        items: list[str | ChatClientError] = []
        if choice.delta.content:
            items.append(choice.delta.content)
        if choice.finish_reason:
            self.finish_reason = choice.finish_reason
            self.finished = True
        return items


class CompletionStream:
    """Lazy, forward-only sequence of text fragments from a streamed response.

    Iterate with ``async for``. Bytes are read from the connection only when
    no decoded fragment is pending. The stream cannot be restarted: once it
    is exhausted, fails, or is closed, iteration just stops.

    Malformed events are skipped and recorded in ``errors``; with
    ``raise_on_decode_error=True`` each one is raised for its own element
    instead, and iteration may continue afterwards. Transport failures and
    a connection that closes before completion end the stream and are
    raised to the consumer.

    Use ``async with`` (or call ``aclose()``) so an abandoned stream releases
    its connection immediately.
    """

    def __init__(
        self,
        response: httpx.Response,
        model: str,
        raise_on_decode_error: bool = False,
        decoder: StreamDecoder | None = None,
    ) -> None:
        """Wrap an open streaming response.

        Args:
            response: Response opened with ``stream=True`` and a 2xx status.
            model: Configured model name, used until the stream reports one.
            raise_on_decode_error: Raise malformed events instead of skipping.
            decoder: Decoder instance (for testing).
        """
        self._response = response
        self._decoder = decoder or StreamDecoder()
        self._chunks: AsyncIterator[bytes] = response.aiter_bytes()
        self._pending: deque[str | ChatClientError] = deque()
        self._raise_on_decode_error = raise_on_decode_error
        self._configured_model = model
        self._started = time.perf_counter()
        self._closed = False
        self._input_done = False
        self.fragments = 0
        self.errors: list[ChatClientError] = []

    @property
    def model(self) -> str:
        """Model reported by the stream, else the configured one."""
        return self._decoder.model or self._configured_model

    @property
    def finish_reason(self) -> str | None:
        return self._decoder.finish_reason

    @property
    def usage(self) -> Usage | None:
        """Usage block, when the provider sent one before finishing."""
        return self._decoder.usage

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "CompletionStream":
        return self

    async def __anext__(self) -> str:
        while True:
            while self._pending:
                item = self._pending.popleft()
                if isinstance(item, str):
                    self.fragments += 1
                    return item
                if isinstance(item, StreamDecodeError):
                    self.errors.append(item)
                    logger.warning(
                        f"Malformed stream event: {item.message}",
                        extra={"error_code": item.code.value},
                    )
                    if self._raise_on_decode_error:
                        raise item
                    continue
                await self._fail(item)

            if self._closed:
                raise StopAsyncIteration

            if self._input_done:
                # Pending fragments are drained first; close() only checks
                # that the stream was terminated.
                try:
                    self._decoder.close()
                except StreamDecodeError as e:
                    await self._fail(e)
                await self._finish()
                raise StopAsyncIteration

            await self._pull()

    async def _pull(self) -> None:
        try:
            chunk = await self._chunks.__anext__()
        except StopAsyncIteration:
            self._input_done = True
            self._pending.extend(self._decoder.flush())
            return
        except httpx.HTTPError as e:
            await self._fail(error_from_httpx(e), cause=e)

        self._pending.extend(self._decoder.feed(chunk))
        if self._decoder.finished:
            # Anything after the terminator is discarded.
            self._input_done = True

    async def _fail(
        self,
        error: ChatClientError,
        cause: BaseException | None = None,
    ) -> NoReturn:
        self._pending.clear()
        self._input_done = True
        logger.error(
            f"Stream failed: {error.message}",
            extra={"error_code": error.code.value, "fragments": self.fragments},
        )
        track_llm_request(
            model=self.model,
            duration=time.perf_counter() - self._started,
            success=False,
            mode="stream",
        )
        await self.aclose()
        raise error from cause

    async def _finish(self) -> None:
        usage = self._decoder.usage
        track_llm_request(
            model=self.model,
            duration=time.perf_counter() - self._started,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
            mode="stream",
        )
        track_stream_fragments(self.model, self.fragments)
        logger.debug(
            "Stream completed",
            extra={"fragments": self.fragments, "finish_reason": self.finish_reason},
        )
        await self.aclose()

    async def aclose(self) -> None:
        """Release the underlying connection. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._pending.clear()
        await self._response.aclose()

    async def __aenter__(self) -> "CompletionStream":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
