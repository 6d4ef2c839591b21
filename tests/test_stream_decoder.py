"""Tests for the SSE stream decoder and CompletionStream."""

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest

from chat_client.decoding.stream import CompletionStream, StreamDecoder
from chat_client.exceptions import (
    ChatClientError,
    ErrorCode,
    NetworkError,
    RateLimitError,
    RemoteServiceError,
    StreamDecodeError,
)


def sse(data: dict[str, Any] | str) -> bytes:
    """Encode one ``data:`` event."""
    payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    return f"data: {payload}\n\n".encode()


def delta(content: str | None, finish_reason: str | None = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": "stream/model",
        "choices": [{"index": 0, "delta": {"content": content}, "finish_reason": finish_reason}],
    }
    body.update(extra)
    return body


STREAM = (
    b": comment line\n"
    + b"event: message\n"
    + sse(delta("Hel"))
    + sse(delta("lo, "))
    + b"data:" + json.dumps(delta("wörld ✓"), ensure_ascii=False).encode() + b"\r\n\r\n"
    + sse(delta(None, "stop", usage={"prompt_tokens": 3, "completion_tokens": 4}))
    + b"data: [DONE]\n\n"
)


def decode_all(decoder: StreamDecoder, chunks: list[bytes]) -> list[str | ChatClientError]:
    items: list[str | ChatClientError] = []
    for chunk in chunks:
        items.extend(decoder.feed(chunk))
    items.extend(decoder.close())
    return items


class TestStreamDecoder:
    """Tests for the incremental decoder."""

    def test_whole_stream(self) -> None:
        """Fragments are decoded in order."""
        decoder = StreamDecoder()

        items = decode_all(decoder, [STREAM])

        assert items == ["Hel", "lo, ", "wörld ✓"]
        assert decoder.finished
        assert decoder.finish_reason == "stop"
        assert decoder.model == "stream/model"
        assert decoder.usage is not None
        assert decoder.usage.completion_tokens == 4

    def test_every_split_offset(self) -> None:
        """Splitting the input at any byte offset gives the same result."""
        expected = decode_all(StreamDecoder(), [STREAM])

        for offset in range(len(STREAM) + 1):
            decoder = StreamDecoder()
            items = decode_all(decoder, [STREAM[:offset], STREAM[offset:]])
            assert items == expected, f"split at {offset}"

    def test_byte_at_a_time(self) -> None:
        """Single-byte chunks split multi-byte characters safely."""
        decoder = StreamDecoder()

        items = decode_all(decoder, [STREAM[i : i + 1] for i in range(len(STREAM))])

        assert "".join(i for i in items if isinstance(i, str)) == "Hello, wörld ✓"

    def test_done_ignores_trailing_bytes(self) -> None:
        """Everything after [DONE] is discarded."""
        decoder = StreamDecoder()

        items = decoder.feed(sse(delta("a")) + b"data: [DONE]\n" + sse(delta("ignored")))
        later = decoder.feed(sse(delta("also ignored")))

        assert items == ["a"]
        assert later == []
        assert decoder.close() == []

    def test_finish_reason_terminates(self) -> None:
        """A finish reason ends the stream after its own content."""
        decoder = StreamDecoder()

        items = decoder.feed(sse(delta("last", "length")) + sse(delta("after")))

        assert items == ["last"]
        assert decoder.finished
        assert decoder.finish_reason == "length"

    def test_malformed_event_does_not_stop_decoding(self) -> None:
        """A bad event yields an error item; the next good one still decodes."""
        decoder = StreamDecoder()

        items = decoder.feed(sse("{not json") + sse(delta("good")) + b"data: [DONE]\n")

        assert len(items) == 2
        assert isinstance(items[0], StreamDecodeError)
        assert items[0].code == ErrorCode.STREAM_DECODE_ERROR
        assert items[1] == "good"

    def test_invalid_utf8_line(self) -> None:
        """Undecodable bytes fail only their own line."""
        decoder = StreamDecoder()

        items = decoder.feed(b"data: \xff\xfe\n" + sse(delta("fine")))

        assert isinstance(items[0], StreamDecodeError)
        assert items[1] == "fine"

    def test_unterminated_final_line(self) -> None:
        """A last line without newline is processed on close."""
        decoder = StreamDecoder()

        assert decoder.feed(b"data: " + json.dumps(delta("tail", "stop")).encode()) == []
        assert decoder.close() == ["tail"]

    def test_premature_end(self) -> None:
        """Input ending without [DONE] or finish reason is an error."""
        decoder = StreamDecoder()
        decoder.feed(sse(delta("partial")))

        with pytest.raises(StreamDecodeError, match="ended before completion"):
            decoder.close()

    def test_provider_error_event(self) -> None:
        """An error object in place of choices is terminal."""
        decoder = StreamDecoder()

        items = decoder.feed(
            sse(delta("x"))
            + sse({"error": {"message": "upstream throttled", "code": 429}})
            + sse(delta("never"))
        )

        assert items[0] == "x"
        assert isinstance(items[1], RateLimitError)
        assert len(items) == 2
        assert decoder.finished

    def test_empty_choices_ignored(self) -> None:
        """Usage-only events carry no fragment."""
        decoder = StreamDecoder()

        items = decoder.feed(sse({"choices": [], "usage": {"total_tokens": 9}}))

        assert items == []
        assert decoder.usage is not None
        assert decoder.usage.total_tokens == 9


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered as fixed chunks, optionally failing at the end."""

    def __init__(self, chunks: list[bytes], error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error
        self.served = 0
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            self.served += 1
            yield chunk
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        self.closed = True


def make_response(body: ChunkedStream) -> httpx.Response:
    request = httpx.Request("POST", "http://test/v1/chat/completions")
    return httpx.Response(200, stream=body, request=request)


class TestCompletionStream:
    """Tests for the pull-based fragment sequence."""

    @pytest.mark.asyncio
    async def test_iterates_fragments(self) -> None:
        """Fragments arrive in order and the stream closes itself."""
        body = ChunkedStream([STREAM[:10], STREAM[10:50], STREAM[50:]])
        completion = CompletionStream(make_response(body), model="configured")

        fragments = [text async for text in completion]

        assert fragments == ["Hel", "lo, ", "wörld ✓"]
        assert completion.model == "stream/model"
        assert completion.closed
        assert body.closed

    @pytest.mark.asyncio
    async def test_lazy_pull(self) -> None:
        """Bytes are read only when no fragment is pending."""
        body = ChunkedStream([sse(delta("a")), sse(delta("b")), sse(delta(None, "stop"))])
        completion = CompletionStream(make_response(body), model="m")

        assert await completion.__anext__() == "a"
        assert body.served == 1
        assert await completion.__anext__() == "b"
        assert body.served == 2

        await completion.aclose()

    @pytest.mark.asyncio
    async def test_early_close_releases_connection(self) -> None:
        """Abandoning a stream closes the response."""
        body = ChunkedStream([sse(delta("a")), sse(delta("b"))])

        async with CompletionStream(make_response(body), model="m") as completion:
            assert await completion.__anext__() == "a"

        assert body.closed
        assert [text async for text in completion] == []

    @pytest.mark.asyncio
    async def test_aclose_idempotent(self) -> None:
        """Closing twice is harmless."""
        completion = CompletionStream(make_response(ChunkedStream([])), model="m")

        await completion.aclose()
        await completion.aclose()

        assert completion.closed

    @pytest.mark.asyncio
    async def test_malformed_event_skipped(self) -> None:
        """Malformed events are recorded and skipped by default."""
        body = ChunkedStream([sse("{broken"), sse(delta("ok", "stop"))])
        completion = CompletionStream(make_response(body), model="m")

        fragments = [text async for text in completion]

        assert fragments == ["ok"]
        assert len(completion.errors) == 1
        assert isinstance(completion.errors[0], StreamDecodeError)

    @pytest.mark.asyncio
    async def test_malformed_event_raised_on_request(self) -> None:
        """With raise_on_decode_error, the element fails but iteration continues."""
        body = ChunkedStream([sse("{broken"), sse(delta("ok", "stop"))])
        completion = CompletionStream(make_response(body), model="m", raise_on_decode_error=True)

        with pytest.raises(StreamDecodeError):
            await completion.__anext__()

        assert await completion.__anext__() == "ok"
        with pytest.raises(StopAsyncIteration):
            await completion.__anext__()

    @pytest.mark.asyncio
    async def test_premature_end_raised_after_fragments(self) -> None:
        """A connection that closes early fails after the data it carried."""
        body = ChunkedStream([sse(delta("partial"))])
        completion = CompletionStream(make_response(body), model="m")

        assert await completion.__anext__() == "partial"
        with pytest.raises(StreamDecodeError, match="ended before completion"):
            await completion.__anext__()

        assert completion.closed
        assert body.closed

    @pytest.mark.asyncio
    async def test_unterminated_tail_yielded_before_premature_end(self) -> None:
        """An unterminated final line is decoded before the early-end error."""
        body = ChunkedStream([sse(delta("a")), b"data: " + json.dumps(delta("b")).encode()])
        completion = CompletionStream(make_response(body), model="m")

        assert await completion.__anext__() == "a"
        assert await completion.__anext__() == "b"
        with pytest.raises(StreamDecodeError, match="ended before completion"):
            await completion.__anext__()

    @pytest.mark.asyncio
    async def test_transport_failure_is_terminal(self) -> None:
        """A mid-stream read error is converted and ends the stream."""
        body = ChunkedStream([sse(delta("a"))], error=httpx.ReadError("connection reset"))
        completion = CompletionStream(make_response(body), model="m")

        assert await completion.__anext__() == "a"
        with pytest.raises(NetworkError) as exc_info:
            await completion.__anext__()

        assert isinstance(exc_info.value.__cause__, httpx.ReadError)
        assert [text async for text in completion] == []

    @pytest.mark.asyncio
    async def test_provider_error_raised(self) -> None:
        """A provider error event surfaces as the terminal element."""
        body = ChunkedStream([sse(delta("a")), sse({"error": {"message": "bad upstream"}})])
        completion = CompletionStream(make_response(body), model="m")

        assert await completion.__anext__() == "a"
        with pytest.raises(RemoteServiceError, match="bad upstream"):
            await completion.__anext__()
