"""Pytest configuration and shared fixtures.

Provides a minimal OpenAI-compatible chat-completions server (FastAPI,
served in-process through ``httpx.ASGITransport``). Its reply is derived
from the last user message, so streamed and non-streamed calls for the
same input produce the same text.
"""

import json
from collections.abc import AsyncGenerator, Iterator
from typing import Any

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from httpx import ASGITransport, AsyncClient

from chat_client.config import ClientConfig, get_settings
from chat_client.llm.client import OpenAICompatibleClient

FIXTURE_MODEL = "fixture/echo-1"
FIXTURE_KEY = "test-key"
FIXTURE_USAGE = {"prompt_tokens": 7, "completion_tokens": 5, "total_tokens": 12}


def answer_for(messages: list[dict[str, Any]]) -> str:
    """Build the fixture reply for a message list."""
    last_user = next(
        (m["content"] for m in reversed(messages) if m["role"] == "user"),
        "",
    )
    return f"Échø: {last_user} ({len(messages)} messages) ✓"


def _sse_events(text: str, piece_size: int = 4) -> Iterator[bytes]:
    def event(delta: dict[str, Any], **extra: Any) -> bytes:
        data = {
            "id": "chatcmpl-fixture",
            "model": FIXTURE_MODEL,
            "choices": [{"index": 0, "delta": delta, "finish_reason": None}],
            **extra,
        }
        return f"data: {json.dumps(data, ensure_ascii=False)}\n\n".encode()

    yield b": keep-alive\n\n"
    yield event({"role": "assistant"})
    for start in range(0, len(text), piece_size):
        yield event({"content": text[start : start + piece_size]})

    final = {
        "id": "chatcmpl-fixture",
        "model": FIXTURE_MODEL,
        "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}],
        "usage": FIXTURE_USAGE,
    }
    yield f"data: {json.dumps(final)}\n\n".encode()
    yield b"data: [DONE]\n\n"


def create_fixture_app() -> FastAPI:
    """Create the fixture application.

    ``app.state.requests`` records every request body and its headers.
    """
    app = FastAPI(title="chat-completions fixture")
    app.state.requests = []

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request) -> Any:
        body = await request.json()
        app.state.requests.append({"body": body, "headers": dict(request.headers)})

        if request.headers.get("authorization") != f"Bearer {FIXTURE_KEY}":
            return JSONResponse(
                status_code=401,
                content={"error": {"message": "Invalid API key", "code": 401}},
            )
        if body.get("model") == "missing/model":
            return JSONResponse(
                status_code=404,
                content={"error": {"message": "No such model", "code": 404}},
            )

        text = answer_for(body["messages"])
        if body.get("stream"):
            return StreamingResponse(_sse_events(text), media_type="text/event-stream")

        return {
            "id": "chatcmpl-fixture",
            "object": "chat.completion",
            "model": FIXTURE_MODEL,
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": text},
                    "finish_reason": "stop",
                }
            ],
            "usage": FIXTURE_USAGE,
        }

    return app


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fixture_app() -> FastAPI:
    """Fresh fixture server per test."""
    return create_fixture_app()


@pytest.fixture
def client_config() -> ClientConfig:
    """Configuration pointing at the fixture server."""
    return ClientConfig(
        model="fixture/requested",
        api_base="http://fixture/v1",
        api_key=FIXTURE_KEY,
        retries=2,
        retry_delay=0.01,
    )


@pytest.fixture
async def http_client(fixture_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client routed to the fixture server.

    Yields:
        AsyncClient configured for testing.
    """
    transport = ASGITransport(app=fixture_app)
    async with AsyncClient(transport=transport, base_url="http://fixture") as ac:
        yield ac


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested by the client under test."""
    return []


@pytest.fixture
async def chat_client(
    client_config: ClientConfig,
    http_client: AsyncClient,
    sleeps: list[float],
) -> AsyncGenerator[OpenAICompatibleClient, None]:
    """OpenAICompatibleClient wired to the fixture server, without real sleeps."""

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    client = OpenAICompatibleClient(client_config, client=http_client, sleep=record_sleep)
    yield client
    await client.close()
