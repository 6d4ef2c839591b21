"""Wire shapes of OpenAI-compatible chat-completion responses.

These models are deserialization targets only. Unknown fields are ignored
so provider-specific additions do not break decoding.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Usage(_WireModel):
    """Token accounting block."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None


class ProviderError(_WireModel):
    """Error object some gateways return in place of choices."""

    message: str | None = None
    code: int | str | None = None
    type: str | None = None

    def as_mapping(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CompletionMessage(_WireModel):
    role: str | None = None
    content: str | None = None


class CompletionChoice(_WireModel):
    index: int | None = None
    message: CompletionMessage = Field(default_factory=CompletionMessage)
    finish_reason: str | None = None


class CompletionResponse(_WireModel):
    """Body of a non-streaming chat-completion response."""

    id: str | None = None
    model: str | None = None
    choices: list[CompletionChoice] = Field(default_factory=list)
    usage: Usage | None = None
    error: ProviderError | None = None


class Delta(_WireModel):
    role: str | None = None
    content: str | None = None


class StreamChoice(_WireModel):
    index: int | None = None
    delta: Delta = Field(default_factory=Delta)
    finish_reason: str | None = None


class StreamResponse(_WireModel):
    """One decoded ``data:`` event of a streaming response."""

    id: str | None = None
    model: str | None = None
    choices: list[StreamChoice] = Field(default_factory=list)
    usage: Usage | None = None
    error: ProviderError | None = None
