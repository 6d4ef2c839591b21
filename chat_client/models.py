"""Conversation messages and request results."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """A message in a conversation.

    Messages are immutable, compare by value and are hashable, so they can
    be shared between conversations and used as dictionary keys.

    Attributes:
        role: The role of the message sender.
        content: The message content.
    """

    model_config = ConfigDict(frozen=True)

    role: Role = Field(description="Message role")
    content: str = Field(description="Message content")


class RequestStats(BaseModel):
    """Statistics for one completed non-streaming exchange.

    Attributes:
        duration_ms: Wall-clock duration including retries and backoff.
        prompt_tokens: Prompt token count reported by the service.
        completion_tokens: Completion token count reported by the service.
        total_tokens: Total token count reported by the service.
        model: Model that served the request.
        timestamp: When the response was decoded (UTC).
    """

    model_config = ConfigDict(frozen=True)

    duration_ms: int = Field(default=0, ge=0, description="Request duration in ms")
    prompt_tokens: int | None = Field(default=None, description="Prompt token count")
    completion_tokens: int | None = Field(
        default=None,
        description="Completion token count",
    )
    total_tokens: int | None = Field(default=None, description="Total token count")
    model: str = Field(description="Model used")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Response timestamp",
    )


class ResponseWithStats(BaseModel):
    """Generated text together with its request statistics."""

    model_config = ConfigDict(frozen=True)

    content: str = Field(description="Generated text")
    stats: RequestStats = Field(description="Request statistics")
    finish_reason: str | None = Field(default=None, description="Why generation stopped")
