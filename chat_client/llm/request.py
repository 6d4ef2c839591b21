"""Request construction for the chat-completions endpoint.

Everything here is pure: no network access, no clock, no randomness.
"""

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field

from chat_client.config import ClientConfig
from chat_client.models import Message, Role


class ChatCompletionParams(BaseModel):
    """Serializable parameters of a chat-completions request.

    Attributes:
        model: Model identifier.
        messages: Effective message sequence.
        temperature: Sampling temperature.
        top_p: Nucleus sampling parameter.
        max_tokens: Maximum output tokens.
        stream: Whether the response is streamed as SSE.
        seed: Optional sampling seed (best-effort reproducibility).
    """

    model: str = Field(description="Model identifier")
    messages: list[Message] = Field(description="Messages to send")
    temperature: float = Field(description="Sampling temperature")
    top_p: float = Field(description="Nucleus sampling")
    max_tokens: int = Field(description="Maximum output tokens")
    stream: bool = Field(default=False, description="Stream the response")
    seed: int | None = Field(default=None, description="Sampling seed")

    def to_payload(self) -> dict[str, Any]:
        """Render the JSON request body; ``seed`` is omitted when unset."""
        return self.model_dump(mode="json", exclude_none=True)


def message(role: Role | str, content: str) -> Message:
    """Create a message.

    Args:
        role: Message role (enum or its string value).
        content: Message text.

    Returns:
        New Message.
    """
    return Message(role=Role(role), content=content)


def prepare_messages(
    system_message: str,
    history: Iterable[Message] = (),
    prompt: str | None = None,
) -> list[Message]:
    """Assemble the effective message sequence.

    The result is ``[system] + history + [user prompt]``. An empty system
    message contributes no entry and ``prompt=None`` appends nothing.

    Args:
        system_message: System message text.
        history: Prior conversation, oldest first.
        prompt: New user prompt.

    Returns:
        Ordered list of messages.
    """
    messages: list[Message] = []

    if system_message:
        messages.append(message(Role.SYSTEM, system_message))

    messages.extend(history)

    if prompt is not None:
        messages.append(message(Role.USER, prompt))

    return messages


def build_params(
    config: ClientConfig,
    messages: list[Message],
    stream: bool = False,
) -> ChatCompletionParams:
    """Build request parameters from the configuration.

    Args:
        config: Client configuration.
        messages: Effective message sequence.
        stream: Request an SSE stream.

    Returns:
        ChatCompletionParams ready for serialization.
    """
    return ChatCompletionParams(
        model=config.model,
        messages=messages,
        temperature=config.temperature,
        top_p=config.top_p,
        max_tokens=config.max_tokens,
        stream=stream,
        seed=config.random_seed,
    )


def build_headers(api_key: str, stream: bool = False) -> dict[str, str]:
    """Build the fixed request headers.

    Args:
        api_key: Bearer credential.
        stream: Add ``Accept: text/event-stream``.

    Returns:
        Header mapping.
    """
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    if stream:
        headers["Accept"] = "text/event-stream"
    return headers
