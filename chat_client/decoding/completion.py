"""Decoder for complete (non-streaming) chat-completion bodies."""

import json

from pydantic import ValidationError

from chat_client.decoding.models import CompletionResponse
from chat_client.exceptions import EmptyContentError, ResponseParseError, error_from_payload
from chat_client.models import RequestStats, ResponseWithStats


def parse_completion(body: bytes | str) -> CompletionResponse:
    """Parse a response body into the completion shape.

    Args:
        body: Raw HTTP body.

    Returns:
        The parsed CompletionResponse.

    Raises:
        ResponseParseError: If the body is not JSON or lacks ``choices``.
        RemoteServiceError: If the body carries a provider ``error`` object.
    """
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise ResponseParseError(
            f"Response body is not valid JSON: {e}",
            details={"error": str(e)},
        ) from e

    if not isinstance(data, dict):
        raise ResponseParseError(
            "Response body is not a JSON object",
            details={"type": type(data).__name__},
        )

    if isinstance(data.get("error"), dict) and not data.get("choices"):
        raise error_from_payload(data["error"])

    if "choices" not in data:
        raise ResponseParseError(
            "Response body has no 'choices' field",
            details={"keys": sorted(data)},
        )

    try:
        return CompletionResponse.model_validate(data)
    except ValidationError as e:
        raise ResponseParseError(
            f"Unexpected response structure: {e.error_count()} validation error(s)",
            details={"errors": e.errors(include_url=False)},
        ) from e


def decode_completion(
    body: bytes | str,
    *,
    fallback_model: str,
    duration_ms: int,
) -> ResponseWithStats:
    """Decode a successful response body into content and statistics.

    The model reported by the response takes precedence over
    ``fallback_model``, since gateways may route to a different model than
    the one requested.

    Args:
        body: Raw HTTP body.
        fallback_model: Configured model name.
        duration_ms: Wall-clock duration measured by the caller.

    Returns:
        ResponseWithStats with content and usage.

    Raises:
        ResponseParseError: If the body cannot be parsed.
        EmptyContentError: If there are no choices or the content is empty.
    """
    completion = parse_completion(body)

    if not completion.choices:
        raise EmptyContentError("Response contained no choices")

    choice = completion.choices[0]
    content = choice.message.content
    if not content:
        raise EmptyContentError(
            "First choice has no content",
            details={"finish_reason": choice.finish_reason},
        )

    usage = completion.usage
    stats = RequestStats(
        duration_ms=duration_ms,
        prompt_tokens=usage.prompt_tokens if usage else None,
        completion_tokens=usage.completion_tokens if usage else None,
        total_tokens=usage.total_tokens if usage else None,
        model=completion.model or fallback_model,
    )

    return ResponseWithStats(
        content=content,
        stats=stats,
        finish_reason=choice.finish_reason,
    )
