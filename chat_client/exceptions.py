"""Client exception hierarchy.

All custom exceptions inherit from ChatClientError.
Each exception has an error code for structured error handling and a
``retryable`` flag consumed by the retry controller.
"""

import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

import httpx


class ErrorCode(str, Enum):
    """Error codes for structured error handling."""

    # General errors (1xxx)
    INTERNAL_ERROR = "CHAT-1000"
    CONFIGURATION_ERROR = "CHAT-1001"

    # Transport errors (2xxx)
    NETWORK_ERROR = "CHAT-2000"
    REQUEST_TIMEOUT = "CHAT-2001"

    # Remote service errors (3xxx)
    AUTHENTICATION_FAILED = "CHAT-3000"
    RATE_LIMITED = "CHAT-3001"
    MODEL_NOT_FOUND = "CHAT-3002"
    INVALID_REQUEST = "CHAT-3003"
    REMOTE_SERVICE_ERROR = "CHAT-3004"

    # Decoding errors (4xxx)
    RESPONSE_PARSE_ERROR = "CHAT-4000"
    EMPTY_CONTENT = "CHAT-4001"
    STREAM_DECODE_ERROR = "CHAT-4002"


class ChatClientError(Exception):
    """Base exception for all chat client errors.

    Attributes:
        message: Human-readable error message.
        code: Structured error code.
        details: Additional error context.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a serializable dictionary."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "retryable": self.retryable,
                "details": self.details,
            }
        }


class ConfigurationError(ChatClientError):
    """Configuration or environment error (e.g. missing API key)."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)


class NetworkError(ChatClientError):
    """Connection-level failure before or during an exchange."""

    retryable = True

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.NETWORK_ERROR, details)


class RequestTimeoutError(ChatClientError):
    """The request exceeded the configured timeout."""

    retryable = True

    def __init__(
        self,
        message: str = "Request timed out",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.REQUEST_TIMEOUT, details)


class RemoteServiceError(ChatClientError):
    """Error reported by the remote service.

    Server-side (5xx) failures are retryable; any other status is terminal.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.REMOTE_SERVICE_ERROR,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        self.status_code = status_code
        super().__init__(message, code, details)

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code is not None and self.status_code >= 500


class AuthenticationError(RemoteServiceError):
    """Credentials were rejected."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 401,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.AUTHENTICATION_FAILED, status_code, details)


class RateLimitError(RemoteServiceError):
    """The remote service is throttling requests."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.RATE_LIMITED, status_code, details)

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return True


class ModelNotFoundError(RemoteServiceError):
    """The requested model does not exist on the remote service."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 404,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.MODEL_NOT_FOUND, status_code, details)


class InvalidRequestError(RemoteServiceError):
    """The remote service rejected the request parameters."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 400,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.INVALID_REQUEST, status_code, details)


class ResponseParseError(ChatClientError):
    """A response body was not valid JSON or lacked the expected structure."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.RESPONSE_PARSE_ERROR, details)


class EmptyContentError(ChatClientError):
    """The response carried no generated content."""

    def __init__(
        self,
        message: str = "Response contained no content",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.EMPTY_CONTENT, details)


class StreamDecodeError(ChatClientError):
    """A streamed event could not be decoded, or the stream ended early."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.STREAM_DECODE_ERROR, details)


_MAX_BODY_EXCERPT = 500


def _extract_error_message(body: str) -> str:
    """Pull the provider's message out of an error body, if it has one."""
    try:
        data = json.loads(body)
    except ValueError:
        return body[:_MAX_BODY_EXCERPT]

    if isinstance(data, dict):
        error = data.get("error", data)
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return body[:_MAX_BODY_EXCERPT]


def error_from_status(
    status_code: int,
    body: str = "",
    headers: Mapping[str, str] | None = None,
) -> RemoteServiceError:
    """Classify a non-2xx HTTP status into the matching remote error.

    Args:
        status_code: HTTP status returned by the service.
        body: Response body text.
        headers: Response headers (used for ``Retry-After``).

    Returns:
        The RemoteServiceError subclass for the status.
    """
    provider_message = _extract_error_message(body) if body else ""
    details: dict[str, Any] = {"provider_message": provider_message}
    if headers and headers.get("retry-after"):
        details["retry_after"] = headers["retry-after"]

    suffix = f": {provider_message}" if provider_message else ""

    if status_code in (401, 403):
        return AuthenticationError(
            f"Authentication failed{suffix}", status_code=status_code, details=details
        )
    if status_code == 404:
        return ModelNotFoundError(
            f"Model not found{suffix}", status_code=status_code, details=details
        )
    if status_code == 429:
        return RateLimitError(
            f"Rate limit exceeded{suffix}", status_code=status_code, details=details
        )
    if status_code in (400, 422):
        return InvalidRequestError(
            f"Invalid request{suffix}", status_code=status_code, details=details
        )
    return RemoteServiceError(
        f"Remote service returned {status_code}{suffix}",
        status_code=status_code,
        details=details,
    )


def error_from_payload(error: Mapping[str, Any]) -> RemoteServiceError:
    """Classify an ``error`` object embedded in a successful response body.

    Gateways such as OpenRouter report upstream failures as
    ``{"error": {"message": ..., "code": ...}}`` with a 200 status.
    """
    message = str(error.get("message") or "Remote service reported an error")
    code = error.get("code")
    if isinstance(code, int) and 400 <= code < 600:
        return error_from_status(code, json.dumps({"error": dict(error)}))
    return RemoteServiceError(
        message,
        details={"provider_message": message, "provider_code": code},
    )


def error_from_httpx(exc: httpx.HTTPError) -> ChatClientError:
    """Convert an httpx failure into the client's error taxonomy.

    Args:
        exc: Exception raised by httpx.

    Returns:
        ChatClientError preserving the failure class.
    """
    url = None
    try:
        url = str(exc.request.url)
    except RuntimeError:
        # The exception was raised outside a request context.
        pass

    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeoutError(
            f"Request timed out: {exc}",
            details={"url": url, "error": type(exc).__name__},
        )
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_status(
            exc.response.status_code,
            exc.response.text,
            exc.response.headers,
        )
    return NetworkError(
        f"Failed to reach LLM service: {exc}",
        details={"url": url, "error": type(exc).__name__},
    )
