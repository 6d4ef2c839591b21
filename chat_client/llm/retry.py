"""Retry controller with exponential backoff.

Attempts an operation up to ``retries + 1`` times. Failures flagged as
retryable (network errors, timeouts, rate limits, 5xx) are retried after
``base_delay * 2 ** attempt_index``; anything else is raised on first
occurrence.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field

from chat_client.config import ClientConfig
from chat_client.exceptions import ChatClientError
from chat_client.logging_config import get_logger
from chat_client.observability.metrics import track_retry

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Attempt budget and backoff schedule.

    Attributes:
        retries: Retries allowed after the first attempt.
        base_delay: Delay before the first retry, in seconds.
    """

    model_config = ConfigDict(frozen=True)

    retries: int = Field(default=3, description="Retries after the first attempt")
    base_delay: float = Field(default=1.0, description="First backoff delay in seconds")

    @classmethod
    def from_config(cls, config: ClientConfig) -> "RetryPolicy":
        return cls(retries=config.retries, base_delay=config.retry_delay)

    @property
    def max_attempts(self) -> int:
        return max(self.retries, 0) + 1

    def delay_for(self, attempt_index: int) -> float:
        """Backoff after the failed attempt ``attempt_index`` (0-based)."""
        return self.base_delay * (2**attempt_index)


class RetryController:
    """Runs an async operation under a RetryPolicy."""

    def __init__(
        self,
        policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        model: str = "unknown",
    ) -> None:
        """Initialize the controller.

        Args:
            policy: Attempt budget and backoff.
            sleep: Awaitable used for backoff waits.
            model: Model label for metrics.
        """
        self.policy = policy
        self._sleep = sleep
        self._model = model

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "LLM request",
    ) -> T:
        """Run ``operation`` until it succeeds or the budget is spent.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt.
            description: Label for log messages.

        Returns:
            The operation's result.

        Raises:
            ChatClientError: The terminal error, or the last retryable one.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except ChatClientError as e:
                if not e.retryable:
                    logger.error(
                        f"{description} failed with terminal error: {e.message}",
                        extra={"error_code": e.code.value, "attempt": attempt + 1},
                    )
                    raise

                if attempt + 1 >= self.policy.max_attempts:
                    logger.error(
                        f"{description} failed after {attempt + 1} attempts: {e.message}",
                        extra={"error_code": e.code.value},
                    )
                    raise

                delay = self.policy.delay_for(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/"
                    f"{self.policy.max_attempts}): {e.message}; retrying in {delay:.2f}s",
                    extra={"error_code": e.code.value, "delay": delay},
                )
                track_retry(model=self._model, error_code=e.code.value)
                await self._sleep(delay)
                attempt += 1
