"""Client configuration.

``ClientConfig`` is the immutable value every request is built from.
``LLMSettings`` loads it from the process environment and a local ``.env``
file using Pydantic Settings; environment variables take precedence over
the file, and the file over built-in defaults.
"""

import logging
import secrets
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chat_client.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "deepseek/deepseek-chat"
DEFAULT_SYSTEM_MESSAGE = "You are a helpful AI assistant."
DEFAULT_API_BASE = "https://openrouter.ai/api/v1"

# Documented ranges; values outside them are passed through to the service.
_ADVISORY_RANGES: dict[str, tuple[float, float]] = {
    "temperature": (0.0, 2.0),
    "top_p": (0.0, 1.0),
}


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class ClientConfig(BaseModel):
    """Immutable configuration for an LLM client.

    Every ``with_*`` method returns a new value; the receiver is never
    modified. Numeric ranges are advisory: out-of-range values are logged
    and sent to the remote service as-is.

    ``random_seed`` is forwarded as the ``seed`` request parameter. It biases
    compatible providers toward reproducible output but is not a guarantee.
    """

    model_config = ConfigDict(frozen=True)

    model: str = Field(default=DEFAULT_MODEL, description="Model identifier")
    system_message: str = Field(
        default=DEFAULT_SYSTEM_MESSAGE,
        description="Default system message (empty for none)",
    )
    temperature: float = Field(default=0.7, description="Sampling temperature (0.0-2.0)")
    top_p: float = Field(default=1.0, description="Nucleus sampling (0.0-1.0)")
    max_tokens: int = Field(default=4096, description="Maximum output tokens")
    timeout: float = Field(default=60.0, description="Request timeout in seconds")
    retries: int = Field(default=3, description="Retries after the first attempt")
    retry_delay: float = Field(
        default=1.0,
        description="Base backoff delay in seconds",
    )
    api_base: str = Field(default=DEFAULT_API_BASE, description="API base URL")
    api_key: SecretStr = Field(default=SecretStr(""), description="API key")
    random_seed: int | None = Field(default=None, description="Fixed sampling seed")

    # Connection pool
    connect_timeout: float = Field(default=10.0, description="Connect timeout in seconds")
    max_concurrent_requests: int | None = Field(
        default=64,
        description="Upper bound on in-flight requests per client (None = unbounded)",
    )
    pool_max_keepalive: int = Field(default=16, description="Idle keep-alive connections")
    pool_idle_timeout: float = Field(
        default=90.0,
        description="Seconds an idle connection is kept",
    )

    @model_validator(mode="after")
    def _warn_out_of_range(self) -> "ClientConfig":
        for name, (low, high) in _ADVISORY_RANGES.items():
            value = getattr(self, name)
            if not low <= value <= high:
                logger.warning(
                    f"{name}={value} is outside the documented range [{low}, {high}]",
                    extra={"field": name, "value": value},
                )
        return self

    @property
    def endpoint(self) -> str:
        """Full chat-completions URL."""
        return f"{self.api_base.rstrip('/')}/chat/completions"

    def _replace(self, **changes: Any) -> "ClientConfig":
        # model_copy skips validation, so re-validate to keep the range warnings.
        return ClientConfig.model_validate({**self.model_dump(), **changes})

    def with_model(self, model: str) -> "ClientConfig":
        return self._replace(model=model)

    def with_system_message(self, system_message: str) -> "ClientConfig":
        return self._replace(system_message=system_message)

    def with_temperature(self, temperature: float) -> "ClientConfig":
        return self._replace(temperature=temperature)

    def with_top_p(self, top_p: float) -> "ClientConfig":
        return self._replace(top_p=top_p)

    def with_max_tokens(self, max_tokens: int) -> "ClientConfig":
        return self._replace(max_tokens=max_tokens)

    def with_timeout(self, timeout: float) -> "ClientConfig":
        return self._replace(timeout=timeout)

    def with_retries(self, retries: int) -> "ClientConfig":
        return self._replace(retries=retries)

    def with_retry_delay(self, retry_delay: float) -> "ClientConfig":
        return self._replace(retry_delay=retry_delay)

    def with_api_base(self, api_base: str) -> "ClientConfig":
        return self._replace(api_base=api_base)

    def with_api_key(self, api_key: str | SecretStr) -> "ClientConfig":
        if isinstance(api_key, str):
            api_key = SecretStr(api_key)
        return self._replace(api_key=api_key)

    def with_random_seed(self, random_seed: int | None) -> "ClientConfig":
        return self._replace(random_seed=random_seed)

    def with_random_seed_auto(self) -> "ClientConfig":
        """Return a copy with a freshly drawn random seed."""
        return self._replace(random_seed=secrets.randbits(63))

    def with_connect_timeout(self, connect_timeout: float) -> "ClientConfig":
        return self._replace(connect_timeout=connect_timeout)

    def with_max_concurrent_requests(self, limit: int | None) -> "ClientConfig":
        return self._replace(max_concurrent_requests=limit)

    def with_pool_max_keepalive(self, pool_max_keepalive: int) -> "ClientConfig":
        return self._replace(pool_max_keepalive=pool_max_keepalive)

    def with_pool_idle_timeout(self, pool_idle_timeout: float) -> "ClientConfig":
        return self._replace(pool_idle_timeout=pool_idle_timeout)


class LLMSettings(BaseSettings):
    """LLM configuration loaded from the environment and ``.env``.

    Recognizes the ``LLM_`` prefixed variables plus the OpenRouter-style
    names (``OPENROUTER_API_KEY``, ``OPENROUTER_MODEL``, ``API_KEY``,
    ``MODEL``, ``API_BASE``).
    """

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("LLM_API_KEY", "OPENROUTER_API_KEY", "API_KEY"),
        description="API key",
    )
    model: str = Field(
        default=DEFAULT_MODEL,
        validation_alias=AliasChoices("LLM_MODEL", "OPENROUTER_MODEL", "MODEL"),
        description="Model identifier",
    )
    api_base: str = Field(
        default=DEFAULT_API_BASE,
        validation_alias=AliasChoices("LLM_API_BASE", "API_BASE"),
        description="API base URL",
    )
    system_message: str = Field(default=DEFAULT_SYSTEM_MESSAGE)
    temperature: float = Field(default=0.7)
    top_p: float = Field(default=1.0)
    max_tokens: int = Field(default=4096)
    timeout: float = Field(default=60.0, description="Request timeout in seconds")
    retries: int = Field(default=3)
    retry_delay: float = Field(default=1.0, description="Base backoff delay in seconds")
    seed: int | None = Field(default=None, description="Fixed sampling seed")

    def to_client_config(self) -> ClientConfig:
        """Build the immutable client configuration.

        Raises:
            ConfigurationError: If no API key is configured.
        """
        if self.api_key is None or not self.api_key.get_secret_value():
            raise ConfigurationError(
                "No API key found; set LLM_API_KEY, OPENROUTER_API_KEY or API_KEY",
                details={"variables": ["LLM_API_KEY", "OPENROUTER_API_KEY", "API_KEY"]},
            )
        return ClientConfig(
            model=self.model,
            system_message=self.system_message,
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
            retries=self.retries,
            retry_delay=self.retry_delay,
            api_base=self.api_base,
            api_key=self.api_key,
            random_seed=self.seed,
        )


class Settings(BaseSettings):
    """Application settings.

    Aggregates process-level options with the LLM section.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    llm: LLMSettings = Field(default_factory=LLMSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def load_config(env_file: str | Path | None = ".env") -> ClientConfig:
    """Load a client configuration from the environment.

    Args:
        env_file: Dotenv file to read (None to read only the environment).

    Returns:
        ClientConfig built from the environment.

    Raises:
        ConfigurationError: If no API key is configured.
    """
    settings = LLMSettings(_env_file=env_file)  # type: ignore[call-arg]
    config = settings.to_client_config()
    logger.debug(
        "Loaded client configuration",
        extra={"model": config.model, "api_base": config.api_base},
    )
    return config
