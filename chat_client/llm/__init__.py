"""LLM client module."""

from chat_client.llm.client import ChatClient, OpenAICompatibleClient
from chat_client.models import Message, RequestStats, ResponseWithStats, Role
from chat_client.llm.request import (
    ChatCompletionParams,
    build_headers,
    build_params,
    message,
    prepare_messages,
)
from chat_client.llm.retry import RetryController, RetryPolicy
from chat_client.llm.transport import HTTPTransport

__all__ = [
    "ChatClient",
    "ChatCompletionParams",
    "HTTPTransport",
    "Message",
    "OpenAICompatibleClient",
    "RequestStats",
    "ResponseWithStats",
    "RetryController",
    "RetryPolicy",
    "Role",
    "build_headers",
    "build_params",
    "message",
    "prepare_messages",
]
