"""Observability module for metrics and monitoring."""

from chat_client.observability.metrics import (
    get_metrics,
    track_llm_request,
    track_retry,
    track_stream_fragments,
)

__all__ = [
    "get_metrics",
    "track_llm_request",
    "track_retry",
    "track_stream_fragments",
]
