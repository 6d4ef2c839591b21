"""Prometheus metrics for LLM requests.

Provides metrics instrumentation for:
- Request latency and counts by outcome
- Token usage
- Retries by error code
- Streamed fragments
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

LLM_REQUEST_DURATION = Histogram(
    "llm_request_duration_seconds",
    "LLM request duration in seconds",
    ["model", "mode", "status"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)

LLM_REQUEST_TOTAL = Counter(
    "llm_requests_total",
    "Total LLM requests",
    ["model", "mode", "status"],
)

LLM_TOKENS_TOTAL = Counter(
    "llm_tokens_total",
    "Total LLM tokens used",
    ["model", "type"],  # "type" label values: prompt, completion
)

LLM_RETRY_TOTAL = Counter(
    "llm_retries_total",
    "LLM request retries",
    ["model", "error_code"],
)

LLM_STREAM_FRAGMENTS = Histogram(
    "llm_stream_fragments",
    "Fragments yielded per streamed response",
    ["model"],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get the content type for metrics response."""
    return CONTENT_TYPE_LATEST


def track_llm_request(
    model: str,
    duration: float,
    prompt_tokens: int | None = None,
    completion_tokens: int | None = None,
    success: bool = True,
    mode: str = "complete",
) -> None:
    """Track LLM request metrics.

    Args:
        model: LLM model name.
        duration: Request duration in seconds.
        prompt_tokens: Number of prompt tokens, if reported.
        completion_tokens: Number of completion tokens, if reported.
        success: Whether the request succeeded.
        mode: "complete" or "stream".
    """
    status = "success" if success else "error"

    LLM_REQUEST_DURATION.labels(model=model, mode=mode, status=status).observe(duration)
    LLM_REQUEST_TOTAL.labels(model=model, mode=mode, status=status).inc()

    if success:
        if prompt_tokens:
            LLM_TOKENS_TOTAL.labels(model=model, type="prompt").inc(prompt_tokens)
        if completion_tokens:
            LLM_TOKENS_TOTAL.labels(model=model, type="completion").inc(completion_tokens)


def track_retry(model: str, error_code: str) -> None:
    """Count one retry caused by ``error_code``."""
    LLM_RETRY_TOTAL.labels(model=model, error_code=error_code).inc()


def track_stream_fragments(model: str, fragments: int) -> None:
    """Record how many fragments a finished stream produced."""
    LLM_STREAM_FRAGMENTS.labels(model=model).observe(fragments)
