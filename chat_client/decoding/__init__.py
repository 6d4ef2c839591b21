"""Response decoding for complete and streamed chat completions."""

from chat_client.decoding.completion import decode_completion, parse_completion
from chat_client.decoding.models import CompletionResponse, StreamResponse, Usage
from chat_client.decoding.stream import CompletionStream, StreamDecoder

__all__ = [
    "CompletionResponse",
    "CompletionStream",
    "StreamDecoder",
    "StreamResponse",
    "Usage",
    "decode_completion",
    "parse_completion",
]
