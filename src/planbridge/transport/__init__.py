"""Transport — SSE encoding of turn frames."""

from planbridge.transport.sse import (
    SSE_HEADERS,
    SSE_MEDIA_TYPE,
    SSEEncoder,
    encode_payload,
    format_frame,
)

__all__ = [
    "SSE_HEADERS",
    "SSE_MEDIA_TYPE",
    "SSEEncoder",
    "encode_payload",
    "format_frame",
]
