"""Stream — framing, decoding and reduction of the CLI's stream-json output."""

from planbridge.stream.decoder import (
    DecodeFailure,
    DecodeResult,
    DecodeSuccess,
    decode_line,
    decode_output,
)
from planbridge.stream.events import EVENT_ADAPTER, ContentBlock, Delta, Event
from planbridge.stream.framing import LineFramer
from planbridge.stream.reducer import (
    EventReducer,
    Message,
    Notification,
    ReducerState,
    ToolInvocation,
    ToolStatus,
    TurnOutcome,
)

__all__ = [
    "EVENT_ADAPTER",
    "ContentBlock",
    "DecodeFailure",
    "DecodeResult",
    "DecodeSuccess",
    "Delta",
    "Event",
    "EventReducer",
    "LineFramer",
    "Message",
    "Notification",
    "ReducerState",
    "ToolInvocation",
    "ToolStatus",
    "TurnOutcome",
    "decode_line",
    "decode_output",
]
