"""Pydantic v2 models for the CLI's stream-json event catalogue.

Every model allows extra keys: the CLI adds fields over time and the
bridge forwards the raw payload anyway, so only the fields the reducer
reads are declared, each with a default. Unrecognised ``type`` strings
land in the ``Unknown*`` fallbacks instead of failing validation.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)

logger = logging.getLogger(__name__)


class _WireModel(BaseModel):
    """Base for anything decoded from the CLI's stdout.

    A field whose value does not fit its declared type falls back to the
    field's default, so a recognised event always decodes to its variant.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("*", mode="wrap")
    @classmethod
    def _default_on_mismatch(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        try:
            return handler(value)
        except ValidationError:
            field = cls.model_fields[info.field_name]
            if field.is_required():
                raise
            logger.debug("%s.%s: unusable value %r, using default", cls.__name__, info.field_name, value)
            return field.get_default(call_default_factory=True)


class Usage(_WireModel):
    """Token counters reported with a message."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None


# ---------------------------------------------------------------------- #
# Content blocks
# ---------------------------------------------------------------------- #


class TextBlock(_WireModel):
    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(_WireModel):
    type: Literal["tool_use"] = "tool_use"
    id: str = ""
    name: str = ""
    input: Any = Field(default_factory=dict)


class ThinkingBlock(_WireModel):
    type: Literal["thinking"] = "thinking"
    thinking: str = ""
    signature: str | None = None


class ToolResultBlock(_WireModel):
    """Tool output echoed back inside a ``user`` message."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    content: Any = None
    is_error: bool | None = None


class UnknownBlock(_WireModel):
    type: str = ""


_BLOCK_TYPES = frozenset({"text", "tool_use", "thinking", "tool_result"})


def _block_discriminator(v: Any) -> str:
    block_type = v.get("type") if isinstance(v, dict) else getattr(v, "type", None)
    return block_type if block_type in _BLOCK_TYPES else "unknown"


ContentBlock = Annotated[
    Annotated[TextBlock, Tag("text")]
    | Annotated[ToolUseBlock, Tag("tool_use")]
    | Annotated[ThinkingBlock, Tag("thinking")]
    | Annotated[ToolResultBlock, Tag("tool_result")]
    | Annotated[UnknownBlock, Tag("unknown")],
    Discriminator(_block_discriminator),
]
"""Discriminated union of message content blocks."""


# ---------------------------------------------------------------------- #
# Deltas
# ---------------------------------------------------------------------- #


class TextDelta(_WireModel):
    type: Literal["text_delta"] = "text_delta"
    text: str = ""


class InputJSONDelta(_WireModel):
    type: Literal["input_json_delta"] = "input_json_delta"
    partial_json: str = ""


class ThinkingDelta(_WireModel):
    type: Literal["thinking_delta"] = "thinking_delta"
    thinking: str = ""


class UnknownDelta(_WireModel):
    type: str = ""


_DELTA_TYPES = frozenset({"text_delta", "input_json_delta", "thinking_delta"})


def _delta_discriminator(v: Any) -> str:
    delta_type = v.get("type") if isinstance(v, dict) else getattr(v, "type", None)
    return delta_type if delta_type in _DELTA_TYPES else "unknown"


Delta = Annotated[
    Annotated[TextDelta, Tag("text_delta")]
    | Annotated[InputJSONDelta, Tag("input_json_delta")]
    | Annotated[ThinkingDelta, Tag("thinking_delta")]
    | Annotated[UnknownDelta, Tag("unknown")],
    Discriminator(_delta_discriminator),
]
"""Discriminated union of ``content_block_delta`` payloads."""


# ---------------------------------------------------------------------- #
# Nested payloads
# ---------------------------------------------------------------------- #


class MessagePayload(_WireModel):
    """The ``message`` object carried by ``assistant`` and ``message_start``."""

    id: str | None = None
    type: str = "message"
    role: str = "assistant"
    content: list[ContentBlock] = Field(default_factory=list)
    model: str | None = None
    stop_reason: str | None = None
    stop_sequence: str | None = None
    usage: Usage = Field(default_factory=Usage)


class UserMessagePayload(_WireModel):
    role: str = "user"
    content: str | list[ContentBlock] = ""


class MessageDeltaPayload(_WireModel):
    stop_reason: str | None = None
    stop_sequence: str | None = None


class ToolSpec(_WireModel):
    id: str = ""
    name: str = ""
    input: Any = Field(default_factory=dict)


# ---------------------------------------------------------------------- #
# Events
# ---------------------------------------------------------------------- #


class SystemEvent(_WireModel):
    """System notice; ``subtype="init"`` carries the CLI session id."""

    type: Literal["system"] = "system"
    subtype: str = ""
    session_id: str | None = None
    cwd: str | None = None
    model: str | None = None

    @property
    def is_init(self) -> bool:
        return self.subtype == "init"


class UserEvent(_WireModel):
    type: Literal["user"] = "user"
    message: UserMessagePayload = Field(default_factory=UserMessagePayload)
    session_id: str | None = None


class AssistantEvent(_WireModel):
    """A complete assistant message (non-incremental form)."""

    type: Literal["assistant"] = "assistant"
    message: MessagePayload = Field(default_factory=MessagePayload)
    session_id: str | None = None


class MessageStartEvent(_WireModel):
    type: Literal["message_start"] = "message_start"
    message: MessagePayload = Field(default_factory=MessagePayload)


class ContentBlockStartEvent(_WireModel):
    type: Literal["content_block_start"] = "content_block_start"
    index: int = -1
    content_block: ContentBlock = Field(default_factory=UnknownBlock)


class ContentBlockDeltaEvent(_WireModel):
    type: Literal["content_block_delta"] = "content_block_delta"
    index: int = -1
    delta: Delta = Field(default_factory=UnknownDelta)


class ContentBlockStopEvent(_WireModel):
    type: Literal["content_block_stop"] = "content_block_stop"
    index: int = -1


class MessageDeltaEvent(_WireModel):
    type: Literal["message_delta"] = "message_delta"
    delta: MessageDeltaPayload = Field(default_factory=MessageDeltaPayload)
    usage: Usage | None = None


class MessageStopEvent(_WireModel):
    type: Literal["message_stop"] = "message_stop"


class ToolUseEvent(_WireModel):
    type: Literal["tool_use"] = "tool_use"
    tool: ToolSpec = Field(default_factory=ToolSpec)


class ToolResultEvent(_WireModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str = ""
    content: Any = ""
    is_error: bool | None = None


class ResultEvent(_WireModel):
    """Overall outcome of the turn (``subtype`` is ``success`` or ``error``)."""

    type: Literal["result"] = "result"
    subtype: str = "success"
    is_error: bool = False
    cost_usd: float | None = None
    total_cost_usd: float | None = None
    duration_ms: int | None = None
    duration_api_ms: int | None = None
    num_turns: int | None = None
    result: str | None = None
    error: str | None = None
    session_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.subtype == "success" and not self.is_error


class UnknownEvent(_WireModel):
    """Any event whose ``type`` the bridge does not recognise."""

    type: str


EVENT_TYPES = frozenset(
    {
        "system",
        "user",
        "assistant",
        "message_start",
        "content_block_start",
        "content_block_delta",
        "content_block_stop",
        "message_delta",
        "message_stop",
        "tool_use",
        "tool_result",
        "result",
    }
)


def _event_discriminator(v: Any) -> str:
    """Extract the discriminator value from raw data or a model instance."""
    event_type = v.get("type") if isinstance(v, dict) else getattr(v, "type", None)
    return event_type if event_type in EVENT_TYPES else "unknown"


Event = Annotated[
    Annotated[SystemEvent, Tag("system")]
    | Annotated[UserEvent, Tag("user")]
    | Annotated[AssistantEvent, Tag("assistant")]
    | Annotated[MessageStartEvent, Tag("message_start")]
    | Annotated[ContentBlockStartEvent, Tag("content_block_start")]
    | Annotated[ContentBlockDeltaEvent, Tag("content_block_delta")]
    | Annotated[ContentBlockStopEvent, Tag("content_block_stop")]
    | Annotated[MessageDeltaEvent, Tag("message_delta")]
    | Annotated[MessageStopEvent, Tag("message_stop")]
    | Annotated[ToolUseEvent, Tag("tool_use")]
    | Annotated[ToolResultEvent, Tag("tool_result")]
    | Annotated[ResultEvent, Tag("result")]
    | Annotated[UnknownEvent, Tag("unknown")],
    Discriminator(_event_discriminator),
]
"""Discriminated union of all stream-json event types."""

EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)
