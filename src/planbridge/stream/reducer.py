"""Event reducer — reassemble streamed deltas into complete messages.

One ``EventReducer`` lives for exactly one turn. Feed it decoded events
in arrival order through :meth:`EventReducer.apply`; each call returns
the live notifications that event produced (for incremental rendering),
while the finalized ``messages``, ``tools`` and ``outcome`` attributes
serve batch consumers.

Per message the reducer moves ``IDLE -> AWAITING_BLOCKS -> CLOSED``; a
later ``message_start`` opens the next message of the same turn.
Protocol anomalies (deltas for unopened blocks, unparsable tool input,
missing ``message_stop``) are recorded in ``warnings`` and reported as
``Anomaly`` notifications, never raised.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from planbridge.stream.events import (
    AssistantEvent,
    ContentBlock,
    ContentBlockDeltaEvent,
    ContentBlockStartEvent,
    ContentBlockStopEvent,
    Event,
    InputJSONDelta,
    MessageDeltaEvent,
    MessagePayload,
    MessageStartEvent,
    MessageStopEvent,
    ResultEvent,
    SystemEvent,
    TextBlock,
    TextDelta,
    ThinkingBlock,
    ThinkingDelta,
    ToolResultBlock,
    ToolResultEvent,
    ToolUseBlock,
    ToolUseEvent,
    UnknownDelta,
    UnknownEvent,
    Usage,
    UserEvent,
)

logger = logging.getLogger(__name__)


class ReducerState(StrEnum):
    IDLE = "idle"
    AWAITING_BLOCKS = "awaiting_blocks"
    CLOSED = "closed"


class ToolStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class ToolInvocation(BaseModel):
    """One tool call and its lifecycle."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    name: str = ""
    input: Any = Field(default_factory=dict)
    status: ToolStatus = ToolStatus.PENDING
    result: str | None = None
    error: str | None = None


class Message(BaseModel):
    """An assistant message with its sealed content blocks."""

    id: str | None = None
    role: str = "assistant"
    model: str | None = None
    content: list[ContentBlock] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    stop_reason: str | None = None
    stop_sequence: str | None = None

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))


class TurnOutcome(BaseModel):
    """The turn's overall result as reported by the ``result`` event."""

    subtype: str
    is_error: bool
    cost_usd: float | None = None
    total_cost_usd: float | None = None
    duration_ms: int | None = None
    result: str | None = None
    error: str | None = None
    session_id: str | None = None


# ---------------------------------------------------------------------- #
# Notifications
# ---------------------------------------------------------------------- #


@dataclass(frozen=True)
class SessionStarted:
    session_id: str
    model: str | None = None


@dataclass(frozen=True)
class BlockStarted:
    index: int
    block_type: str


@dataclass(frozen=True)
class TextAppended:
    index: int
    text: str


@dataclass(frozen=True)
class ToolInputProgress:
    index: int
    tool_id: str
    partial_json: str


@dataclass(frozen=True)
class ReasoningAppended:
    index: int
    thinking: str


@dataclass(frozen=True)
class BlockSealed:
    index: int
    block: ContentBlock


@dataclass(frozen=True)
class ToolUpdated:
    tool: ToolInvocation


@dataclass(frozen=True)
class MessageCompleted:
    message: Message


@dataclass(frozen=True)
class TurnFinished:
    outcome: TurnOutcome


@dataclass(frozen=True)
class Anomaly:
    message: str


Notification = (
    SessionStarted
    | BlockStarted
    | TextAppended
    | ToolInputProgress
    | ReasoningAppended
    | BlockSealed
    | ToolUpdated
    | MessageCompleted
    | TurnFinished
    | Anomaly
)


# ---------------------------------------------------------------------- #
# Accumulator
# ---------------------------------------------------------------------- #


@dataclass
class _Accumulator:
    """Mutable buffer for one open content block."""

    index: int
    start: ContentBlock
    parts: list[str] = field(default_factory=list)

    @property
    def kind(self) -> str:
        return self.start.type

    @classmethod
    def open(cls, index: int, block: ContentBlock) -> _Accumulator:
        acc = cls(index=index, start=block)
        if isinstance(block, TextBlock) and block.text:
            acc.parts.append(block.text)
        elif isinstance(block, ThinkingBlock) and block.thinking:
            acc.parts.append(block.thinking)
        return acc

    @property
    def joined(self) -> str:
        return "".join(self.parts)


def result_text(content: Any) -> str:
    """Flatten a tool result payload (string or list of blocks) to text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        pieces: list[str] = []
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                pieces.append(item["text"])
            elif isinstance(item, str):
                pieces.append(item)
            else:
                pieces.append(json.dumps(item, default=str))
        return "\n".join(pieces)
    return json.dumps(content, default=str)


class EventReducer:
    """Stateful, per-turn accumulator of stream-json events."""

    def __init__(self) -> None:
        self.state = ReducerState.IDLE
        self.messages: list[Message] = []
        self.tools: dict[str, ToolInvocation] = {}
        self.outcome: TurnOutcome | None = None
        self.session_id: str | None = None
        self.warnings: list[str] = []

        self._current: Message | None = None
        self._open: dict[int, _Accumulator] = {}
        self._sealed: list[tuple[int, int, ContentBlock]] = []
        self._seal_seq = 0
        self._streamed_ids: set[str] = set()
        self._assistant_ids: set[str] = set()

    @property
    def current_message(self) -> Message | None:
        """The message still receiving blocks, if any."""
        return self._current

    @property
    def open_indexes(self) -> list[int]:
        return sorted(self._open)

    # ------------------------------------------------------------------ #
    # Dispatch
    # ------------------------------------------------------------------ #

    def apply(self, event: Event) -> list[Notification]:
        """Fold one event into the turn state and return its notifications."""
        match event:
            case SystemEvent():
                return self._on_system(event)
            case MessageStartEvent():
                return self._on_message_start(event.message)
            case ContentBlockStartEvent():
                return self._on_block_start(event)
            case ContentBlockDeltaEvent():
                return self._on_block_delta(event)
            case ContentBlockStopEvent():
                return self._on_block_stop(event.index)
            case MessageDeltaEvent():
                return self._on_message_delta(event)
            case MessageStopEvent():
                return self._on_message_stop()
            case AssistantEvent():
                return self._on_assistant(event.message)
            case UserEvent():
                return self._on_user(event)
            case ToolUseEvent():
                return self._on_tool_use(event)
            case ToolResultEvent():
                return self._complete_tool(
                    event.tool_use_id, event.content, bool(event.is_error)
                )
            case ResultEvent():
                return self._on_result(event)
            case UnknownEvent():
                logger.debug("ignoring unknown event type %r", event.type)
                return []
        return []

    def finish(self) -> list[Notification]:
        """Close out the turn at end of stream.

        A message left open without ``message_stop`` is force-closed with
        whatever content arrived.
        """
        if self._current is None:
            return []
        notes = self._anomaly("stream ended before message_stop; closing message")
        notes.extend(self._close_message())
        return notes

    # ------------------------------------------------------------------ #
    # Message lifecycle
    # ------------------------------------------------------------------ #

    def _on_system(self, event: SystemEvent) -> list[Notification]:
        if event.is_init and event.session_id:
            self.session_id = event.session_id
            return [SessionStarted(event.session_id, event.model)]
        return []

    def _on_message_start(self, payload: MessagePayload) -> list[Notification]:
        notes: list[Notification] = []
        if self._current is not None:
            notes.extend(
                self._anomaly("message_start before previous message_stop; closing it")
            )
            notes.extend(self._close_message())
        self._current = Message(
            id=payload.id,
            role=payload.role,
            model=payload.model,
            usage=payload.usage.model_copy(),
            stop_reason=payload.stop_reason,
            stop_sequence=payload.stop_sequence,
        )
        if payload.id:
            self._streamed_ids.add(payload.id)
        self.state = ReducerState.AWAITING_BLOCKS
        return notes

    def _ensure_message(self) -> Message:
        if self._current is None:
            self._current = Message()
            self.state = ReducerState.AWAITING_BLOCKS
        return self._current

    def _on_message_delta(self, event: MessageDeltaEvent) -> list[Notification]:
        message = self._current
        if message is None:
            return self._anomaly("message_delta without an open message")
        if event.delta.stop_reason is not None:
            message.stop_reason = event.delta.stop_reason
        if event.delta.stop_sequence is not None:
            message.stop_sequence = event.delta.stop_sequence
        if event.usage is not None:
            _merge_usage(message.usage, event.usage)
        return []

    def _on_message_stop(self) -> list[Notification]:
        if self._current is None:
            return self._anomaly("message_stop without an open message")
        return self._close_message()

    def _close_message(self) -> list[Notification]:
        notes: list[Notification] = []
        for index in sorted(self._open):
            notes.extend(
                self._anomaly(f"block {index} still open at message end; sealing partial content")
            )
            notes.extend(self._seal(index))
        message = self._current
        assert message is not None
        message.content = [block for _, _, block in sorted(self._sealed, key=_sort_key)]
        self.messages.append(message)
        self._current = None
        self._sealed = []
        self.state = ReducerState.CLOSED
        notes.append(MessageCompleted(message))
        return notes

    # ------------------------------------------------------------------ #
    # Content blocks
    # ------------------------------------------------------------------ #

    def _on_block_start(self, event: ContentBlockStartEvent) -> list[Notification]:
        self._ensure_message()
        notes: list[Notification] = []
        index = event.index
        if index in self._open:
            notes.extend(
                self._anomaly(f"block {index} re-opened before content_block_stop; sealing it")
            )
            notes.extend(self._seal(index))

        block = event.content_block
        self._open[index] = _Accumulator.open(index, block)
        notes.append(BlockStarted(index, block.type))

        if isinstance(block, ToolUseBlock):
            tool = ToolInvocation(id=block.id, name=block.name, input=block.input)
            self.tools[block.id] = tool
            notes.append(ToolUpdated(tool.model_copy()))
        return notes

    def _on_block_delta(self, event: ContentBlockDeltaEvent) -> list[Notification]:
        acc = self._open.get(event.index)
        if acc is None:
            return self._anomaly(
                f"{event.delta.type} for unopened block index {event.index}"
            )

        delta = event.delta
        match delta:
            case TextDelta() if acc.kind == "text":
                acc.parts.append(delta.text)
                return [TextAppended(event.index, delta.text)]
            case InputJSONDelta() if acc.kind == "tool_use":
                acc.parts.append(delta.partial_json)
                tool_id = acc.start.id if isinstance(acc.start, ToolUseBlock) else ""
                return [ToolInputProgress(event.index, tool_id, delta.partial_json)]
            case ThinkingDelta() if acc.kind == "thinking":
                acc.parts.append(delta.thinking)
                return [ReasoningAppended(event.index, delta.thinking)]
            case UnknownDelta():
                logger.debug("ignoring %s for block %d", delta.type, event.index)
                return []
        return self._anomaly(
            f"{delta.type} does not match {acc.kind} block at index {event.index}"
        )

    def _on_block_stop(self, index: int) -> list[Notification]:
        if index not in self._open:
            return self._anomaly(f"content_block_stop for unopened block index {index}")
        return self._seal(index)

    def _seal(self, index: int) -> list[Notification]:
        acc = self._open.pop(index)
        notes: list[Notification] = []
        start = acc.start

        block: ContentBlock
        if isinstance(start, TextBlock):
            block = TextBlock(text=acc.joined)
        elif isinstance(start, ThinkingBlock):
            block = ThinkingBlock(thinking=acc.joined, signature=start.signature)
        elif isinstance(start, ToolUseBlock):
            block, tool_notes = self._seal_tool(acc, start)
            notes.extend(tool_notes)
        else:
            block = start

        self._sealed.append((index, self._seal_seq, block))
        self._seal_seq += 1
        notes.insert(0, BlockSealed(index, block))
        return notes

    def _seal_tool(
        self, acc: _Accumulator, start: ToolUseBlock
    ) -> tuple[ToolUseBlock, list[Notification]]:
        notes: list[Notification] = []
        tool = self.tools.get(start.id)
        if tool is None:
            tool = ToolInvocation(id=start.id, name=start.name)
            self.tools[start.id] = tool

        raw = acc.joined
        if not raw.strip():
            tool.input = start.input
            tool.status = ToolStatus.RUNNING
        else:
            try:
                tool.input = json.loads(raw)
            except json.JSONDecodeError as exc:
                tool.status = ToolStatus.ERROR
                tool.error = f"Invalid tool input JSON: {exc}"
                tool.input = {}
                notes.extend(
                    self._anomaly(f"tool {start.id or start.name} input is not valid JSON: {exc}")
                )
            else:
                tool.status = ToolStatus.RUNNING

        notes.append(ToolUpdated(tool.model_copy()))
        block = ToolUseBlock(id=start.id, name=start.name, input=tool.input)
        return block, notes

    # ------------------------------------------------------------------ #
    # Complete messages, tools, result
    # ------------------------------------------------------------------ #

    def _on_assistant(self, payload: MessagePayload) -> list[Notification]:
        if payload.id and payload.id in self._streamed_ids:
            # Already reconstructed from deltas; only refresh the totals.
            for message in self.messages:
                if message.id == payload.id:
                    _merge_usage(message.usage, payload.usage)
                    message.stop_reason = payload.stop_reason or message.stop_reason
            return []

        notes: list[Notification] = []
        message = self._assistant_message(payload)
        offset = len(message.content)
        for position, block in enumerate(payload.content, start=offset):
            match block:
                case TextBlock() if block.text:
                    notes.append(TextAppended(position, block.text))
                case ThinkingBlock() if block.thinking:
                    notes.append(ReasoningAppended(position, block.thinking))
                case ToolUseBlock():
                    notes.extend(self._on_tool_use(ToolUseEvent(tool=block.model_dump())))
            message.content.append(block)

        _merge_usage(message.usage, payload.usage)
        message.stop_reason = payload.stop_reason or message.stop_reason
        message.stop_sequence = payload.stop_sequence or message.stop_sequence
        if self._current is None:
            self.state = ReducerState.CLOSED
        notes.append(MessageCompleted(message))
        return notes

    def _assistant_message(self, payload: MessagePayload) -> Message:
        """Return the message an ``assistant`` event belongs to.

        The CLI emits one ``assistant`` event per content block, all sharing
        the message id; those are merged into a single message.
        """
        if payload.id and payload.id in self._assistant_ids and self.messages:
            last = self.messages[-1]
            if last.id == payload.id:
                return last
        message = Message(id=payload.id, role=payload.role, model=payload.model)
        if payload.id:
            self._assistant_ids.add(payload.id)
        self.messages.append(message)
        return message

    def _on_user(self, event: UserEvent) -> list[Notification]:
        content = event.message.content
        if isinstance(content, str):
            return []
        notes: list[Notification] = []
        for block in content:
            if isinstance(block, ToolResultBlock):
                notes.extend(
                    self._complete_tool(block.tool_use_id, block.content, bool(block.is_error))
                )
        return notes

    def _on_tool_use(self, event: ToolUseEvent) -> list[Notification]:
        spec = event.tool
        tool = self.tools.get(spec.id)
        if tool is None:
            tool = ToolInvocation(id=spec.id, name=spec.name, input=spec.input)
            self.tools[spec.id] = tool
        else:
            tool.name = spec.name or tool.name
            tool.input = spec.input
        if tool.status is ToolStatus.PENDING:
            tool.status = ToolStatus.RUNNING
        return [ToolUpdated(tool.model_copy())]

    def _complete_tool(self, tool_id: str, content: Any, is_error: bool) -> list[Notification]:
        notes: list[Notification] = []
        tool = self.tools.get(tool_id)
        if tool is None:
            notes.extend(self._anomaly(f"tool_result for unknown tool id {tool_id!r}"))
            tool = ToolInvocation(id=tool_id)
            self.tools[tool_id] = tool
        tool.result = result_text(content)
        if is_error:
            tool.status = ToolStatus.ERROR
            tool.error = tool.result
        else:
            tool.status = ToolStatus.COMPLETED
        notes.append(ToolUpdated(tool.model_copy()))
        return notes

    def _on_result(self, event: ResultEvent) -> list[Notification]:
        self.outcome = TurnOutcome(
            subtype=event.subtype,
            is_error=event.is_error or event.subtype != "success",
            cost_usd=event.cost_usd,
            total_cost_usd=event.total_cost_usd,
            duration_ms=event.duration_ms,
            result=event.result,
            error=event.error,
            session_id=event.session_id,
        )
        if event.session_id:
            self.session_id = event.session_id
        return [TurnFinished(self.outcome)]

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _anomaly(self, message: str) -> list[Notification]:
        logger.warning("protocol anomaly: %s", message)
        self.warnings.append(message)
        return [Anomaly(message)]


def _merge_usage(target: Usage, update: Usage) -> None:
    for name in update.model_fields_set:
        value = getattr(update, name)
        if value is not None:
            setattr(target, name, value)


def _sort_key(entry: tuple[int, int, ContentBlock]) -> tuple[int, int]:
    return entry[0], entry[1]
