"""Tests for the per-turn event reducer."""

from __future__ import annotations

import json
from typing import Any

from planbridge.stream.events import EVENT_ADAPTER, TextBlock, ThinkingBlock, ToolUseBlock
from planbridge.stream.reducer import (
    Anomaly,
    BlockSealed,
    EventReducer,
    MessageCompleted,
    ReasoningAppended,
    ReducerState,
    SessionStarted,
    TextAppended,
    ToolInputProgress,
    ToolStatus,
    ToolUpdated,
    TurnFinished,
)

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _ev(data: dict[str, Any]) -> Any:
    return EVENT_ADAPTER.validate_python(data)


def _apply(reducer: EventReducer, *events: dict[str, Any]) -> list[Any]:
    notes: list[Any] = []
    for data in events:
        notes.extend(reducer.apply(_ev(data)))
    return notes


def _start(index: int, block: dict[str, Any]) -> dict[str, Any]:
    return {"type": "content_block_start", "index": index, "content_block": block}


def _text(index: int, text: str) -> dict[str, Any]:
    return {"type": "content_block_delta", "index": index, "delta": {"type": "text_delta", "text": text}}


def _json(index: int, fragment: str) -> dict[str, Any]:
    return {
        "type": "content_block_delta",
        "index": index,
        "delta": {"type": "input_json_delta", "partial_json": fragment},
    }


def _stop(index: int) -> dict[str, Any]:
    return {"type": "content_block_stop", "index": index}


_MESSAGE_START = {
    "type": "message_start",
    "message": {"id": "msg_1", "role": "assistant", "model": "claude-test", "content": [],
                "usage": {"input_tokens": 10, "output_tokens": 1}},
}
_MESSAGE_STOP = {"type": "message_stop"}


# ------------------------------------------------------------------ #
# Message lifecycle
# ------------------------------------------------------------------ #


class TestMessageLifecycle:
    def test_states(self) -> None:
        reducer = EventReducer()
        assert reducer.state is ReducerState.IDLE
        _apply(reducer, _MESSAGE_START)
        assert reducer.state is ReducerState.AWAITING_BLOCKS
        assert reducer.current_message is not None
        _apply(reducer, _MESSAGE_STOP)
        assert reducer.state is ReducerState.CLOSED
        assert reducer.current_message is None
        assert len(reducer.messages) == 1

    def test_text_concatenated_in_arrival_order(self) -> None:
        reducer = EventReducer()
        notes = _apply(
            reducer,
            _MESSAGE_START,
            _start(0, {"type": "text", "text": ""}),
            _text(0, "Hel"),
            _text(0, "lo, "),
            _text(0, "world"),
            _stop(0),
            _MESSAGE_STOP,
        )
        appended = [n.text for n in notes if isinstance(n, TextAppended)]
        assert appended == ["Hel", "lo, ", "world"]

        message = reducer.messages[0]
        assert message.id == "msg_1"
        assert message.model == "claude-test"
        assert message.content == [TextBlock(text="Hello, world")]
        assert message.text == "Hello, world"
        assert isinstance(notes[-1], MessageCompleted)

    def test_blocks_ordered_by_index(self) -> None:
        reducer = EventReducer()
        _apply(
            reducer,
            _MESSAGE_START,
            _start(0, {"type": "thinking", "thinking": ""}),
            _start(1, {"type": "text"}),
            _text(1, "answer"),
            _stop(1),
            {"type": "content_block_delta", "index": 0,
             "delta": {"type": "thinking_delta", "thinking": "pondering"}},
            _stop(0),
            _MESSAGE_STOP,
        )
        content = reducer.messages[0].content
        assert isinstance(content[0], ThinkingBlock)
        assert content[0].thinking == "pondering"
        assert content[1] == TextBlock(text="answer")

    def test_reasoning_notifications(self) -> None:
        reducer = EventReducer()
        notes = _apply(
            reducer,
            _start(0, {"type": "thinking"}),
            {"type": "content_block_delta", "index": 0,
             "delta": {"type": "thinking_delta", "thinking": "hmm"}},
        )
        assert ReasoningAppended(0, "hmm") in notes

    def test_implicit_message_on_block_start(self) -> None:
        reducer = EventReducer()
        _apply(reducer, _start(0, {"type": "text"}), _text(0, "x"), _stop(0), _MESSAGE_STOP)
        assert reducer.messages[0].id is None
        assert reducer.messages[0].text == "x"
        assert reducer.warnings == []

    def test_message_delta_merges_without_closing(self) -> None:
        reducer = EventReducer()
        _apply(
            reducer,
            _MESSAGE_START,
            {"type": "message_delta", "delta": {"stop_reason": "end_turn"},
             "usage": {"output_tokens": 42}},
        )
        message = reducer.current_message
        assert message is not None
        assert message.stop_reason == "end_turn"
        assert message.usage.output_tokens == 42
        assert message.usage.input_tokens == 10
        assert reducer.state is ReducerState.AWAITING_BLOCKS

    def test_second_message_after_close(self) -> None:
        reducer = EventReducer()
        second = {**_MESSAGE_START, "message": {**_MESSAGE_START["message"], "id": "msg_2"}}
        _apply(reducer, _MESSAGE_START, _MESSAGE_STOP, second,
               _start(0, {"type": "text"}), _text(0, "two"), _stop(0), _MESSAGE_STOP)
        assert [m.id for m in reducer.messages] == ["msg_1", "msg_2"]
        assert reducer.messages[1].text == "two"

    def test_result_is_orthogonal(self) -> None:
        reducer = EventReducer()
        notes = _apply(
            reducer,
            _MESSAGE_START,
            {"type": "result", "subtype": "success", "is_error": False, "cost_usd": 0.01,
             "duration_ms": 1500, "result": "done", "session_id": "sess-9"},
        )
        assert isinstance(notes[-1], TurnFinished)
        assert reducer.outcome is not None
        assert reducer.outcome.cost_usd == 0.01
        assert not reducer.outcome.is_error
        assert reducer.session_id == "sess-9"
        assert reducer.state is ReducerState.AWAITING_BLOCKS

    def test_error_result(self) -> None:
        reducer = EventReducer()
        _apply(reducer, {"type": "result", "subtype": "error", "error": "boom"})
        assert reducer.outcome is not None
        assert reducer.outcome.is_error
        assert reducer.outcome.error == "boom"

    def test_system_init_records_session(self) -> None:
        reducer = EventReducer()
        notes = _apply(reducer, {"type": "system", "subtype": "init", "session_id": "abc", "model": "m"})
        assert notes == [SessionStarted("abc", "m")]
        assert reducer.session_id == "abc"

    def test_unknown_event_ignored(self) -> None:
        reducer = EventReducer()
        assert _apply(reducer, {"type": "something_new"}) == []


# ------------------------------------------------------------------ #
# Anomalies
# ------------------------------------------------------------------ #


class TestAnomalies:
    def test_delta_for_unopened_index(self) -> None:
        reducer = EventReducer()
        notes = _apply(reducer, _text(3, "lost"))
        assert len(notes) == 1
        assert isinstance(notes[0], Anomaly)
        assert "unopened block index 3" in reducer.warnings[0]

    def test_wrong_delta_kind(self) -> None:
        reducer = EventReducer()
        notes = _apply(reducer, _start(0, {"type": "text"}), _json(0, "{}"))
        assert isinstance(notes[-1], Anomaly)
        assert "does not match text block" in reducer.warnings[0]

    def test_reopen_seals_previous_block(self) -> None:
        reducer = EventReducer()
        notes = _apply(
            reducer,
            _start(0, {"type": "text"}),
            _text(0, "first"),
            _start(0, {"type": "text"}),
            _text(0, "second"),
            _stop(0),
            _MESSAGE_STOP,
        )
        assert any(isinstance(n, Anomaly) for n in notes)
        assert [b.text for b in reducer.messages[0].content] == ["first", "second"]

    def test_stop_for_unopened_index(self) -> None:
        reducer = EventReducer()
        _apply(reducer, _stop(5))
        assert "content_block_stop for unopened block index 5" in reducer.warnings

    def test_message_stop_force_seals_open_blocks(self) -> None:
        reducer = EventReducer()
        notes = _apply(reducer, _MESSAGE_START, _start(0, {"type": "text"}), _text(0, "partial"),
                       _MESSAGE_STOP)
        assert any(isinstance(n, BlockSealed) for n in notes)
        assert reducer.messages[0].text == "partial"
        assert len(reducer.warnings) == 1

    def test_finish_closes_dangling_message(self) -> None:
        reducer = EventReducer()
        _apply(reducer, _MESSAGE_START, _start(0, {"type": "text"}), _text(0, "cut off"))
        notes = reducer.finish()
        assert isinstance(notes[-1], MessageCompleted)
        assert reducer.messages[0].text == "cut off"
        assert reducer.finish() == []

    def test_message_stop_without_message(self) -> None:
        reducer = EventReducer()
        notes = _apply(reducer, _MESSAGE_STOP)
        assert isinstance(notes[0], Anomaly)
        assert reducer.messages == []


# ------------------------------------------------------------------ #
# Tools
# ------------------------------------------------------------------ #


class TestTools:
    def test_tool_input_round_trip(self) -> None:
        original = {"file_path": "src/app.py", "lines": [1, 2, 3], "opts": {"dry": True, "note": "é"}}
        encoded = json.dumps(original)
        fragments = [encoded[:5], encoded[5:19], encoded[19:40], encoded[40:]]

        reducer = EventReducer()
        notes = _apply(
            reducer,
            _MESSAGE_START,
            _start(0, {"type": "tool_use", "id": "toolu_1", "name": "Read", "input": {}}),
            *[_json(0, f) for f in fragments],
            _stop(0),
            _MESSAGE_STOP,
        )
        progress = [n.partial_json for n in notes if isinstance(n, ToolInputProgress)]
        assert progress == fragments

        tool = reducer.tools["toolu_1"]
        assert tool.input == original
        assert tool.status is ToolStatus.RUNNING
        block = reducer.messages[0].content[0]
        assert isinstance(block, ToolUseBlock)
        assert block.input == original

    def test_pending_until_sealed(self) -> None:
        reducer = EventReducer()
        notes = _apply(reducer, _start(0, {"type": "tool_use", "id": "t1", "name": "Grep"}))
        updates = [n for n in notes if isinstance(n, ToolUpdated)]
        assert updates[0].tool.status is ToolStatus.PENDING

    def test_empty_fragments_keep_initial_input(self) -> None:
        reducer = EventReducer()
        _apply(reducer, _start(0, {"type": "tool_use", "id": "t1", "name": "LS", "input": {"path": "."}}),
               _stop(0))
        assert reducer.tools["t1"].input == {"path": "."}
        assert reducer.tools["t1"].status is ToolStatus.RUNNING

    def test_invalid_tool_json_marks_error(self) -> None:
        reducer = EventReducer()
        _apply(
            reducer,
            _start(0, {"type": "tool_use", "id": "t1", "name": "Edit"}),
            _json(0, '{"path": "a'),
            _stop(0),
            _MESSAGE_STOP,
        )
        tool = reducer.tools["t1"]
        assert tool.status is ToolStatus.ERROR
        assert tool.error is not None
        assert tool.error.startswith("Invalid tool input JSON")
        assert len(reducer.messages) == 1
        assert reducer.warnings

    def test_user_tool_result_completes(self) -> None:
        reducer = EventReducer()
        _apply(
            reducer,
            _start(0, {"type": "tool_use", "id": "t1", "name": "Read"}),
            _json(0, '{"file_path": "x"}'),
            _stop(0),
            {"type": "user", "message": {"role": "user", "content": [
                {"type": "tool_result", "tool_use_id": "t1",
                 "content": [{"type": "text", "text": "line 1"}, {"type": "text", "text": "line 2"}]},
            ]}},
        )
        tool = reducer.tools["t1"]
        assert tool.status is ToolStatus.COMPLETED
        assert tool.result == "line 1\nline 2"

    def test_tool_use_and_tool_result_events(self) -> None:
        reducer = EventReducer()
        _apply(
            reducer,
            {"type": "tool_use", "tool": {"id": "t9", "name": "Bash", "input": {"command": "ls"}}},
            {"type": "tool_result", "tool_use_id": "t9", "content": "permission denied", "is_error": True},
        )
        tool = reducer.tools["t9"]
        assert tool.input == {"command": "ls"}
        assert tool.status is ToolStatus.ERROR
        assert tool.error == "permission denied"

    def test_result_for_unknown_tool(self) -> None:
        reducer = EventReducer()
        notes = _apply(reducer, {"type": "tool_result", "tool_use_id": "ghost", "content": "x"})
        assert isinstance(notes[0], Anomaly)
        assert reducer.tools["ghost"].status is ToolStatus.COMPLETED


# ------------------------------------------------------------------ #
# Complete assistant messages
# ------------------------------------------------------------------ #


class TestAssistantEvents:
    def test_assistant_message_folded_in(self) -> None:
        reducer = EventReducer()
        notes = _apply(reducer, {"type": "assistant", "message": {
            "id": "msg_a", "content": [
                {"type": "text", "text": "Let me look."},
                {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.py"}},
            ]}})
        assert TextAppended(0, "Let me look.") in notes
        assert isinstance(notes[-1], MessageCompleted)
        assert reducer.tools["t1"].status is ToolStatus.RUNNING
        assert reducer.messages[0].text == "Let me look."
        assert reducer.state is ReducerState.CLOSED

    def test_same_id_events_merge(self) -> None:
        reducer = EventReducer()
        _apply(
            reducer,
            {"type": "assistant", "message": {"id": "msg_a", "content": [{"type": "text", "text": "one"}]}},
            {"type": "assistant", "message": {"id": "msg_a", "content": [{"type": "text", "text": "two"}]}},
        )
        assert len(reducer.messages) == 1
        assert reducer.messages[0].text == "onetwo"

    def test_streamed_message_not_duplicated(self) -> None:
        reducer = EventReducer()
        _apply(reducer, _MESSAGE_START, _start(0, {"type": "text"}), _text(0, "hi"), _stop(0),
               _MESSAGE_STOP)
        notes = _apply(reducer, {"type": "assistant", "message": {
            "id": "msg_1", "content": [{"type": "text", "text": "hi"}],
            "usage": {"input_tokens": 10, "output_tokens": 7}}})
        assert notes == []
        assert len(reducer.messages) == 1
        assert reducer.messages[0].usage.output_tokens == 7
