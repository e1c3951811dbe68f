"""Turn pipeline — one CLI subprocess streamed into outbound frames.

A ``Turn`` wires the pieces together for a single request:

    launcher -> stdout -> LineFramer -> decode_line -> EventReducer -> PlanRouter
                stderr -> error frames

Every frame goes through the ``emit`` callback (an ``SSEEncoder.send``
for the HTTP service, a terminal printer for ``planbridge chat``).
Exactly one ``stream_complete`` frame ends a turn whose process started;
a spawn failure produces a single ``spawn_error`` frame instead.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
from dataclasses import dataclass, field
from typing import Any

from planbridge.config.models import BridgeConfig
from planbridge.constants import FrameCallback
from planbridge.process.launcher import Launcher, LaunchRequest, ProcessLike, SpawnError
from planbridge.process.registry import (
    DuplicateTurnError,
    ProcessHandle,
    ProcessRegistry,
    new_correlation_id,
)
from planbridge.routing.router import Destination, PlanRouter, RoutingDecision
from planbridge.stream.decoder import DecodeFailure, decode_line
from planbridge.stream.events import AssistantEvent, ContentBlockDeltaEvent, Event, TextDelta
from planbridge.stream.framing import LineFramer
from planbridge.stream.reducer import (
    Anomaly,
    EventReducer,
    Message,
    MessageCompleted,
    Notification,
    SessionStarted,
    TextAppended,
    ToolInvocation,
    TurnOutcome,
)

logger = logging.getLogger(__name__)


@dataclass
class TurnTranscript:
    """Batch view of a finished (or abandoned) turn."""

    correlation_id: str
    messages: list[Message] = field(default_factory=list)
    tools: dict[str, ToolInvocation] = field(default_factory=dict)
    outcome: TurnOutcome | None = None
    exit_code: int | None = None
    decision: RoutingDecision = RoutingDecision.UNDECIDED
    chat_text: str = ""
    plan_text: str = ""
    plan_name: str | None = None
    session_id: str | None = None
    stderr: str = ""
    warnings: list[str] = field(default_factory=list)
    spawn_error: SpawnError | None = None
    cancelled: bool = False
    timed_out: bool = False


class Turn:
    """Runs one request/response cycle against the CLI."""

    def __init__(
        self,
        request: LaunchRequest,
        *,
        launcher: Launcher,
        registry: ProcessRegistry,
        emit: FrameCallback,
        config: BridgeConfig | None = None,
        router: PlanRouter | None = None,
        correlation_id: str | None = None,
    ) -> None:
        self.request = request
        self.config = config or BridgeConfig()
        self.correlation_id = correlation_id or request.resume_token or new_correlation_id()
        self._launcher = launcher
        self._registry = registry
        self._emit_frame = emit

        self.reducer = EventReducer()
        self.router = router or PlanRouter.from_config(self.config.plan_routing)
        self._framer = LineFramer(self.config.cli.max_line_bytes)
        self._stderr_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._stderr: list[str] = []
        self._pending: list[dict[str, Any]] = []

        self._process: ProcessLike | None = None
        self.exit_code: int | None = None
        self.spawn_error: SpawnError | None = None
        self.cancelled = False
        self.timed_out = False
        self._completed = False

    @property
    def completed(self) -> bool:
        """True once ``stream_complete`` (or ``spawn_error``) was produced."""
        return self._completed

    @property
    def stderr_text(self) -> str:
        return "".join(self._stderr)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def run(self) -> TurnTranscript:
        """Spawn the CLI and stream it to completion."""
        self._registry.check_available(self.correlation_id)

        try:
            proc = await self._launcher.spawn(self.request)
        except SpawnError as exc:
            logger.error("spawn failed for %s: %s", self.correlation_id, exc.original_message)
            self.spawn_error = exc
            self._emit(
                {
                    "type": "spawn_error",
                    "message": exc.message,
                    "originalMessage": exc.original_message,
                    "code": exc.code,
                }
            )
            self._completed = True
            return self.transcript()

        self._process = proc
        try:
            self._registry.register(ProcessHandle(self.correlation_id, proc))
        except DuplicateTurnError as exc:
            # Lost a race with a concurrent turn for the same id.
            self._emit({"type": "error", "message": str(exc)})
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()

        if self.cancelled:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()

        pumps = [
            asyncio.ensure_future(self._pump_stdout(proc)),
            asyncio.ensure_future(self._pump_stderr(proc)),
        ]
        try:
            await asyncio.gather(*pumps)
            self._dispatch(self.reducer.finish(), event=None)
            self._flush_pending()
            self.router.finish()
            self.exit_code = await proc.wait()
        except BaseException:
            for pump in pumps:
                pump.cancel()
            self._abort(proc)
            raise
        finally:
            self._registry.evict(self.correlation_id, proc)

        logger.info("turn %s finished with exit code %s", self.correlation_id, self.exit_code)
        self._emit({"type": "stream_complete", "exitCode": self.exit_code})
        self._completed = True
        return self.transcript()

    def cancel(self) -> None:
        """Abandon the turn: SIGTERM the process, evict it, stop emitting."""
        if self.cancelled:
            return
        self.cancelled = True
        proc = self._process
        cancelled = proc is not None and self._registry.cancel(self.correlation_id, proc)
        if proc is not None and not cancelled and proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
        logger.info("turn %s cancelled", self.correlation_id)

    def _abort(self, proc: ProcessLike) -> None:
        """Terminate a process whose output is no longer being read."""
        if self.cancelled or proc.returncode is not None:
            return
        logger.warning("turn %s aborted, terminating pid %d", self.correlation_id, proc.pid)
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()

    def transcript(self) -> TurnTranscript:
        return TurnTranscript(
            correlation_id=self.correlation_id,
            messages=list(self.reducer.messages),
            tools=dict(self.reducer.tools),
            outcome=self.reducer.outcome,
            exit_code=self.exit_code,
            decision=self.router.decision,
            chat_text=self.router.chat_text,
            plan_text=self.router.plan_text,
            plan_name=self.router.plan_name,
            session_id=self.reducer.session_id,
            stderr=self.stderr_text,
            warnings=list(self.reducer.warnings),
            spawn_error=self.spawn_error,
            cancelled=self.cancelled,
            timed_out=self.timed_out,
        )

    # ------------------------------------------------------------------ #
    # Pumps
    # ------------------------------------------------------------------ #

    async def _pump_stdout(self, proc: ProcessLike) -> None:
        stream = proc.stdout
        if stream is None:
            return
        chunk_size = self.config.cli.read_chunk_bytes
        while True:
            try:
                chunk = await self._read_with_timeout(stream.read(chunk_size))
            except TimeoutError:
                self._on_idle_timeout(proc)
                continue
            if not chunk:
                break
            for line in self._framer.feed(chunk):
                self._handle_line(line)
        for line in self._framer.flush():
            self._handle_line(line)

    async def _pump_stderr(self, proc: ProcessLike) -> None:
        stream = proc.stderr
        if stream is None:
            return
        chunk_size = self.config.cli.read_chunk_bytes
        while True:
            chunk = await stream.read(chunk_size)
            if not chunk:
                break
            text = self._stderr_decoder.decode(chunk)
            if not text.strip():
                continue
            self._stderr.append(text)
            logger.warning("%s stderr: %s", self.correlation_id, text.strip()[:500])
            self._emit({"type": "error", "message": text})

    async def _read_with_timeout(self, read: Any) -> bytes:
        timeout = self.config.stream.idle_timeout
        if self.timed_out or not timeout:
            return await read
        return await asyncio.wait_for(read, timeout=timeout)

    def _on_idle_timeout(self, proc: ProcessLike) -> None:
        self.timed_out = True
        timeout = self.config.stream.idle_timeout
        logger.warning(
            "turn %s: no CLI output for %.0fs, terminating pid %d",
            self.correlation_id,
            timeout,
            proc.pid,
        )
        self._emit(
            {
                "type": "error",
                "message": f"Claude CLI produced no output for {timeout:g} seconds; terminating.",
            }
        )
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()

    # ------------------------------------------------------------------ #
    # Events -> frames
    # ------------------------------------------------------------------ #

    def _handle_line(self, line: str) -> None:
        result = decode_line(line)
        if isinstance(result, DecodeFailure):
            logger.warning("skipping undecodable line (%s): %s", result.error, line[:200])
            self._diagnostic(f"{result.error}: {line[:200]}")
            self._flush_pending()
            return

        if result.note:
            logger.warning("forwarding unusable event: %s", result.note)
            self._diagnostic(result.note)

        event = result.event
        notes = self.reducer.apply(event)
        to_plan = self._dispatch(notes, event=event)
        text_delta = _text_delta(event)
        placed = any(isinstance(n, TextAppended) for n in notes)
        if text_delta is not None and text_delta.text and not placed:
            # Text the reducer could not place is still the turn's text.
            to_plan = self._route_text(text_delta.text) or to_plan

        # Plan-bound text deltas are replaced by plan_delta frames.
        plan_text = to_plan or self.router.decision is RoutingDecision.PLAN
        if not (text_delta is not None and plan_text):
            raw = result.raw
            if isinstance(event, AssistantEvent) and self.router.decision is RoutingDecision.PLAN:
                raw = _without_text_blocks(raw)
            self._emit(raw)
        self._flush_pending()

    def _dispatch(self, notes: list[Notification], event: Event | None) -> bool:
        """Queue the frames derived from *notes*; True if text went to the plan."""
        to_plan = False
        for note in notes:
            match note:
                case TextAppended():
                    if isinstance(event, ContentBlockDeltaEvent | AssistantEvent):
                        to_plan = self._route_text(note.text) or to_plan
                case MessageCompleted():
                    self._queue(
                        {"type": "message_complete", "message": self._message_payload(note.message)}
                    )
                case SessionStarted():
                    logger.debug("turn %s: CLI session %s", self.correlation_id, note.session_id)
                case Anomaly():
                    self._diagnostic(note.message)
        return to_plan

    def _route_text(self, text: str) -> bool:
        routed = self.router.feed(text)
        if routed.destination is Destination.CHAT:
            return False
        if routed.decided_now:
            self._queue({"type": "plan_detected", "fileName": self.router.plan_name})
        self._queue({"type": "plan_delta", "text": routed.text})
        return True

    def _message_payload(self, message: Message) -> dict[str, Any]:
        data = message.model_dump(mode="json")
        if self.router.decision is RoutingDecision.PLAN:
            data["content"] = [b for b in data["content"] if b.get("type") != "text"]
        return data

    def _diagnostic(self, message: str) -> None:
        if self.config.stream.emit_diagnostics:
            self._queue({"type": "diagnostic", "message": message})

    def _queue(self, payload: dict[str, Any]) -> None:
        """Hold a derived frame until the raw event that produced it is out."""
        self._pending.append(payload)

    def _flush_pending(self) -> None:
        pending, self._pending = self._pending, []
        for payload in pending:
            self._emit(payload)

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.cancelled:
            return
        self._emit_frame(payload)


def _text_delta(event: Event) -> TextDelta | None:
    if isinstance(event, ContentBlockDeltaEvent) and isinstance(event.delta, TextDelta):
        return event.delta
    return None


def _without_text_blocks(raw: dict[str, Any]) -> dict[str, Any]:
    message = raw.get("message")
    if not isinstance(message, dict) or not isinstance(message.get("content"), list):
        return raw
    content = [b for b in message["content"] if not (isinstance(b, dict) and b.get("type") == "text")]
    return {**raw, "message": {**message, "content": content}}
