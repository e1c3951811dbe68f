"""planbridge chat — run one plan-mode turn in the terminal."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import click

from planbridge.config.models import BridgeConfig
from planbridge.config.parser import ConfigError, load_config
from planbridge.errors import (
    classify_cli_error,
    format_error_for_display,
    retry_delay,
    should_retry,
)
from planbridge.helpers import configure_logging, format_stderr_preview
from planbridge.process.launcher import LaunchRequest, SubprocessLauncher
from planbridge.process.registry import DuplicateTurnError, ProcessRegistry
from planbridge.turn import Turn, TurnTranscript


@click.command()
@click.argument("message")
@click.option("-s", "--session", "session_id", type=str, default=None, help="Resume this CLI session.")
@click.option(
    "-C",
    "--cwd",
    "project_path",
    type=click.Path(file_okay=False),
    default=None,
    help="Working directory for the CLI.",
)
@click.option(
    "-f", "--file", "config_file", type=click.Path(), help="Config file path."
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def chat(
    message: str,
    session_id: str | None,
    project_path: str | None,
    config_file: str | None,
    verbose: bool,
) -> None:
    """Send MESSAGE to the Claude CLI and print the streamed reply."""
    try:
        config = load_config(Path(config_file) if config_file else None)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    configure_logging(verbose)
    request = LaunchRequest(
        prompt=message,
        resume_token=session_id,
        working_directory=project_path,
        permission_mode=config.cli.permission_mode,
    )
    try:
        transcript = asyncio.run(_run_chat(config, request))
    except DuplicateTurnError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc

    if transcript.spawn_error is not None:
        raise SystemExit(1)
    if transcript.exit_code:
        _report_failure(transcript)
        raise SystemExit(transcript.exit_code if transcript.exit_code > 0 else 1)


async def _run_chat(config: BridgeConfig, request: LaunchRequest) -> TurnTranscript:
    printer = TerminalPrinter()
    turn = Turn(
        request,
        launcher=SubprocessLauncher(config.cli),
        registry=ProcessRegistry(),
        emit=printer,
        config=config,
    )
    try:
        return await turn.run()
    except asyncio.CancelledError:
        turn.cancel()
        raise


def _report_failure(transcript: TurnTranscript) -> None:
    preview = format_stderr_preview(transcript.stderr)
    msg = f"Claude CLI exited with code {transcript.exit_code}."
    if preview:
        msg += f" Stderr:\n  {preview}"
    click.echo(msg, err=True)
    info = classify_cli_error(transcript.stderr or (transcript.outcome and transcript.outcome.error) or "")
    click.echo(format_error_for_display(info), err=True)
    if should_retry(info):
        click.echo(f"This is usually temporary; retry in {retry_delay(info):g}s.", err=True)


class TerminalPrinter:
    """Frame callback that renders a turn on stdout/stderr."""

    def __init__(self) -> None:
        self.streamed_text = False
        self.plan_name: str | None = None
        self._at_line_start = True

    def __call__(self, frame: dict[str, Any]) -> None:
        kind = frame.get("type")
        if kind == "content_block_delta":
            delta = frame.get("delta") or {}
            if delta.get("type") == "text_delta":
                self.streamed_text = True
                self._write(delta.get("text", ""))
        elif kind == "content_block_start":
            block = frame.get("content_block") or {}
            if block.get("type") == "tool_use":
                self._note(f"[tool] {block.get('name', '')}")
        elif kind == "assistant":
            self._assistant(frame)
        elif kind == "plan_detected":
            self.plan_name = frame.get("fileName")
            self._note(f"--- plan: {self.plan_name} ---", err=False)
        elif kind == "plan_delta":
            self._write(frame.get("text", ""))
        elif kind == "result" and frame.get("is_error"):
            self._note(f"Error: {frame.get('error') or frame.get('result') or frame.get('subtype')}")
        elif kind == "error":
            click.echo(frame.get("message", "").rstrip("\n"), err=True)
        elif kind == "spawn_error":
            info = classify_cli_error(frame.get("originalMessage") or "", frame.get("code"))
            click.echo(f"Error: {frame.get('message')}", err=True)
            click.echo(format_error_for_display(info), err=True)
        elif kind == "stream_complete" and not self._at_line_start:
            click.echo()
            self._at_line_start = True

    def _assistant(self, frame: dict[str, Any]) -> None:
        message = frame.get("message") or {}
        for block in message.get("content") or []:
            if not isinstance(block, dict):
                continue
            if block.get("type") == "text" and not self.streamed_text:
                self._write(block.get("text", ""))
            elif block.get("type") == "tool_use" and not self.streamed_text:
                self._note(f"[tool] {block.get('name', '')}")

    def _write(self, text: str) -> None:
        if not text:
            return
        click.echo(text, nl=False)
        self._at_line_start = text.endswith("\n")

    def _note(self, line: str, err: bool = True) -> None:
        if not self._at_line_start:
            click.echo()
            self._at_line_start = True
        click.echo(line, err=err)
