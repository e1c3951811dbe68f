"""Tests for the process launcher and registry."""

from __future__ import annotations

import asyncio
import errno
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from planbridge.config.models import CLIConfig
from planbridge.process.launcher import (
    CLINotFoundError,
    LaunchRequest,
    SpawnError,
    SubprocessLauncher,
    build_cli_args,
    build_cli_env,
    requires_shell,
)
from planbridge.process.registry import (
    DuplicateTurnError,
    ProcessHandle,
    ProcessRegistry,
    new_correlation_id,
)

# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #


def _make_mock_process(pid: int = 1234, returncode: int | None = None) -> MagicMock:
    proc = MagicMock()
    proc.pid = pid
    proc.returncode = returncode
    proc.wait = AsyncMock(return_value=0)
    proc.terminate = MagicMock()
    proc.kill = MagicMock()
    return proc


# ------------------------------------------------------------------ #
# Argument vector
# ------------------------------------------------------------------ #


class TestBuildArgs:
    def test_basic(self) -> None:
        args = build_cli_args(LaunchRequest(prompt="hello world"))
        assert args == [
            "--print",
            "--output-format",
            "stream-json",
            "--verbose",
            "--permission-mode",
            "plan",
            "-p",
            "hello world",
        ]

    def test_resume_token(self) -> None:
        args = build_cli_args(LaunchRequest(prompt="hi", resume_token="sess-1"))
        assert args[-4:] == ["--resume", "sess-1", "-p", "hi"]

    def test_quoted_prompt_for_shell(self) -> None:
        args = build_cli_args(LaunchRequest(prompt='say "hi" now'), quote_prompt=True)
        assert args[-1] == '"say \\"hi\\" now"'

    def test_literal_prompt_keeps_quotes(self) -> None:
        args = build_cli_args(LaunchRequest(prompt='say "hi"'))
        assert args[-1] == 'say "hi"'

    def test_requires_shell(self) -> None:
        assert requires_shell("win32")
        assert not requires_shell("linux")
        assert not requires_shell("darwin")


class TestBuildEnv:
    def test_node_heap_cap_added(self) -> None:
        env = build_cli_env(CLIConfig(), base={"PATH": "/bin"})
        assert env["NODE_OPTIONS"] == "--max-old-space-size=2048"
        assert env["PATH"] == "/bin"

    def test_existing_node_options_preserved(self) -> None:
        env = build_cli_env(CLIConfig(), base={"NODE_OPTIONS": "--trace-warnings"})
        assert env["NODE_OPTIONS"] == "--trace-warnings --max-old-space-size=2048"

    def test_existing_heap_flag_not_overridden(self) -> None:
        env = build_cli_env(CLIConfig(), base={"NODE_OPTIONS": "--max-old-space-size=512"})
        assert env["NODE_OPTIONS"] == "--max-old-space-size=512"

    def test_heap_cap_disabled(self) -> None:
        env = build_cli_env(CLIConfig(node_heap_limit_mb=0), base={})
        assert "NODE_OPTIONS" not in env

    def test_api_keys_stripped_when_configured(self) -> None:
        base = {"ANTHROPIC_API_KEY": "sk", "HOME": "/home/u"}
        assert "ANTHROPIC_API_KEY" in build_cli_env(CLIConfig(), base=base)
        stripped = build_cli_env(CLIConfig(strip_api_keys=True), base=base)
        assert "ANTHROPIC_API_KEY" not in stripped
        assert stripped["HOME"] == "/home/u"


# ------------------------------------------------------------------ #
# Launcher
# ------------------------------------------------------------------ #


class TestSubprocessLauncher:
    async def test_spawn_invocation(self, tmp_path: Path) -> None:
        proc = _make_mock_process()
        launcher = SubprocessLauncher(platform="linux")
        with patch("asyncio.create_subprocess_exec", return_value=proc) as mock_exec:
            result = await launcher.spawn(
                LaunchRequest(prompt="plan it", working_directory=str(tmp_path))
            )

        assert result is proc
        args = mock_exec.call_args[0]
        kwargs = mock_exec.call_args[1]
        assert args[0] == "claude"
        assert args[-2:] == ("-p", "plan it")
        assert kwargs["cwd"] == str(tmp_path)
        assert kwargs["stdin"] == asyncio.subprocess.DEVNULL
        assert kwargs["stdout"] == asyncio.subprocess.PIPE
        assert kwargs["stderr"] == asyncio.subprocess.PIPE
        assert kwargs["start_new_session"] is True

    async def test_windows_uses_shell(self, tmp_path: Path) -> None:
        proc = _make_mock_process()
        launcher = SubprocessLauncher(platform="win32")
        with patch("asyncio.create_subprocess_shell", return_value=proc) as mock_shell:
            await launcher.spawn(LaunchRequest(prompt="two words", working_directory=str(tmp_path)))

        command = mock_shell.call_args[0][0]
        assert command.startswith("claude --print")
        assert command.endswith('-p "two words"')

    async def test_binary_not_found(self, tmp_path: Path) -> None:
        launcher = SubprocessLauncher(platform="linux")
        with (
            patch(
                "asyncio.create_subprocess_exec",
                side_effect=FileNotFoundError(errno.ENOENT, "No such file", "claude"),
            ),
            pytest.raises(CLINotFoundError) as excinfo,
        ):
            await launcher.spawn(LaunchRequest(prompt="x", working_directory=str(tmp_path)))

        exc = excinfo.value
        assert exc.code == "ENOENT"
        assert "not found" in exc.message
        assert "PATH" in exc.message
        assert "No such file" in exc.original_message

    async def test_other_os_error(self, tmp_path: Path) -> None:
        launcher = SubprocessLauncher(platform="linux")
        with (
            patch(
                "asyncio.create_subprocess_exec",
                side_effect=PermissionError(errno.EACCES, "Permission denied"),
            ),
            pytest.raises(SpawnError) as excinfo,
        ):
            await launcher.spawn(LaunchRequest(prompt="x", working_directory=str(tmp_path)))

        assert not isinstance(excinfo.value, CLINotFoundError)
        assert excinfo.value.code == "EACCES"

    async def test_missing_working_directory(self, tmp_path: Path) -> None:
        launcher = SubprocessLauncher(platform="linux")
        with (
            patch("asyncio.create_subprocess_exec") as mock_exec,
            pytest.raises(SpawnError) as excinfo,
        ):
            await launcher.spawn(
                LaunchRequest(prompt="x", working_directory=str(tmp_path / "nope"))
            )

        mock_exec.assert_not_called()
        assert excinfo.value.code == "ENOENT"
        assert "Working directory not found" in excinfo.value.message

    async def test_custom_binary(self, tmp_path: Path) -> None:
        launcher = SubprocessLauncher(CLIConfig(binary="/opt/claude/bin/claude"), platform="linux")
        with patch("asyncio.create_subprocess_exec", return_value=_make_mock_process()) as mock_exec:
            await launcher.spawn(LaunchRequest(prompt="x", working_directory=str(tmp_path)))
        assert mock_exec.call_args[0][0] == "/opt/claude/bin/claude"


# ------------------------------------------------------------------ #
# Registry
# ------------------------------------------------------------------ #


class TestProcessRegistry:
    def test_register_and_evict(self) -> None:
        registry = ProcessRegistry()
        handle = ProcessHandle("turn-1", _make_mock_process())
        registry.register(handle)
        assert "turn-1" in registry
        assert len(registry) == 1
        assert registry.get("turn-1") is handle

        assert registry.evict("turn-1") is handle
        assert "turn-1" not in registry
        assert registry.evict("turn-1") is None

    def test_duplicate_live_id_rejected(self) -> None:
        registry = ProcessRegistry()
        registry.register(ProcessHandle("sess", _make_mock_process()))
        with pytest.raises(DuplicateTurnError):
            registry.register(ProcessHandle("sess", _make_mock_process(pid=2)))

    def test_exited_entry_can_be_replaced(self) -> None:
        registry = ProcessRegistry()
        registry.register(ProcessHandle("sess", _make_mock_process(returncode=0)))
        fresh = ProcessHandle("sess", _make_mock_process(pid=2))
        registry.register(fresh)
        assert registry.get("sess") is fresh

    def test_evict_only_matching_process(self) -> None:
        registry = ProcessRegistry()
        current = _make_mock_process()
        registry.register(ProcessHandle("sess", current))
        assert registry.evict("sess", process=_make_mock_process(pid=99)) is None
        assert "sess" in registry
        assert registry.evict("sess", process=current) is not None

    def test_cancel_terminates_and_evicts(self) -> None:
        registry = ProcessRegistry()
        proc = _make_mock_process()
        registry.register(ProcessHandle("turn-1", proc))
        assert registry.cancel("turn-1") is True
        proc.terminate.assert_called_once()
        assert len(registry) == 0
        assert registry.cancel("turn-1") is False

    def test_cancel_only_matching_process(self) -> None:
        registry = ProcessRegistry()
        current = _make_mock_process()
        registry.register(ProcessHandle("sess", current))
        other = _make_mock_process(pid=99)

        assert registry.cancel("sess", process=other) is False
        current.terminate.assert_not_called()
        other.terminate.assert_not_called()
        assert registry.get("sess").process is current

        assert registry.cancel("sess", process=current) is True
        current.terminate.assert_called_once()

    def test_cancel_tolerates_exited_process(self) -> None:
        registry = ProcessRegistry()
        proc = _make_mock_process()
        proc.terminate.side_effect = ProcessLookupError
        registry.register(ProcessHandle("turn-1", proc))
        assert registry.cancel("turn-1") is True

    def test_correlation_ids_unique(self) -> None:
        assert new_correlation_id() != new_correlation_id()

    async def test_shutdown_terminates_all(self) -> None:
        registry = ProcessRegistry()
        procs = [_make_mock_process(pid=i) for i in range(3)]
        for i, proc in enumerate(procs):
            registry.register(ProcessHandle(f"t{i}", proc))

        await registry.shutdown(grace=0.5)

        for proc in procs:
            proc.terminate.assert_called_once()
            proc.kill.assert_not_called()
        assert len(registry) == 0

    async def test_shutdown_escalates_to_kill(self) -> None:
        registry = ProcessRegistry()
        stubborn = _make_mock_process()
        killed = asyncio.Event()

        async def _wait() -> int:
            await killed.wait()
            return -9

        stubborn.wait = _wait
        stubborn.kill = MagicMock(side_effect=killed.set)
        registry.register(ProcessHandle("stubborn", stubborn))

        await asyncio.wait_for(registry.shutdown(grace=0.05), timeout=2.0)

        stubborn.terminate.assert_called_once()
        stubborn.kill.assert_called_once()
