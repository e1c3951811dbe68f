"""Tests for the CLI availability check."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

from planbridge.health import CLICheckResult, CLIChecker


def _version_process(stdout: bytes = b"2.0.1 (Claude Code)\n", returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, b""))
    proc.wait = AsyncMock(return_value=returncode)
    proc.kill = MagicMock()
    return proc


class TestCLIChecker:
    async def test_available(self) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_version_process()) as mock_exec:
            result = await CLIChecker("claude").check()
        assert result == CLICheckResult(True, version="2.0.1 (Claude Code)")
        assert mock_exec.call_args[0][:2] == ("claude", "--version")

    async def test_not_found(self) -> None:
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError):
            result = await CLIChecker("claude").check()
        assert not result.available
        assert result.error == "Claude CLI not found in PATH. Please install it first."

    async def test_nonzero_exit(self) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_version_process(returncode=3)):
            result = await CLIChecker("claude").check()
        assert result.to_dict() == {"available": False, "error": "Claude CLI exited with code 3"}

    async def test_timeout_kills(self) -> None:
        proc = _version_process()

        async def _hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        proc.communicate = _hang
        with patch("asyncio.create_subprocess_exec", return_value=proc):
            result = await CLIChecker("claude", timeout=0.05).check()
        assert result.error == "Claude CLI check timed out"
        proc.kill.assert_called_once()

    async def test_result_cached(self) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_version_process()) as mock_exec:
            checker = CLIChecker("claude", ttl=60.0)
            await checker.check()
            await checker.check()
            assert mock_exec.call_count == 1
            await checker.check(force=True)
            assert mock_exec.call_count == 2

    def test_to_dict_omits_missing(self) -> None:
        assert CLICheckResult(True, version="1.0").to_dict() == {"available": True, "version": "1.0"}
