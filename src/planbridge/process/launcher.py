"""Process launcher — spawns one CLI subprocess per turn."""

from __future__ import annotations

import asyncio
import errno
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from planbridge.config.models import CLIConfig
from planbridge.constants import PERMISSION_MODE

logger = logging.getLogger(__name__)

#: Env vars stripped from CLI subprocesses when ``cli.strip_api_keys`` is on.
_STRIPPED_ENV_KEYS = {"ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GOOGLE_API_KEY"}

#: Remediation text for a missing binary.
CLI_NOT_FOUND_MESSAGE = (
    "Claude CLI not found. Please install Claude Code CLI and ensure it is in "
    'your system PATH. Run "{binary} --version" in your terminal to verify '
    "installation."
)


class SpawnError(Exception):
    """The OS refused to start the CLI."""

    def __init__(
        self, message: str, *, code: str | None = None, original_message: str | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.original_message = original_message if original_message is not None else message


class CLINotFoundError(SpawnError):
    """The CLI binary is not installed or not on PATH."""


@dataclass(frozen=True)
class LaunchRequest:
    """Everything needed to start one turn."""

    prompt: str
    resume_token: str | None = None
    working_directory: str | None = None
    permission_mode: str = PERMISSION_MODE


class ByteStream(Protocol):
    async def read(self, n: int = -1) -> bytes: ...


class ProcessLike(Protocol):
    """The subset of ``asyncio.subprocess.Process`` a turn relies on."""

    pid: int
    returncode: int | None
    stdout: ByteStream | None
    stderr: ByteStream | None

    async def wait(self) -> int: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


class Launcher(Protocol):
    async def spawn(self, request: LaunchRequest) -> ProcessLike: ...


def requires_shell(platform: str = sys.platform) -> bool:
    """Windows installs the CLI as a ``.cmd`` shim that only a shell can run."""
    return platform == "win32"


def build_cli_args(request: LaunchRequest, quote_prompt: bool = False) -> list[str]:
    """Argument vector for the CLI, without the binary itself."""
    args = [
        "--print",
        "--output-format",
        "stream-json",
        "--verbose",
        "--permission-mode",
        request.permission_mode,
    ]
    if request.resume_token:
        args.extend(["--resume", request.resume_token])

    prompt = request.prompt
    if quote_prompt:
        escaped = prompt.replace('"', '\\"')
        prompt = f'"{escaped}"'
    args.extend(["-p", prompt])
    return args


def build_cli_env(config: CLIConfig, base: dict[str, str] | None = None) -> dict[str, str]:
    """Subprocess environment: the host's, with the Node heap capped."""
    source = os.environ if base is None else base
    env = {
        k: v
        for k, v in source.items()
        if not (config.strip_api_keys and k in _STRIPPED_ENV_KEYS)
    }
    if config.node_heap_limit_mb:
        node_opts = env.get("NODE_OPTIONS", "")
        if "--max-old-space-size" not in node_opts:
            separator = " " if node_opts else ""
            heap_flag = f"--max-old-space-size={config.node_heap_limit_mb}"
            env["NODE_OPTIONS"] = f"{node_opts}{separator}{heap_flag}"
    return env


class SubprocessLauncher:
    """Starts the real CLI with asyncio's subprocess support."""

    def __init__(self, config: CLIConfig | None = None, *, platform: str = sys.platform) -> None:
        self._config = config or CLIConfig()
        self._platform = platform

    @property
    def binary(self) -> str:
        return self._config.binary

    async def spawn(self, request: LaunchRequest) -> ProcessLike:
        cwd = request.working_directory or os.getcwd()
        if not Path(cwd).is_dir():
            msg = f"Working directory not found: {cwd}"
            raise SpawnError(msg, code="ENOENT")

        use_shell = requires_shell(self._platform)
        args = build_cli_args(request, quote_prompt=use_shell)
        env = build_cli_env(self._config)
        logger.debug("spawning %s in %s (shell=%s)", self.binary, cwd, use_shell)

        try:
            if use_shell:
                command = " ".join([self.binary, *args])
                proc = await asyncio.create_subprocess_shell(
                    command,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=env,
                )
            else:
                proc = await asyncio.create_subprocess_exec(
                    self.binary,
                    *args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=cwd,
                    env=env,
                    start_new_session=True,
                )
        except FileNotFoundError as exc:
            msg = CLI_NOT_FOUND_MESSAGE.format(binary=self.binary)
            raise CLINotFoundError(msg, code="ENOENT", original_message=str(exc)) from exc
        except OSError as exc:
            code = errno.errorcode.get(exc.errno, "EUNKNOWN") if exc.errno else "EUNKNOWN"
            msg = f"Failed to start {self.binary}: {exc.strerror or exc}"
            raise SpawnError(msg, code=code, original_message=str(exc)) from exc

        logger.info("spawned %s pid=%d", self.binary, proc.pid)
        return proc
