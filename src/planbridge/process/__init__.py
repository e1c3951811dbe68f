"""Process — launching and tracking CLI subprocesses."""

from planbridge.process.launcher import (
    CLI_NOT_FOUND_MESSAGE,
    CLINotFoundError,
    LaunchRequest,
    Launcher,
    ProcessLike,
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

__all__ = [
    "CLI_NOT_FOUND_MESSAGE",
    "CLINotFoundError",
    "DuplicateTurnError",
    "LaunchRequest",
    "Launcher",
    "ProcessHandle",
    "ProcessLike",
    "ProcessRegistry",
    "SpawnError",
    "SubprocessLauncher",
    "build_cli_args",
    "build_cli_env",
    "new_correlation_id",
    "requires_shell",
]
