"""Shared constants and type aliases for the planbridge runtime."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

#: Default CLI binary looked up on PATH.
DEFAULT_CLI_BINARY = "claude"

#: The only permission mode the bridge launches the CLI with.
PERMISSION_MODE = "plan"

#: Callback that receives one outbound frame payload.
FrameCallback = Callable[[dict[str, Any]], None]
