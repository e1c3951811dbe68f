"""CLI availability check backing ``GET /api/health`` and ``planbridge check``."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)

#: Seconds allowed for ``<binary> --version``.
CHECK_TIMEOUT = 5.0

#: Seconds a check result is reused.
CACHE_TTL = 60.0


@dataclass(frozen=True)
class CLICheckResult:
    available: bool
    version: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"available": self.available}
        if self.version is not None:
            data["version"] = self.version
        if self.error is not None:
            data["error"] = self.error
        return data


class CLIChecker:
    """Runs ``<binary> --version`` and caches the answer."""

    def __init__(
        self,
        binary: str = "claude",
        *,
        timeout: float = CHECK_TIMEOUT,
        ttl: float = CACHE_TTL,
    ) -> None:
        self.binary = binary
        self._timeout = timeout
        self._ttl = ttl
        self._cached: CLICheckResult | None = None
        self._checked_at = 0.0

    async def check(self, force: bool = False) -> CLICheckResult:
        now = time.monotonic()
        if not force and self._cached is not None and now - self._checked_at < self._ttl:
            return self._cached
        result = await self._run()
        self._cached = result
        self._checked_at = now
        return result

    async def _run(self) -> CLICheckResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                "--version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return CLICheckResult(False, error="Claude CLI not found in PATH. Please install it first.")
        except OSError as exc:
            return CLICheckResult(False, error=str(exc) or "Unknown error checking CLI")

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            logger.warning("%s --version timed out after %.0fs", self.binary, self._timeout)
            return CLICheckResult(False, error="Claude CLI check timed out")

        if proc.returncode != 0:
            return CLICheckResult(False, error=f"Claude CLI exited with code {proc.returncode}")
        return CLICheckResult(True, version=stdout.decode(errors="replace").strip())
