"""Process registry — live CLI subprocesses keyed by correlation id."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
import uuid
from dataclasses import dataclass, field

from planbridge.process.launcher import ProcessLike

logger = logging.getLogger(__name__)

#: Seconds to wait after SIGTERM before SIGKILL during shutdown.
_SIGTERM_WAIT = 3.0


class DuplicateTurnError(Exception):
    """A live turn is already registered under this correlation id."""

    def __init__(self, correlation_id: str) -> None:
        super().__init__(f"A turn is already running for '{correlation_id}'")
        self.correlation_id = correlation_id


def new_correlation_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ProcessHandle:
    correlation_id: str
    process: ProcessLike
    started_at: float = field(default_factory=time.monotonic)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return self.process.returncode is None


class ProcessRegistry:
    """Explicit owner of every in-flight turn's process.

    One registry per hosting service; turns register on spawn and are
    evicted when their process closes, fails or is cancelled.
    """

    def __init__(self) -> None:
        self._handles: dict[str, ProcessHandle] = {}

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def get(self, correlation_id: str) -> ProcessHandle | None:
        return self._handles.get(correlation_id)

    def ids(self) -> list[str]:
        return list(self._handles)

    def check_available(self, correlation_id: str) -> None:
        """Raise ``DuplicateTurnError`` if *correlation_id* has a live process."""
        existing = self._handles.get(correlation_id)
        if existing is not None and existing.alive:
            raise DuplicateTurnError(correlation_id)

    def register(self, handle: ProcessHandle) -> None:
        self.check_available(handle.correlation_id)
        self._handles[handle.correlation_id] = handle
        logger.debug("registered %s pid=%d", handle.correlation_id, handle.pid)

    def evict(self, correlation_id: str, process: ProcessLike | None = None) -> ProcessHandle | None:
        """Drop the entry; with *process* given, only if it is still the registered one."""
        handle = self._handles.get(correlation_id)
        if handle is None:
            return None
        if process is not None and handle.process is not process:
            return None
        del self._handles[correlation_id]
        logger.debug("evicted %s", correlation_id)
        return handle

    def cancel(self, correlation_id: str, process: ProcessLike | None = None) -> bool:
        """SIGTERM the turn's process and evict it. Returns False if unknown.

        With *process* given, another turn's process under the same id is
        left alone.
        """
        handle = self.evict(correlation_id, process)
        if handle is None:
            return False
        if handle.alive:
            with contextlib.suppress(ProcessLookupError):
                handle.process.terminate()
        logger.info("cancelled %s pid=%d", correlation_id, handle.pid)
        return True

    async def shutdown(self, grace: float = _SIGTERM_WAIT) -> None:
        """Terminate every live process: SIGTERM -> wait -> SIGKILL."""
        handles = list(self._handles.values())
        self._handles.clear()
        live = [h for h in handles if h.alive]
        if not live:
            return

        logger.info("shutting down %d CLI process(es)", len(live))
        for handle in live:
            with contextlib.suppress(ProcessLookupError):
                handle.process.terminate()

        waits = [asyncio.ensure_future(h.process.wait()) for h in live]
        _, pending = await asyncio.wait(waits, timeout=grace)
        if not pending:
            return

        for handle, waiter in zip(live, waits, strict=True):
            if waiter in pending:
                logger.warning("pid %d ignored SIGTERM, killing", handle.pid)
                with contextlib.suppress(ProcessLookupError):
                    handle.process.kill()
        await asyncio.gather(*pending, return_exceptions=True)
