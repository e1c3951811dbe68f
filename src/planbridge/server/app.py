"""FastAPI application exposing turns as Server-Sent-Event streams."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from planbridge import __version__
from planbridge.config.models import BridgeConfig
from planbridge.health import CLIChecker
from planbridge.process.launcher import Launcher, LaunchRequest, SubprocessLauncher
from planbridge.process.registry import DuplicateTurnError, ProcessRegistry
from planbridge.transport.sse import SSE_HEADERS, SSE_MEDIA_TYPE, SSEEncoder
from planbridge.turn import Turn

logger = logging.getLogger(__name__)


def create_app(
    config: BridgeConfig | None = None,
    *,
    launcher: Launcher | None = None,
    registry: ProcessRegistry | None = None,
    checker: CLIChecker | None = None,
) -> FastAPI:
    """Build the HTTP service.

    Args:
        config: Bridge configuration; defaults apply when omitted.
        launcher: Spawns CLI processes. Tests pass a fake.
        registry: Tracks live processes; shut down with the app.
        checker: Answers the health endpoint.

    Returns:
        Configured FastAPI application.
    """
    config = config or BridgeConfig()
    registry = registry or ProcessRegistry()
    launcher = launcher or SubprocessLauncher(config.cli)
    checker = checker or CLIChecker(config.cli.binary)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await registry.shutdown()

    app = FastAPI(title="planbridge", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.registry = registry
    app.state.launcher = launcher
    app.state.checker = checker

    @app.post("/api/claude/stream")
    async def stream_turn(request: Request) -> Response:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("rejecting request with invalid JSON body")
            return _json_error("Invalid JSON in request body", 400)

        if not isinstance(body, dict):
            body = {}
        message = body.get("message")
        if not isinstance(message, str) or not message:
            return _json_error("Message is required", 400)

        launch = LaunchRequest(
            prompt=message,
            resume_token=_optional_str(body.get("sessionId")),
            working_directory=_optional_str(body.get("projectPath")) or os.getcwd(),
            permission_mode=config.cli.permission_mode,
        )
        encoder = SSEEncoder()
        turn = Turn(launch, launcher=launcher, registry=registry, emit=encoder.send, config=config)
        try:
            registry.check_available(turn.correlation_id)
        except DuplicateTurnError as exc:
            return _json_error(str(exc), 409)

        logger.info("starting turn %s in %s", turn.correlation_id, launch.working_directory)
        return StreamingResponse(
            _stream(turn, encoder),
            media_type=SSE_MEDIA_TYPE,
            headers=SSE_HEADERS,
        )

    @app.get("/api/health")
    async def health() -> JSONResponse:
        result = await checker.check()
        body = {
            "status": "healthy" if result.available else "unhealthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "checks": {"claudeCli": result.to_dict()},
        }
        return JSONResponse(body, status_code=200 if result.available else 503)

    return app


async def _stream(turn: Turn, encoder: SSEEncoder) -> AsyncIterator[str]:
    """Drive *turn* in the background and relay its frames."""
    task = asyncio.create_task(_run_turn(turn, encoder))
    try:
        async for frame in encoder.frames():
            yield frame
    finally:
        if not task.done() and not turn.completed:
            # Client went away mid-turn.
            turn.cancel()
            encoder.close()
            task.cancel()


async def _run_turn(turn: Turn, encoder: SSEEncoder) -> None:
    try:
        await turn.run()
    except DuplicateTurnError as exc:
        encoder.send({"type": "error", "message": str(exc)})
    except Exception as exc:
        logger.exception("turn %s failed", turn.correlation_id)
        encoder.send({"type": "error", "message": f"Internal error: {exc}"})
    finally:
        encoder.close()


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _json_error(message: str, status: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status)
