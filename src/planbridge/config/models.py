"""Pydantic v2 models for planbridge.yaml configuration."""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from planbridge.constants import DEFAULT_CLI_BINARY

_BINARY_RE = re.compile(r"^[^\s\"';|&<>]+$")


class CLIConfig(BaseModel):
    """How the external CLI is launched."""

    model_config = ConfigDict(extra="forbid")

    binary: str = Field(
        default=DEFAULT_CLI_BINARY,
        description="CLI executable name or path",
    )
    permission_mode: Literal["plan"] = Field(
        default="plan",
        description="Permission mode passed to the CLI (fixed)",
    )
    node_heap_limit_mb: int = Field(
        default=2048,
        ge=0,
        description="V8 heap cap for Node.js CLIs via NODE_OPTIONS (0 disables)",
    )
    strip_api_keys: bool = Field(
        default=False,
        description="Remove provider API keys from the subprocess environment",
    )
    read_chunk_bytes: int = Field(
        default=65_536,
        gt=0,
        description="Maximum bytes read from a subprocess pipe at once",
    )
    max_line_bytes: int = Field(
        default=1_048_576,
        gt=0,
        description="Lines longer than this are dropped",
    )

    @field_validator("binary")
    @classmethod
    def _validate_binary(cls, value: str) -> str:
        if not _BINARY_RE.match(value):
            msg = f"Invalid CLI binary {value!r}: must not contain whitespace or shell syntax"
            raise ValueError(msg)
        return value


class ServerConfig(BaseModel):
    """HTTP listener settings."""

    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=3000, ge=1, le=65535, description="Bind port")


class StreamConfig(BaseModel):
    """Per-turn streaming behaviour."""

    model_config = ConfigDict(extra="forbid")

    idle_timeout: float = Field(
        default=600.0,
        ge=0,
        description="Seconds of stdout silence before the CLI is terminated (0 disables)",
    )
    emit_diagnostics: bool = Field(
        default=False,
        description="Forward decode failures and protocol anomalies as frames",
    )


class PlanRoutingConfig(BaseModel):
    """Thresholds for redirecting a turn's text to a plan document."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Run plan detection at all")
    min_length: int = Field(
        default=100,
        ge=0,
        description="Characters of chat text required before detection runs",
    )
    confidence_threshold: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Classifier confidence that commits the turn to a plan",
    )


class BridgeConfig(BaseModel):
    """Top-level planbridge.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    cli: CLIConfig = Field(default_factory=CLIConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    plan_routing: PlanRoutingConfig = Field(default_factory=PlanRoutingConfig)
