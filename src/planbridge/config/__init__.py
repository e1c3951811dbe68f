"""Configuration models and parser for planbridge.yaml."""

from planbridge.config.models import (
    BridgeConfig,
    CLIConfig,
    PlanRoutingConfig,
    ServerConfig,
    StreamConfig,
)
from planbridge.config.parser import ConfigError, load_config

__all__ = [
    "BridgeConfig",
    "CLIConfig",
    "ConfigError",
    "PlanRoutingConfig",
    "ServerConfig",
    "StreamConfig",
    "load_config",
]
