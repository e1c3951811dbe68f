"""planbridge — Claude CLI stream-json to Server-Sent-Events bridge."""

__version__ = "0.1.0"
