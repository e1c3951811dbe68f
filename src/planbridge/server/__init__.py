"""HTTP service for planbridge."""

from planbridge.server.app import create_app

__all__ = ["create_app"]
