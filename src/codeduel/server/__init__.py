# Copyright (c) Syntropy Systems
"""codeduel HTTP server."""

from .app import create_app

__all__ = ["create_app"]
