"""Web interface for the video bridge service."""

from .server import create_app

__all__ = ["create_app"]
