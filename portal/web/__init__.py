"""Web front-end for the solution portal."""

from .server import create_app

__all__ = ["create_app"]
