"""HTTP relay for call signals and session metadata."""

from .api import app, create_app

__all__ = ["app", "create_app"]
