"""FastAPI application exposing script validation and play sessions."""

from .app import PlaySessionService, create_app

__all__ = ["create_app", "PlaySessionService"]
