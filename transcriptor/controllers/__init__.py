"""FastAPI routers acting as controllers in the MVC architecture."""

from . import health, sessions

__all__ = ["health", "sessions"]
