"""API package: provides FastAPI dependencies and route definitions for the application."""

from .dependencies import get_reactor, get_recomputer, get_store, get_sweeper  # noqa: F401
from .routes import router  # noqa: F401
