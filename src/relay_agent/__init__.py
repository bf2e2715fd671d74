"""Relay Agent package."""

from .config import RouterConfig, RunConfig, Settings

__all__ = ["RouterConfig", "RunConfig", "Settings"]
