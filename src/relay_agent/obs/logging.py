"""Process logging setup."""

from __future__ import annotations

import logging
import os

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Configure root logging once; `RELAY_LOG_LEVEL` overrides the default."""

    resolved = level if level is not None else os.getenv("RELAY_LOG_LEVEL", "INFO")
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    logging.basicConfig(level=resolved, format=_FORMAT)
    logging.getLogger("relay_agent").setLevel(resolved)
