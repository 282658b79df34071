"""Logging setup shared by the CLI and the web app."""

from __future__ import annotations

import logging
import time


class _UTCFormatter(logging.Formatter):
    converter = time.gmtime


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure root logging: one stderr handler, UTC time with milliseconds."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    handler = logging.StreamHandler()
    handler.setFormatter(
        _UTCFormatter(
            fmt="%(asctime)s.%(msecs)03dZ - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )

    # Replace existing handlers to avoid duplicates on reload
    root.handlers = [handler]
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
