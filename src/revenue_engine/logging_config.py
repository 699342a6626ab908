"""Logging setup shared by the API process and the CLI."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s level=%(levelname)s logger=%(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger.

    Safe to call more than once; later calls only adjust the level.
    """
    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(h, "_revenue_engine", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._revenue_engine = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    # httpx logs every request at INFO, which includes rail URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)
