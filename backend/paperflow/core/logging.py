"""
Logging setup shared by the worker process and local tooling.

Every module logs through ``logging.getLogger(__name__)`` with pipe-separated
``Component | key=value`` messages; this module only installs the root handler.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Install the root handler once. Safe to call from every entry point."""
    from paperflow.core.config import settings

    if level is None:
        level = logging.DEBUG if settings.debug else settings.log_level.upper()

    logging.basicConfig(level=level, format=LOG_FORMAT)

    # httpx logs every request at INFO; keep it at WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)
