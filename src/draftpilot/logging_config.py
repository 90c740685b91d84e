from __future__ import annotations

import logging

from draftpilot.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# requests/urllib3 are chatty at DEBUG while scans and analyses poll
QUIET_LOGGERS = ("urllib3", "httpx")

_LOG_CONFIGURED = False


def resolve_level(name: str | None) -> int:
    """Map a level name like ``"debug"`` to its ``logging`` constant, defaulting to INFO."""
    if not name:
        return logging.INFO
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: str | None = None) -> int:
    global _LOG_CONFIGURED
    resolved = resolve_level(level or get_settings().log_level)

    if not _LOG_CONFIGURED:
        logging.basicConfig(level=resolved, format=LOG_FORMAT)
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
        _LOG_CONFIGURED = True

    # A later explicit level (``serve --log-level``) still applies to our own loggers.
    logging.getLogger("draftpilot").setLevel(resolved)
    return resolved
