"""Logging setup for the Ballot Guide API."""

import logging

from ballot_guide_api.config import Settings

DEFAULT_LOGGER_NAME = "ballot_guide_api"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: Settings) -> logging.Logger:
    """Install a single stream handler on the service logger.

    Calling this more than once only updates the level.
    """
    logger = logging.getLogger(DEFAULT_LOGGER_NAME)
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(logging.DEBUG if settings.debug else level)

    if not any(getattr(h, "_ballot_guide", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._ballot_guide = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger
