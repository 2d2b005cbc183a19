"""Logging setup for the ``wishsync`` logger tree.

Modules log through ``get_logger("<area>")`` so every record is named
``wishsync.<area>`` and follows the level configured here.
"""
import logging
from pathlib import Path

from wishsync.core.config import settings

ROOT_LOGGER = "wishsync"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_OWNED = "_wishsync_owned"


def get_logger(area: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{area}")


def _level(name: str | None) -> int:
    level = logging.getLevelName((name or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def _own(handler: logging.Handler) -> logging.Handler:
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    setattr(handler, _OWNED, True)
    return handler


def configure_logging() -> logging.Logger:
    """Attach a console handler, and a file handler when ``LOG_FILE`` is set.

    Calling it again swaps out the handlers from the previous call, so app
    reloads and test runs do not duplicate output.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in [h for h in logger.handlers if getattr(h, _OWNED, False)]:
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(_own(logging.StreamHandler()))
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.addHandler(_own(logging.FileHandler(log_path, encoding="utf-8")))

    logger.setLevel(_level(settings.log_level))
    return logger
