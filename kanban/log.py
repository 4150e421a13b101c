import logging
import sys

ROOT_LOGGER = "kanban"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Attach a single stream handler to the ``kanban`` logger tree."""
    from .config import settings

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel((level or settings.LOG_LEVEL).upper())
    if not any(getattr(h, "_kanban", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._kanban = True  # type: ignore[attr-defined]
        logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
