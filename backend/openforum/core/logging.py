"""
Logging setup.

Configures loguru once at startup and routes stdlib logging
(uvicorn, sqlalchemy, httpx) through it.
"""

import inspect
import logging
import sys

from loguru import logger

from openforum.core.config import settings


class InterceptHandler(logging.Handler):
    """Forward stdlib log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside of the logging module
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: str | None = None) -> None:
    """
    Configure global log output.

    Args:
        level: Log level name. Defaults to settings.log_level.
    """
    resolved_level = (level or settings.log_level).upper()

    logger.remove()
    logger.add(
        sys.stderr,
        level=resolved_level,
        format=(
            "<green>{time:MM-DD HH:mm:ss}</green> "
            "[<level>{level}</level>] "
            "<cyan>{name}</cyan>:{line} | {message}"
        ),
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = [InterceptHandler()]
        logging.getLogger(name).propagate = False

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )
