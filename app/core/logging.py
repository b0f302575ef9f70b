import logging
import sys
from loguru import logger

from app.core.config import settings


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "urllib3")


class InterceptHandler(logging.Handler):
    """Forwards stdlib records (uvicorn, sqlalchemy, requests) into loguru."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk past the logging module so loguru reports the real caller.
        frame, depth = logging.currentframe(), 2
        while frame.f_back and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging():
    level = "DEBUG" if settings.debug else "INFO"

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.remove()
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    # Blank LOG_FILE keeps logs on stderr only (tests, containers).
    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="500 MB",
            retention="30 days",
            compression="zip",
            level=level,
            backtrace=True,
            diagnose=settings.debug,
        )
