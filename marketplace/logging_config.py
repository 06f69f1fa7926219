import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from marketplace.config import settings

APP_LOGGER = "marketplace"
FMT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATEFMT = "%Y-%m-%d %H:%M:%S"

# 第三方 client 每個 request 都會打 INFO
NOISY_LOGGERS = ("httpx", "httpcore", "passlib")


def _has_file_handler(logger: logging.Logger, path: Path) -> bool:
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == path:
            return True
    return False


def setup_logging() -> logging.Logger:
    """
    Attach console + rotating file handlers to the ``marketplace`` logger.

    Level, file name and rotation come from settings. Calling it again
    (reload, tests) only re-applies the level; a handler is added once per
    log file, so records are never written twice.
    """
    level = settings.LOG_LEVEL.upper()
    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = (log_dir / settings.LOG_FILE).resolve()

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if _has_file_handler(app_logger, log_path):
        return app_logger

    formatter = logging.Formatter(fmt=FMT, datefmt=DATEFMT)

    if not any(type(h) is logging.StreamHandler for h in app_logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        app_logger.addHandler(console)

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=settings.LOG_MAX_BYTES,
        backupCount=settings.LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    app_logger.addHandler(file_handler)

    return app_logger
