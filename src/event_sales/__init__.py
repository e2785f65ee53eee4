import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE_NAME = "event_sales.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _open_file_handler(log_dir: Path) -> RotatingFileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=1_000_000,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    return handler


def configure_log_file(log_dir: Path) -> Path:
    """Move the package log file into ``log_dir``.

    The rotating handler opened at import time is closed and replaced; the
    stderr handler is left alone.

    Args:
        log_dir (Path): Directory that receives ``event_sales.log``; created
            when missing.

    Returns:
        Path: Full path of the active log file.

    Raises:
        OSError: If the directory or the file cannot be created.
    """

    handler = _open_file_handler(Path(log_dir))
    for previous in [h for h in log.handlers if isinstance(h, RotatingFileHandler)]:
        log.removeHandler(previous)
        previous.close()
    log.addHandler(handler)
    log.info("Logging to '%s'", handler.baseFilename)
    return Path(handler.baseFilename)


def _configure_logging() -> logging.Logger:
    """Configure package-wide logging with file and console handlers."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    try:
        logger.addHandler(_open_file_handler(LOG_DIR))
    except OSError as exc:
        print(
            f"Warning: unable to initialize log file in '{LOG_DIR}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.info("Logger initialized for the 'event_sales' package.")
