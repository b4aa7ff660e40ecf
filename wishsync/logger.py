# wishsync/logger.py
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Chatty transport loggers are capped at this level
QUIET_LOGGERS = ("urllib3", "requests")

_configured = False


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


def _level(name: str | None) -> int:
    return getattr(logging, (name or "INFO").upper(), logging.INFO)


def _file_handler(path: str, level: int, formatter: logging.Formatter) -> logging.Handler:
    log_dir = os.path.dirname(path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    fh = RotatingFileHandler(
        path,
        maxBytes=int(os.getenv("LOG_MAX_BYTES", str(2 * 1024 * 1024))),
        backupCount=int(os.getenv("LOG_BACKUPS", "3")),
    )
    fh.setLevel(level)
    fh.setFormatter(formatter)
    return fh


def setup_logging(level: str | None = None):
    """
    Configure the root logger from LOG_* environment variables. Safe to call
    repeatedly; later calls only adjust the level when one is given.
    """
    global _configured
    root = logging.getLogger()

    if _configured:
        if level:
            root.setLevel(_level(level))
        return

    log_level = _level(level or os.getenv("LOG_LEVEL", "INFO"))
    root.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT)

    # Host applications (and pytest) may already own the root handlers
    if not root.handlers:
        if _env_flag("LOG_TO_STDOUT", "true"):
            ch = logging.StreamHandler(sys.stdout)
            ch.setLevel(log_level)
            ch.setFormatter(formatter)
            root.addHandler(ch)

        if _env_flag("LOG_TO_FILE", "false"):
            log_file = os.getenv("LOG_FILE", "data/wishsync.log")
            try:
                root.addHandler(_file_handler(log_file, log_level, formatter))
            except OSError as e:
                root.warning("Failed to initialize file logging at %s: %s", log_file, e)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    _configured = True


def get_logger(name: str | None = None) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)
