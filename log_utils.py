import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Optional

_REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
LOG_FILE = os.getenv(
    "SIGNAL_ENGINE_LOG_FILE", os.path.join(_REPO_ROOT, "logs", "signal_engine.log")
)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 1_000_000
LOG_BACKUPS = 5


def _file_handler(path: str) -> Optional[RotatingFileHandler]:
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        return RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS)
    except OSError:
        return None


def setup_logger(name: str) -> logging.Logger:
    """Return the logger for ``name`` with console and rotating file output.

    The scanner runs unattended, so every module logs to ``LOG_FILE`` as well
    as the console.  A logger is configured only once; later calls return it
    unchanged.  When the log directory is not writable the logger falls back
    to console output and says so.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    handler = _file_handler(LOG_FILE)
    if handler is None:
        logger.warning("File logging disabled: cannot write %s", LOG_FILE)
    else:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger

