import logging
import os
from datetime import datetime
from pathlib import Path

_LOGGERS = {}


def _log_dir() -> Path:
    path = Path(os.getenv("MATCHCHAT_LOG_DIR", "logs"))
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_logger(
    name: str,
    *,
    runtime: str = "matchchat",
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. stream.connection, rooms.client)
    - runtime: log file prefix (matchchat | console)

    Loggers are cached per runtime/name pair so repeated imports never
    attach duplicate handlers.
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(logging.DEBUG)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    # ------------------------------
    # Console handler
    # ------------------------------
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    level_name = os.getenv("MATCHCHAT_LOG_LEVEL", "INFO").strip().upper()
    console.setLevel(getattr(logging, level_name, logging.INFO))
    logger.addHandler(console)

    # ------------------------------
    # File handler (one per run)
    # ------------------------------
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    logfile = _log_dir() / f"{runtime}-{timestamp}.log"

    file_handler = logging.FileHandler(logfile, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
