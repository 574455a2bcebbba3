import logging
import os
import sys

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'

# Libraries that log every request at INFO.
_NOISY_LOGGERS = ("urllib3", "werkzeug")


def _level_from_env(default: int) -> int:
    name = (os.getenv("LOG_LEVEL") or "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def setup_logging(level: int = logging.INFO):
    """
    Configures root logging for the sync service and scripts.
    LOG_LEVEL (e.g. DEBUG) in the environment overrides `level`.
    """
    level = _level_from_env(level)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logging.getLogger(__name__).info(f"Logging configured at {logging.getLevelName(level)}.")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
