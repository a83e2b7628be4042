# app/core/logger.py
import logging
import sys
from pathlib import Path

from app.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_ROOT = "telemed"


def setup_logging() -> logging.Logger:
    """Configure the application logger (console, plus LOG_FILE when set)."""
    root = logging.getLogger(_ROOT)

    # Only configure once to avoid duplicate handlers on reload
    if not root.handlers:
        root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
        formatter = logging.Formatter(LOG_FORMAT)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

        if settings.LOG_FILE:
            try:
                file_handler = logging.FileHandler(Path(settings.LOG_FILE), encoding="utf-8")
                file_handler.setFormatter(formatter)
                root.addHandler(file_handler)
            except OSError as e:
                root.warning("Failed to set up file handler for logging: %s", e)

    return root


def get_logger(name: str) -> logging.Logger:
    """Child logger under the application root, e.g. get_logger("admission")."""
    return logging.getLogger(f"{_ROOT}.{name}")
