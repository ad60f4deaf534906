from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from core.settings import LOGGING, LoggingSettings


LOGGER_NAME = "taskmaster"


def ensure_logger(config: Optional[LoggingSettings] = None) -> logging.Logger:
    """Attach the rotating file handler to the ``taskmaster`` logger once."""

    cfg = config or LOGGING
    logger = logging.getLogger(LOGGER_NAME)
    if cfg.enabled and not logger.handlers:
        cfg.path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            cfg.path, maxBytes=cfg.max_bytes, backupCount=cfg.backup_count, encoding="utf-8"
        )
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    return logger


__all__ = ["LOGGER_NAME", "ensure_logger"]
