# ============================================================================
# shared/logging.py - Logging configuration
# ============================================================================

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from config import LOG_LEVEL, LOG_DIR

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

APP_LOGGERS = ["extensions", "trunks", "dialplan", "sync", "reconcile"]


def setup_logging(log_dir: str = LOG_DIR, level: str = LOG_LEVEL) -> None:
    """Configure application logging"""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            RotatingFileHandler(log_path / "pbx-reconcile.log",
                                maxBytes=10 * 1024 * 1024, backupCount=5)
        ]
    )

    # Set up app-specific loggers
    for app_name in APP_LOGGERS:
        app_logger = logging.getLogger(f"apps.{app_name}")
        app_handler = RotatingFileHandler(log_path / f"{app_name}.log",
                                          maxBytes=5 * 1024 * 1024, backupCount=3)
        app_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        app_logger.addHandler(app_handler)
