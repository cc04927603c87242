"""Logging setup."""
import logging
import sys

from favsync.config import config


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger for console output."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(handler)

    # httpx logs every request at INFO
    for noisy in ("httpx", "httpcore", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
