"""Process-wide logging setup shared by the API and the batch scripts."""

import logging

from backend.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s — %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger once from ``settings.LOG_LEVEL``."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
    # SQL echo is driven by the engine, keep the driver loggers quiet
    logging.getLogger("httpx").setLevel(logging.WARNING)
