"""Logging setup."""

import logging

from core.config import settings
from core.constants import LogLevel

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "sqlalchemy.dialects",
    "httpx",
    "httpcore",
    "stripe",
)


def configure_logging(level: LogLevel | None = None) -> None:
    """Configure the root logger once for the whole process."""
    if level is None:
        level = LogLevel.DEBUG if settings.debug else LogLevel.INFO

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level.value, format=LOG_FORMAT)
    else:
        root.setLevel(level.value)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
