from __future__ import annotations
import logging, logging.handlers, sys
from pathlib import Path

import structlog

from .paths import log_file

NOISY_LOGGERS = ("selenium", "urllib3")


def setup_logging(level: str = "INFO", logfile: Path | None = None):
    level = level.upper()
    numeric = getattr(logging, level)
    logfile = logfile or log_file()

    root = logging.getLogger()
    root.setLevel(numeric)
    root.handlers.clear()

    rot = logging.handlers.RotatingFileHandler(
        logfile, maxBytes=10_000_000, backupCount=5, encoding="utf-8"
    )
    # rich owns stdout; only warnings and up go to stderr
    stream = logging.StreamHandler(sys.stderr)
    stream.setLevel(logging.WARNING)
    fmt = logging.Formatter("%(message)s")
    rot.setFormatter(fmt)
    stream.setFormatter(fmt)
    root.addHandler(rot)
    root.addHandler(stream)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.INFO, numeric))

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
    )
    return structlog.get_logger()
