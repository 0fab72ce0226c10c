"""Logging setup driven by ``LoggingSettings``.

Modules log through the standard ``logging`` API. In ``json`` format the
records are rendered by structlog as one JSON object per line; ``text`` is a
plain readable format. Both go to stdout, with an optional file handler.
"""
from __future__ import annotations

import logging
import sys

import structlog

from .config import settings

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore", "google_genai", "sqlalchemy.engine")


def _json_formatter() -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
    )


def _build_formatter(fmt: str) -> logging.Formatter:
    if fmt.lower() == "json":
        return _json_formatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(level: str | None = None, fmt: str | None = None, log_file: str | None = None) -> None:
    """Configure the root logger. Safe to call more than once."""
    level = (level or settings.logging.level).upper()
    formatter = _build_formatter(fmt or settings.logging.format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file = log_file or settings.logging.file
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)

    # Reduce noise from external libraries
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
