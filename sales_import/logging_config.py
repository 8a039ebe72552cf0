"""Root logger configuration.

Modules log through ``logging.getLogger(__name__)``; this module decides how
those records are rendered. JSON output is produced by structlog's
``ProcessorFormatter`` so stdlib records and their ``extra`` fields end up as
one JSON object per line.
"""
from __future__ import annotations

import logging

import structlog

from .config import LoggingSettings, settings

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "text":
        return logging.Formatter(_TEXT_FORMAT)
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.ExtraAdder(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
        ],
    )


def setup_logging(log_settings: LoggingSettings | None = None) -> None:
    """Configure the root logger from settings.

    Safe to call more than once: handlers installed by a previous call are
    replaced rather than duplicated.
    """
    log_settings = log_settings or settings.logging
    formatter = _build_formatter(log_settings.format)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_settings.file:
        handlers.append(logging.FileHandler(log_settings.file, encoding="utf-8"))

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_sales_import", False):
            root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._sales_import = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(log_settings.level.upper())
