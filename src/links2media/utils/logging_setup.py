"""Dual-format logging system (JSON + plain text) using structlog."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog

from ..config import settings

QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "charset_normalizer")

_SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]


def _handler(handler: logging.Handler, renderer) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=_SHARED_PROCESSORS)
    )
    return handler


def _file_handler(path: Path, renderer) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    return _handler(logging.FileHandler(path, encoding="utf-8"), renderer)


def setup_logging(level: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    Route structlog through the stdlib root logger.

    The console gets a colored dev rendering on stderr, so JSON printed by
    the CLI stays clean on stdout. Depending on settings.log_format a
    JSON-lines file and/or a plain text file are written per run under
    settings.log_dir.

    Args:
        level: Overrides settings.log_level

    Returns:
        A bound logger for the caller
    """
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=_SHARED_PROCESSORS + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    level_name = (level or settings.log_level).upper()
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.handlers.clear()

    console = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    root_logger.addHandler(_handler(logging.StreamHandler(sys.stderr), console))

    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    if settings.log_format in ("json", "both"):
        json_path = settings.log_dir / "json" / f"links2media_{run_id}.json"
        root_logger.addHandler(_file_handler(json_path, structlog.processors.JSONRenderer()))
    if settings.log_format in ("text", "both"):
        text_path = settings.log_dir / "text" / f"links2media_{run_id}.log"
        root_logger.addHandler(_file_handler(text_path, structlog.dev.ConsoleRenderer(colors=False)))

    return structlog.get_logger()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module."""
    return structlog.get_logger(name)
