"""Logging setup: stdlib handlers underneath, structlog events on top.

Production and staging render one JSON object per line; every other
environment gets the coloured console renderer. Rotating log files are
written outside the test environment when ``ORDERSTREAM_LOG_DIR`` is set
(``logs`` by default).
"""

import logging
import logging.handlers
import sys
from pathlib import Path

import structlog

from shared.config import Settings, get_settings

JSON_ENVIRONMENTS = frozenset({"production", "staging"})
DEFAULT_LEVELS = {"production": "INFO", "staging": "INFO", "development": "DEBUG", "test": "WARNING"}
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "httpcore", "asyncio", "uvicorn.access")
ROTATE_BYTES = 10 * 1024 * 1024


def log_level_for(settings: Settings) -> str:
    return (settings.log_level or DEFAULT_LEVELS.get(settings.env, "INFO")).upper()


def _rotating_file(path: Path, level: str | int) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=ROTATE_BYTES, backupCount=5, encoding="utf-8")
    handler.setLevel(level)
    return handler


def _handlers(settings: Settings, level: str) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if settings.log_dir and settings.env != "test":
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating_file(log_dir / "orderstream.log", level))
        handlers.append(_rotating_file(log_dir / "orderstream_error.log", logging.ERROR))
    return handlers


def _processors(settings: Settings) -> list:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if settings.env in JSON_ENVIRONMENTS:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging(settings: Settings | None = None) -> None:
    """Route stdlib logging to stdout (and files) and configure structlog on top of it."""
    settings = settings or get_settings()
    level = log_level_for(settings)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = _handlers(settings, level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
