"""
Logging Configuration
=====================

structlog on top of stdlib logging. Development gets the console renderer,
production gets JSON lines through python-json-logger.

Every handler writes to stderr or a rotating file. stdout belongs to the MCP
stdio transport and must stay clean.
"""

import logging
import logging.config
import sys
from typing import Any, Dict, List, Optional

import structlog
from structlog.types import Processor

from .settings import Settings, get_settings

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Chatty libraries held above the application level
QUIET_LOGGERS: Dict[str, str] = {
    "playwright": "WARNING",
    "asyncio": "WARNING",
    "markdown_it": "WARNING",
    "mcp": "INFO",
}


def _processors(settings: Settings) -> List[Processor]:
    processors: List[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if settings.environment == "production":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    return processors


def _formatters() -> Dict[str, Any]:
    return {
        "plain": {
            "format": "%(asctime)s %(levelname)-8s %(name)s %(message)s",
            "datefmt": TIMESTAMP_FORMAT,
        },
        "file": {
            "format": "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d %(message)s",
            "datefmt": TIMESTAMP_FORMAT,
        },
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "format": "%(asctime)s %(name)s %(levelname)s %(message)s",
        },
    }


def build_logging_config(settings: Settings) -> Dict[str, Any]:
    """dictConfig for the stdlib side: stderr always, a rotating file when configured."""
    handlers: Dict[str, Any] = {
        "stderr": {
            "class": "logging.StreamHandler",
            "level": settings.log_level,
            "formatter": "json" if settings.environment == "production" else "plain",
            "stream": sys.stderr,
        },
    }

    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": settings.log_level,
            "formatter": "file",
            "filename": str(settings.log_file),
            "maxBytes": LOG_FILE_MAX_BYTES,
            "backupCount": LOG_FILE_BACKUPS,
        }

    loggers: Dict[str, Any] = {
        "": {"level": settings.log_level, "handlers": list(handlers), "propagate": False},
    }
    for name, level in QUIET_LOGGERS.items():
        loggers[name] = {"level": level, "handlers": ["stderr"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": _formatters(),
        "handlers": handlers,
        "loggers": loggers,
    }


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure structlog and stdlib logging from settings."""
    settings = settings or get_settings()

    structlog.configure(
        processors=_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.config.dictConfig(build_logging_config(settings))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


configure_logging()
