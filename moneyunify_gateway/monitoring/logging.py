"""
Structured logging configuration.

Uses structlog on top of the standard library. Events are rendered to JSON
lines by python-json-logger, or to a readable console format in development.
"""
import logging
import sys
from typing import Any, Optional

import structlog
from pythonjsonlogger.json import JsonFormatter

from moneyunify_gateway.config import Settings, get_settings


def _app_context(settings: Settings) -> Any:
    def add_app_context(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        """Add application context to log events."""
        event_dict["app_name"] = settings.app_name
        event_dict["app_env"] = settings.app_env
        return event_dict

    return add_app_context


def setup_logging(settings: Optional[Settings] = None) -> None:
    """
    Configure structured logging.

    Sets up:
    - Context variables (request id, order id) merged into every event
    - ISO timestamps and log level
    - JSON output through python-json-logger when ``log_json`` is on
    """
    settings = settings or get_settings()

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _app_context(settings),
    ]
    if settings.log_json:
        processors.append(structlog.stdlib.render_to_log_kwargs)
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_json:
        handler.setFormatter(
            JsonFormatter(
                "%(message)s %(levelname)s %(name)s",
                rename_fields={"levelname": "severity", "name": "logger_name"},
            )
        )
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    logger = structlog.get_logger(__name__)
    logger.info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
        json=settings.log_json,
    )


def get_logger(name: str) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name

    Returns:
        Any: Structured logger
    """
    return structlog.get_logger(name)
