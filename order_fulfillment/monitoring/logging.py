"""
Structured logging configuration.

Events are structlog key/value records rendered as one JSON object per line on
stdout. Request-scoped fields bound by the API middleware (``request_id``,
``method``, ``path``) are merged into every event logged while handling that
request. With ``debug`` enabled the same events are rendered for a terminal.
"""
import logging
import sys
from typing import Any, List

import structlog
from pythonjsonlogger import jsonlogger

from order_fulfillment.config import Settings, get_settings

# Third-party loggers and the level they are capped at outside debug mode
QUIET_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "stripe": logging.WARNING,
    "uvicorn.access": logging.WARNING,
}


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Stamp every event with the service name and environment."""
    settings = get_settings()
    event_dict.setdefault("app_name", settings.app_name)
    event_dict.setdefault("app_env", settings.app_env)
    return event_dict


def build_processors(settings: Settings) -> List[Any]:
    """
    Processor chain shared by every logger.

    Args:
        settings: Settings selecting JSON or console rendering

    Returns:
        List[Any]: structlog processors, renderer last
    """
    renderer: Any = (
        structlog.dev.ConsoleRenderer()
        if settings.debug
        else structlog.processors.JSONRenderer()
    )
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_app_context,
        renderer,
    ]


def setup_logging(settings: Settings | None = None) -> None:
    """
    Route structlog through the standard library into a JSON stdout handler.

    Safe to call more than once; the root handlers are replaced each time.

    Args:
        settings: Optional settings (defaults to the cached application settings)
    """
    settings = settings or get_settings()

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "@timestamp",
                "levelname": "level",
                "name": "logger",
            },
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(getattr(logging, settings.log_level))

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(logging.DEBUG if settings.debug else level)
    if settings.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
        renderer="console" if settings.debug else "json",
    )
