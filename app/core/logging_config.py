import logging
from typing import Optional

import structlog
from app.core.config import settings

# Third-party loggers that are too chatty at INFO.
QUIET_LOGGERS = {
    "passlib": logging.ERROR,
    "multipart": logging.WARNING,
    "celery.redirected": logging.WARNING,
}


def _resolve_level(level: Optional[str]) -> int:
    if not level:
        return logging.DEBUG if settings.DEBUG else logging.INFO
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: Optional[str] = None) -> None:
    """Route structlog through stdlib logging.

    Events render as key/value lines on a console in debug mode and as JSON
    everywhere else. Anything bound with ``structlog.contextvars`` (the
    request correlation id, for one) is merged into every event.
    """
    log_level = _resolve_level(level or settings.LOG_LEVEL)
    renderer = structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", level=log_level)
    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)
