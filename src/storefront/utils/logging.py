"""Logging configuration for the storefront service.

structlog renders JSON in production and a readable console format elsewhere.
Standard-library records (uvicorn, protean, stripe) share the root handlers.

Every event carries ``service`` and ``env``. Payment secrets that end up in
event keys (client secrets, webhook signatures, API keys) are masked before
rendering. Order and stock work binds ``order_id`` for its duration with
``log_context`` so the follow-up notifications and alerts can be traced back
to the order that caused them.
"""

import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

SERVICE_NAME = "storefront"

LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

SECRET_KEYS = frozenset({"client_secret", "stripe_signature", "signature", "api_key", "webhook_secret", "token"})
MASK = "***"

# Chatty below WARNING
QUIET_LOGGERS = ("protean", "urllib3", "stripe", "sqlalchemy.engine")


def environment() -> str:
    return (os.getenv("PROTEAN_ENV") or os.getenv("ENV") or "development").lower()


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", LEVELS.get(environment(), "INFO"))


def add_service_info(logger, method_name, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("env", environment())
    return event_dict


def redact_secrets(logger, method_name, event_dict):
    """Mask payment credentials wherever they were bound or passed."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = MASK
    return event_dict


def _rotating_file(path: Path, level) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        filename=path,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_stdlib_logging(log_dir: str | None = None) -> None:
    """Route standard-library logging to stdout and, when ``log_dir`` is set, to rotating files.

    ``log_dir`` defaults to ``STOREFRONT_LOG_DIR``; containers usually leave
    it unset and log to stdout only.
    """
    log_level = get_log_level()
    log_dir = log_dir or os.getenv("STOREFRONT_LOG_DIR")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating_file(log_path / f"{SERVICE_NAME}.log", log_level))
        handlers.append(_rotating_file(log_path / f"{SERVICE_NAME}_error.log", logging.ERROR))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = handlers

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def setup_structlog() -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_service_info,
        redact_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if environment() in ("production", "staging"):
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(log_dir: str | None = None) -> None:
    setup_stdlib_logging(log_dir)
    setup_structlog()


def add_context(**kwargs: Any) -> None:
    """Bind request-wide values (method, path, request id) until ``clear_context``."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**kwargs: Any):
    """Bind values for the duration of a block, restoring the previous ones afterwards."""
    values = {key: str(value) for key, value in kwargs.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**values):
        yield
