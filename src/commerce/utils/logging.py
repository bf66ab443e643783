"""Logging configuration for the commerce domain.

Every module logs through ``structlog.get_logger(__name__)``. Records flow
into standard library handlers: stdout, a rotating ``commerce.log`` and a
rotating ``commerce_error.log`` that collects only payment, refund and
automation failures worth paging on.

Deployed environments (production, staging) render one JSON object per
line; anything else gets coloured console output with Rich tracebacks.

Gateway payloads are logged as-is by several handlers, so a processor masks
credentials and card data anywhere in an event before it is rendered.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

LOG_FILE_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

_DEFAULT_LEVEL = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

_JSON_ENVIRONMENTS = frozenset({"production", "staging"})

# Third-party loggers that flood DEBUG with transport chatter
_CAPPED_LOGGERS = ("protean", "urllib3", "asyncio", "httpx")

_SENSITIVE_KEYS = frozenset(
    {
        "card_number",
        "card_no",
        "cvv",
        "signature",
        "store_passwd",
        "store_password",
        "api_key",
        "secret_key",
    }
)
_MASK = "***"


def environment() -> str:
    return (os.getenv("ENVIRONMENT") or os.getenv("PROTEAN_ENV") or "development").lower()


def log_level() -> str:
    """LOG_LEVEL wins; otherwise the level follows the environment."""
    return os.getenv("LOG_LEVEL") or _DEFAULT_LEVEL.get(environment(), "INFO")


def _mask(value):
    if isinstance(value, dict):
        return {key: _MASK if key.lower() in _SENSITIVE_KEYS else _mask(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_mask(item) for item in value]
    return value


def mask_payment_secrets(logger, method_name, event_dict):  # noqa: ARG001
    """structlog processor: hide card data and gateway credentials."""
    return _mask(event_dict)


def _rotating(path: Path, level) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=LOG_FILE_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def _install_handlers(level: str) -> None:
    log_dir = Path(os.getenv("COMMERCE_LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [
        console,
        _rotating(log_dir / "commerce.log", level),
        _rotating(log_dir / "commerce_error.log", logging.ERROR),
    ]

    for name in _CAPPED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _renderer():
    if environment() in _JSON_ENVIRONMENTS:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=True,
        exception_formatter=structlog.dev.RichTracebackFormatter(show_locals=False, max_frames=3),
    )


def configure_logging() -> None:
    """Wire stdlib handlers and the structlog processor chain. Safe to call again."""
    _install_handlers(log_level())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            mask_payment_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    structlog.processors.CallsiteParameter.FILENAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ]
            ),
            _renderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def log_context(**values):
    """Bind ids (transaction_id, refund_id) to every log line inside the block.

    Usage::

        with log_context(transaction_id=txn_id):
            ...
    """
    return structlog.contextvars.bound_contextvars(**values)
