"""
Structured Logging Infrastructure

JSON log lines carrying a correlation id, so one payout job can be followed from
the HTTP request or Celery task through every processor call it makes.

Payout details end up in log context all the time, so everything passed as
``extra_data`` goes through ``redact()`` before it is written: PayPal emails, bank
numbers and client secrets never reach the log sink, connected-account ids keep
only their last four characters.
"""
import logging
import json
import re
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from functools import wraps
from typing import Any, Iterator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

# acct_1Nv0FGQ9RKHgCVdK -> acct_****CVdK
_ACCOUNT_ID_RE = re.compile(r"\b(acct_)[A-Za-z0-9]+([A-Za-z0-9]{4})\b")

_SECRET_KEYS = frozenset({"client_secret", "api_key", "secret_key", "webhook_secret"})
_LAST_FOUR_KEYS = frozenset({"account_number", "routing_number", "iban"})
_EMAIL_KEYS = frozenset({"email", "paypal_email"})


def mask_account_ids(text: str) -> str:
    """Keep only the last four characters of connected-account ids"""
    return _ACCOUNT_ID_RE.sub(r"\1****\2", text)


def _mask_email(value: str) -> str:
    local, sep, domain = value.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def redact(value: Any, key: str | None = None) -> Any:
    """Copy of ``value`` with payout secrets masked, recursing into dicts and lists"""
    if isinstance(value, dict):
        return {k: redact(v, k) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    if not isinstance(value, str):
        return value
    if key is None:
        return mask_account_ids(value)

    lowered = key.lower()
    if lowered in _SECRET_KEYS:
        return "***"
    if lowered in _LAST_FOUR_KEYS:
        return f"****{value[-4:]}"
    if lowered in _EMAIL_KEYS:
        return _mask_email(value)
    return mask_account_ids(value)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_entry["extra"] = redact(extra_data)

        return json.dumps(log_entry, ensure_ascii=False, default=_json_default)


class StructuredLogger(logging.Logger):
    """Logger whose methods accept ``extra_data={...}`` for structured context"""

    def _log(
        self,
        level: int,
        msg: object,
        args,
        exc_info=None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra_data: dict[str, Any] | None = None,
    ) -> None:
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        # skip this frame so funcName/lineno point at the caller
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


class CorrelationIdFilter(logging.Filter):
    """Adds ``correlation_id`` to records for the plain-text format"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "creator-payouts"
) -> None:
    """
    Configure the root logger.

    Args:
        level: Logging level name
        json_format: JSON lines (production) instead of the human-readable format
        app_name: Application name, logged once at startup
    """
    numeric_level = getattr(logging, level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s] | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        handler.addFilter(CorrelationIdFilter())
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "sqlalchemy.engine", "stripe"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)

    get_logger(__name__).info(
        "Logging configured",
        extra_data={"app": app_name, "level": level.upper(), "json": json_format},
    )


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set the correlation id for the current context, generating one if needed"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Current correlation id; generated and stored on first use"""
    cid = correlation_id_var.get()
    if not cid:
        cid = set_correlation_id()
    return cid


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """
    Bind a correlation id for the duration of a block, restoring the previous one.

    Celery tasks use this so every line of a payout run shares the job's id.
    """
    token = correlation_id_var.set(correlation_id or generate_correlation_id())
    try:
        yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def log_async_operation(operation_name: str):
    """Decorator logging start, completion and failure of a coroutine with its duration"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.monotonic()

            logger.debug(
                f"Starting {operation_name}",
                extra_data={"operation": operation_name, "status": "started"}
            )

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {operation_name}: {str(e)}",
                    extra_data={
                        "operation": operation_name,
                        "status": "failed",
                        "duration_seconds": round(time.monotonic() - started, 4),
                        "error": str(e)
                    },
                    exc_info=True
                )
                raise

            logger.info(
                f"Completed {operation_name}",
                extra_data={
                    "operation": operation_name,
                    "status": "completed",
                    "duration_seconds": round(time.monotonic() - started, 4)
                }
            )
            return result

        return wrapper
    return decorator
