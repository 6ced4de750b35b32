"""Deduplicated operational error log."""

import logging
import re
import traceback
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..core.types import ErrorLogEntry, LogLevel
from ..storage import MonitorStore
from ..utils.time_utils import utcnow


logger = logging.getLogger(__name__)

MAX_STRING_LENGTH = 1000
MAX_DEPTH = 5
REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    'password', 'token', 'apikey', 'api_key', 'secret', 'authorization', 'cookie',
    'session', 'credential', 'private_key', 'privatekey', 'access_key', 'accesskey',
    'connection_string', 'connectionstring', 'database_url', 'databaseurl', 'dsn', 'bearer',
)

SENSITIVE_VALUE_PATTERNS = (
    re.compile(r'\b(?:postgres(?:ql)?|mysql|mongodb(?:\+srv)?|rediss?|amqp)://[^\s"\']+', re.I),
    re.compile(r'\bBearer\s+[A-Za-z0-9\-._~+/]+=*', re.I),
    re.compile(r'\b(?:sk|pk|rk|whsec)[-_](?:live|test)[-_][A-Za-z0-9]+'),
    re.compile(r'\bre_[A-Za-z0-9_]{10,}'),
    re.compile(r'\bghp_[A-Za-z0-9]{20,}'),
    re.compile(r'\bxox[abposr]-[A-Za-z0-9-]+'),
    re.compile(r'\b(?=[A-Za-z0-9+]*\d)[A-Za-z0-9+]{40,}={0,2}'),
)

_CONSOLE_LEVELS = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.INFO: logging.INFO,
}


def _is_sensitive_key(key: str) -> bool:
    lowered = str(key).lower().replace('-', '_')
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def sanitize_string(value: str) -> str:
    """Redact secrets inside a string and cap its length."""
    for pattern in SENSITIVE_VALUE_PATTERNS:
        value = pattern.sub(REDACTED, value)
    if len(value) > MAX_STRING_LENGTH:
        value = value[:MAX_STRING_LENGTH] + "...[truncated]"
    return value


def sanitize_value(value: Any, depth: int = 0) -> Any:
    if depth > MAX_DEPTH:
        return "[max depth]"
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, dict):
        return {
            str(k): REDACTED if _is_sensitive_key(k) else sanitize_value(v, depth + 1)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set)):
        return [sanitize_value(item, depth + 1) for item in value]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return sanitize_string(str(value))


def sanitize_context(context: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Make a context dict safe to persist: redacted, truncated and JSON friendly."""
    if context is None:
        return None
    return sanitize_value(dict(context))


class ErrorLogger:
    """
    Writes operational events to the error log, collapsing repeats.

    An unresolved row with the same (level, source, message) is bumped instead
    of duplicated. Every call is mirrored to the console logger. Storage
    failures are reported on the console and never raised.
    """

    def __init__(self, store: MonitorStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or utcnow

    async def log(self, level: LogLevel, source: str, message: str,
                  error: Optional[BaseException] = None,
                  context: Optional[Dict[str, Any]] = None) -> Optional[ErrorLogEntry]:
        message = sanitize_string(message)
        safe_context = sanitize_context(context)
        logger.log(_CONSOLE_LEVELS[level], f"[{source}] {message}" + (f" {safe_context}" if safe_context else ""))

        stack_trace = None
        if error is not None and error.__traceback__ is not None:
            stack_trace = sanitize_string(
                "".join(traceback.format_exception(type(error), error, error.__traceback__))
            )

        now = self.clock()
        entry = ErrorLogEntry(
            level=level,
            source=source,
            message=message,
            error_type=type(error).__name__ if error is not None else None,
            stack_trace=stack_trace,
            context=safe_context,
            timestamp=now,
            first_occurrence=now,
        )
        try:
            return await self.store.upsert_error_log(entry)
        except Exception as e:
            logger.error(f"Failed to write error log [{source}] {message}: {e}")
            return None

    async def error(self, source: str, message: str, error: Optional[BaseException] = None,
                    context: Optional[Dict[str, Any]] = None) -> Optional[ErrorLogEntry]:
        return await self.log(LogLevel.ERROR, source, message, error, context)

    async def warning(self, source: str, message: str, error: Optional[BaseException] = None,
                      context: Optional[Dict[str, Any]] = None) -> Optional[ErrorLogEntry]:
        return await self.log(LogLevel.WARNING, source, message, error, context)

    async def info(self, source: str, message: str,
                   context: Optional[Dict[str, Any]] = None) -> Optional[ErrorLogEntry]:
        return await self.log(LogLevel.INFO, source, message, None, context)
