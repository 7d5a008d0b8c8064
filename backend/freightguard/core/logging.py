"""
Structured logging for freightguard.

Every record carries the service name, environment and, inside an HTTP
request, the request id set by RequestContextMiddleware. Production emits one
JSON object per line; other environments get a compact readable line.
"""
import json
import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Dict, Optional

from freightguard.core.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
request_start_var: ContextVar[Optional[float]] = ContextVar('request_start', default=None)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def generate_request_id() -> str:
    return uuid.uuid4().hex[:8]


def _elapsed_ms(start: Optional[float]) -> Optional[float]:
    if not start:
        return None
    return round((time.time() - start) * 1000, 2)


class StructuredLogger:
    """Thin wrapper over a stdlib logger that attaches request context to each line."""

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)
        self.as_json = settings.APP_ENV == 'production'

    def _record(self, level: str, event: str, fields: Dict[str, Any], error: Optional[BaseException]) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            'ts': time.strftime('%Y-%m-%dT%H:%M:%S%z'),
            'level': level,
            'service': settings.APP_NAME,
            'env': settings.APP_ENV,
            'logger': self.name,
            'event': event,
        }
        request_id = get_request_id()
        if request_id:
            record['request_id'] = request_id
        elapsed = _elapsed_ms(request_start_var.get())
        if elapsed is not None:
            record['elapsed_ms'] = elapsed
        if fields:
            record['fields'] = fields
        if error is not None:
            record['error'] = f"{type(error).__name__}: {error}"
        return record

    def _render(self, record: Dict[str, Any]) -> str:
        if self.as_json:
            return json.dumps(record, default=str)

        line = f"[{record.get('request_id', '-')}] {record['event']}"
        if 'fields' in record:
            line += ' ' + ' '.join(f"{k}={v}" for k, v in record['fields'].items())
        if 'error' in record:
            line += f" error=({record['error']})"
        if 'elapsed_ms' in record:
            line += f" [{record['elapsed_ms']}ms]"
        return line

    def _emit(self, level: int, event: str, fields: Dict[str, Any], error: Optional[BaseException] = None):
        if not self.logger.isEnabledFor(level):
            return
        record = self._record(logging.getLevelName(level), event, fields, error)
        self.logger.log(level, self._render(record))

    def debug(self, event: str, **fields):
        self._emit(logging.DEBUG, event, fields)

    def info(self, event: str, **fields):
        self._emit(logging.INFO, event, fields)

    def warning(self, event: str, **fields):
        self._emit(logging.WARNING, event, fields)

    def error(self, event: str, error: Optional[BaseException] = None, **fields):
        self._emit(logging.ERROR, event, fields, error)


def get_logger(name: str = 'freightguard') -> StructuredLogger:
    return StructuredLogger(name)


api_logger = get_logger('freightguard.api')
roles_logger = get_logger('freightguard.roles')
audit_logger = get_logger('freightguard.audit')
archive_logger = get_logger('freightguard.archive')
db_logger = get_logger('freightguard.database')


def log_operation(operation: str, logger: Optional[StructuredLogger] = None):
    """
    Time a coroutine and log how it ended.

        @log_operation("archive_older_than", archive_logger)
        async def archive_older_than(...):
            ...
    """
    log = logger or api_logger

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start = time.time()
            log.debug(f"{operation}.started")
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                log.error(f"{operation}.failed", error=e, duration_ms=_elapsed_ms(start))
                raise
            log.info(f"{operation}.completed", duration_ms=_elapsed_ms(start))
            return result

        return wrapper

    return decorator
