"""
Structured logging for the unsubscribe pipeline.

Records are JSON documents carrying the component name, scoped context and
optional extra fields. Unsubscribe URLs routinely embed tokens and user
identifiers, so every message and context value passes through a filter that
masks credential-looking fragments.
"""

import json
import logging
import re
import time
import traceback
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "unsubscriber"

# Longest names first so "access_token" wins over "token"
_MASKED_PARAMS = ('access_token', 'api_key', 'password', 'secret', 'token', 'key')


class SensitiveDataFilter:
    """Masks credentials in log text and context dictionaries."""

    SENSITIVE_KEYS = {'password', 'token', 'access_token', 'api_key', 'key', 'secret', 'authorization'}

    BEARER = re.compile(r'Bearer\s+[A-Za-z0-9._~+/=-]+')
    PARAM = re.compile(
        r'\b(' + '|'.join(_MASKED_PARAMS) + r')["\']?\s*[:=]\s*["\']?[^"\'\s&]+',
        re.IGNORECASE
    )

    def filter_message(self, message: str) -> str:
        masked = self.BEARER.sub('Bearer ***', message)
        return self.PARAM.sub(lambda m: f"{m.group(1)}=***", masked)

    def filter_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Copy of ``data`` with sensitive keys blanked and strings masked."""
        return {key: self._filter_value(key, value) for key, value in data.items()}

    def _filter_value(self, key: str, value: Any) -> Any:
        if key.lower() in self.SENSITIVE_KEYS:
            return '***'
        if isinstance(value, str):
            return self.filter_message(value)
        if isinstance(value, dict):
            return self.filter_dict(value)
        return value


class PipelineLogger:
    """
    JSON logger for one pipeline component.

    Each component logs under ``unsubscriber.<component>``. Context added with
    ``add_context`` or ``scoped_context`` is attached to every record, and
    ``log_operation_count`` keeps success/failure tallies per operation.
    """

    def __init__(self, component: str):
        self.component = component
        self.logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
        self.context: Dict[str, Any] = {}
        self.filter = SensitiveDataFilter()
        self.operation_stats = defaultdict(lambda: {'total': 0, 'success': 0, 'failure': 0})

    def add_context(self, key: str, value: Any) -> None:
        self.context[key] = value

    @contextmanager
    def scoped_context(self, context: Dict[str, Any]):
        """Context that is removed again when the block exits."""
        saved = dict(self.context)
        self.context.update(context)
        try:
            yield
        finally:
            self.context = saved

    def _record(self, message: str, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        record = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'component': self.component,
            'message': self.filter.filter_message(message),
            'context': self.filter.filter_dict(self.context),
        }
        if extra:
            record['extra'] = self.filter.filter_dict(extra)
        return record

    def log(self, level: int, message: str, extra: Optional[Dict[str, Any]] = None):
        if self.logger.isEnabledFor(level):
            self.logger.log(level, json.dumps(self._record(message, extra), default=str))

    def debug(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.log(logging.DEBUG, message, extra)

    def info(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.log(logging.INFO, message, extra)

    def warning(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.log(logging.WARNING, message, extra)

    def error(self, message: str, extra: Optional[Dict[str, Any]] = None):
        self.log(logging.ERROR, message, extra)

    @contextmanager
    def time_operation(self, operation: str):
        """Log how long the block took and whether it raised."""
        started = time.monotonic()
        self.debug(f"Starting {operation}", {'operation': operation})
        try:
            yield
        except Exception as e:
            self.error(f"Operation {operation} failed", {
                'operation': operation,
                'duration_seconds': round(time.monotonic() - started, 3),
                'status': 'failure',
                'error': str(e),
            })
            raise
        self.info(f"Operation {operation} completed", {
            'operation': operation,
            'duration_seconds': round(time.monotonic() - started, 3),
            'status': 'success',
        })

    def log_exception(self, exception: Exception, extra: Optional[Dict[str, Any]] = None):
        """Error record with the exception type, message, context and traceback."""
        record = self._record(f"Exception occurred: {exception}", extra)
        details = {
            'type': type(exception).__name__,
            'message': self.filter.filter_message(str(exception)),
        }
        if getattr(exception, 'context', None):
            details['context'] = self.filter.filter_dict(exception.context)
        if exception.__traceback__ is not None:
            details['traceback'] = self.filter.filter_message(
                ''.join(traceback.format_exception(type(exception), exception, exception.__traceback__))
            )
        record['exception'] = details
        # Traceback stays inside the record so each line is one JSON document
        self.logger.error(json.dumps(record, default=str))

    def log_operation_count(self, operation: str, success: bool):
        stats = self.operation_stats[operation]
        stats['total'] += 1
        stats['success' if success else 'failure'] += 1

    def get_operation_stats(self) -> Dict[str, Dict[str, int]]:
        return {operation: dict(stats) for operation, stats in self.operation_stats.items()}


def configure_logging(level: str = "INFO", format: str = "standard", output: str = "console",
                      filename: Optional[str] = None) -> logging.Logger:
    """
    Set up handlers on the package's root logger.

    Args:
        level: level name, unknown names fall back to INFO
        format: "standard" or "json" (records are already JSON, so only the message is printed)
        output: "console", "file" or "both"
        filename: log file used when output includes "file"
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers.clear()

    if format == "json":
        formatter = logging.Formatter('%(message)s')
    else:
        formatter = logging.Formatter('%(asctime)s %(levelname)-8s %(name)s: %(message)s')

    handlers = []
    if output in ("console", "both"):
        handlers.append(logging.StreamHandler())
    if output in ("file", "both") and filename:
        handlers.append(logging.FileHandler(filename))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
