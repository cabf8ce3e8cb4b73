"""
Structured Logging Helpers
==========================
JSON formatting for the persistent log file.

Every record carries a correlation id so that all lines written while a
campaign is running can be grouped by the campaign id.
"""

import contextvars
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

# Copied into asyncio tasks and asyncio.to_thread workers
_correlation_id: contextvars.ContextVar = contextvars.ContextVar("correlation_id", default=None)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_correlation_id: bool = True):
        super().__init__()
        self.include_correlation_id = include_correlation_id

    def set_correlation_id(self, cid: Optional[str]):
        """Set the correlation ID for the current context."""
        _correlation_id.set(cid)

    def get_correlation_id(self) -> Optional[str]:
        """Get the correlation ID for the current context."""
        return _correlation_id.get()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'source': {
                'file': record.filename,
                'line': record.lineno,
                'function': record.funcName
            }
        }

        if self.include_correlation_id:
            log_data['correlation_id'] = self.get_correlation_id()

        # Fields passed as logger.info(..., extra={'extra': {...}})
        if hasattr(record, 'extra'):
            log_data['extra'] = record.extra

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def new_correlation_id() -> str:
    """Short random id used when a campaign has no remote job id yet."""
    return str(uuid.uuid4())[:8]
