"""Logging configuration for the sync backend.

Records are written as JSON lines to a rotating file and as plain text to the
console. Inside a Flask request every record also carries the request id,
method, path and the authenticated user, so all log lines from one sync call
(including each item of a batch) can be grouped.
"""
import logging
import os
import json
import time
import uuid
from logging.handlers import RotatingFileHandler
from flask import g, has_request_context, request
from fca_shared.models import now

REQUEST_ID_HEADER = 'X-Request-ID'

# Attributes RequestContextFilter sets on records
REQUEST_FIELDS = ('request_id', 'method', 'path', 'user_id')


class RequestContextFilter(logging.Filter):
    """Attach the current request's id, method, path and user to each record."""

    def filter(self, record):
        if has_request_context():
            record.request_id = getattr(g, 'request_id', None)
            record.method = request.method
            record.path = request.path
            caller = getattr(g, 'caller', None)
            record.user_id = caller.user_id if caller is not None else None
        return True


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for better log analysis."""

    def format(self, record):
        log_entry = {
            'timestamp': now().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for key in REQUEST_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Sync operations attach offline_id/project_id etc. via extra={'extra_fields': {...}}
        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


def setup_logging(log_level=None, log_dir=None):
    """Setup logging configuration for the backend.

    Args:
        log_level (str, optional): Level name; defaults to LOG_LEVEL env or INFO
        log_dir (str, optional): Directory for the rotating JSON log file
    """
    log_level_str = (log_level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    level = getattr(logging, log_level_str, logging.INFO)

    logs_dir = log_dir or os.path.join(os.path.dirname(__file__), '..', 'logs')
    os.makedirs(logs_dir, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(level)

    context_filter = RequestContextFilter()

    log_file = os.path.join(logs_dir, 'fca_sync.log')
    file_handler = RotatingFileHandler(log_file, maxBytes=10*1024*1024, backupCount=5)
    file_handler.setLevel(level)
    file_handler.setFormatter(StructuredFormatter())
    file_handler.addFilter(context_filter)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)-8s %(name)-20s %(message)s'))
    console_handler.addFilter(context_filter)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    for noisy in ('werkzeug', 'sqlalchemy.engine', 'libcloud', 'urllib3', 'PIL'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging initialized", extra={
        'extra_fields': {'log_level': log_level_str, 'log_file': log_file}
    })
    return logger


def init_request_logging(app):
    """Assign each API request an id and log one summary line when it finishes.

    A client-supplied X-Request-ID is reused so a field device can correlate
    its retries with server logs. Register before auth so rejected calls are
    logged too.
    """
    request_logger = logging.getLogger('fca_backend.requests')

    @app.before_request
    def start_request_timer():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]

    @app.after_request
    def log_request(response):
        request_id = getattr(g, 'request_id', None)
        if request_id is None:
            return response
        response.headers[REQUEST_ID_HEADER] = request_id

        if request.path.startswith('/api/'):
            duration_ms = (time.perf_counter() - g.request_started) * 1000
            level = logging.ERROR if response.status_code >= 500 else logging.INFO
            request_logger.log(
                level,
                f"{request.method} {request.path} {response.status_code} ({duration_ms:.0f}ms)",
                extra={'extra_fields': {'status': response.status_code, 'duration_ms': round(duration_ms, 1)}}
            )
        return response
