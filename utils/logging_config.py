"""
Centralized logging configuration for the driver workflow service
Provides structured JSON logging with correlation ids and request timing
"""

import os
import sys
import json
import uuid
import logging
from datetime import datetime, timezone
from typing import Dict, Any
from flask import has_request_context, request, g
import traceback

from utils.security import AuditDataSanitizer

CORRELATION_HEADER = 'X-Request-ID'

# LogRecord attributes that are not "extra" fields
_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName', 'created', 'msecs',
    'relativeCreated', 'thread', 'threadName', 'processName', 'process', 'message',
    'taskName', 'correlation_id', 'request_duration',
])


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging
    Includes correlation ID, request context, and application metadata
    """

    def __init__(self):
        super().__init__()
        self.application_name = "driver_workflow"
        self.environment = os.environ.get('FLASK_ENV', 'development')

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON"""

        log_data: Dict[str, Any] = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'application': self.application_name,
            'environment': self.environment,
        }

        correlation_id = getattr(record, 'correlation_id', None)
        if correlation_id:
            log_data['correlation_id'] = correlation_id

        if has_request_context():
            log_data['request'] = {
                'method': request.method,
                'path': request.path,
                'remote_addr': AuditDataSanitizer.mask_ip_address(request.remote_addr or ''),
                'user_agent': request.headers.get('User-Agent', ''),
            }
            driver_id = (request.view_args or {}).get('driver_id')
            if driver_id is not None:
                log_data['driver_id'] = driver_id

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        extra_fields = {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS}
        if extra_fields:
            log_data['extra'] = extra_fields

        # Add code location for error levels
        if record.levelno >= logging.ERROR:
            log_data['location'] = {
                'file': record.pathname,
                'function': record.funcName,
                'line': record.lineno
            }

        return json.dumps(log_data, ensure_ascii=False, default=str)


class RequestContextFilter(logging.Filter):
    """
    Filter to inject request context into log records
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = None
        if has_request_context():
            record.correlation_id = getattr(g, 'correlation_id', None)
            if hasattr(g, 'request_start_time'):
                record.request_duration = datetime.now().timestamp() - g.request_start_time
        return True


def setup_logging(app=None) -> logging.Logger:
    """
    Configure the root logger for the application.
    JSON output when USE_JSON_LOGGING is set or in production, plain text otherwise.
    """
    log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()
    if log_level not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
        log_level = 'INFO'

    use_json_logging = (
        os.environ.get('USE_JSON_LOGGING', 'false').lower() == 'true' or
        os.environ.get('FLASK_ENV') == 'production'
    )

    if use_json_logging:
        formatter = JSONFormatter()
    else:
        # Development-friendly format
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s in %(name)s [%(correlation_id)s]: %(message)s'
        )

    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    handlers.append(console_handler)

    if os.environ.get('ENABLE_FILE_LOGGING', 'false').lower() == 'true':
        os.makedirs('logs', exist_ok=True)
        error_handler = logging.FileHandler('logs/error.log')
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

        file_handler = logging.FileHandler('logs/application.log')
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RequestContextFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)

    # Silence noisy third-party loggers in production
    if os.environ.get('FLASK_ENV') == 'production':
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)
        logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    if app:
        app.logger.info(f"Logging configured: level={log_level}, json_format={use_json_logging}")

    return root_logger


def log_request_start():
    """Mark the start of request processing and pick up or mint a correlation id"""
    g.request_start_time = datetime.now().timestamp()
    incoming = request.headers.get(CORRELATION_HEADER, '')
    g.correlation_id = incoming[:64] if incoming else uuid.uuid4().hex


def log_request_end(response):
    """Log request completion with timing and response info"""
    if hasattr(g, 'correlation_id'):
        response.headers[CORRELATION_HEADER] = g.correlation_id

    if hasattr(g, 'request_start_time'):
        duration = datetime.now().timestamp() - g.request_start_time

        extra_data = {
            'method': request.method,
            'path': request.path,
            'status_code': response.status_code,
            'duration_ms': round(duration * 1000, 2),
            'response_size': response.content_length or 0,
        }

        # Determine log level based on response status
        if response.status_code >= 500:
            log_level = logging.ERROR
        elif response.status_code >= 400:
            log_level = logging.WARNING
        elif duration > 5.0:  # Slow requests
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        logging.getLogger('http').log(log_level, f"Request completed: {request.method} {request.path} "
                                                 f"{response.status_code}", extra=extra_data)

    return response
