"""
Logging configuration for the Cursus cache service.

Provides structured logging with correlation IDs, centralized configuration,
and JSON or colored console output depending on the environment.
"""

import logging
import json
import sys
import os
from datetime import datetime
from typing import Dict, Any, Optional, Union
from uuid import uuid4
import traceback
from contextvars import ContextVar
from pathlib import Path

# Context variables for correlation tracking
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)

# LogRecord attributes that are never copied into the structured payload
_RESERVED_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}


class CorrelationFilter(logging.Filter):
    """Add correlation IDs and context to log records."""

    def filter(self, record):
        record.correlation_id = correlation_id.get() or 'unknown'
        record.request_id = request_id.get() or 'no-request'
        record.component = getattr(record, 'component', 'unknown')
        record.operation = getattr(record, 'operation', 'unknown')
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_extra=True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record):
        log_entry = {
            'timestamp': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'unknown'),
            'request_id': getattr(record, 'request_id', 'no-request'),
            'component': getattr(record, 'component', 'unknown'),
            'operation': getattr(record, 'operation', 'unknown'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key in log_entry or key in _RESERVED_ATTRS or key.startswith('_'):
                    continue
                try:
                    json.dumps(value)
                    log_entry[key] = value
                except (TypeError, ValueError):
                    log_entry[key] = str(value)

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        formatted = super().format(record)
        correlation_info = f"[{getattr(record, 'correlation_id', 'unknown')[:8]}]"
        return f"{color}{formatted}{self.RESET} {correlation_info}"


class CursusLogger:
    """Logger wrapper that attaches component and operation context to every record."""

    def __init__(self, name: str, component: str = None):
        self.logger = logging.getLogger(name)
        self.component = component or name.split('.')[-1]

    def _log(self, log_level: int, message: str, operation: str = None, exc_info: bool = False, **kwargs):
        extra = {
            'component': self.component,
            'operation': operation or 'unknown',
            **kwargs
        }
        self.logger.log(log_level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, operation: str = None, **kwargs):
        self._log(logging.DEBUG, message, operation, **kwargs)

    def info(self, message: str, operation: str = None, **kwargs):
        self._log(logging.INFO, message, operation, **kwargs)

    def warning(self, message: str, operation: str = None, **kwargs):
        self._log(logging.WARNING, message, operation, **kwargs)

    def error(self, message: str, operation: str = None, **kwargs):
        self._log(logging.ERROR, message, operation, **kwargs)

    def critical(self, message: str, operation: str = None, **kwargs):
        self._log(logging.CRITICAL, message, operation, **kwargs)

    def exception(self, message: str, operation: str = None, **kwargs):
        """Log an error together with the active exception's traceback."""
        self._log(logging.ERROR, message, operation or 'exception', exc_info=True, **kwargs)


class LoggingConfig:
    """Centralized logging configuration."""

    DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    @classmethod
    def setup_logging(
        cls,
        level: Union[str, int] = logging.INFO,
        format_type: str = 'json',
        log_file: Optional[str] = None,
        console_output: bool = True,
        correlation_tracking: bool = True
    ):
        """
        Setup logging configuration.

        Args:
            level: Logging level
            format_type: 'json', 'colored', or 'standard'
            log_file: Optional log file path
            console_output: Enable console output
            correlation_tracking: Enable correlation ID tracking
        """
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        correlation_filter = CorrelationFilter() if correlation_tracking else None

        if console_output:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)

            if format_type == 'json':
                console_handler.setFormatter(JSONFormatter())
            elif format_type == 'colored':
                console_handler.setFormatter(ColoredFormatter(cls.DEFAULT_FORMAT))
            else:
                console_handler.setFormatter(logging.Formatter(cls.DEFAULT_FORMAT))

            if correlation_filter:
                console_handler.addFilter(correlation_filter)

            root_logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())  # Always use JSON for files

            if correlation_filter:
                file_handler.addFilter(correlation_filter)

            root_logger.addHandler(file_handler)

        cls._configure_component_loggers()

        logger = CursusLogger(__name__, 'logging_config')
        logger.info(
            "Logging system initialized",
            operation="setup_logging",
            level=level,
            format_type=format_type,
            log_file=log_file
        )

    @classmethod
    def _configure_component_loggers(cls):
        """Configure component-specific loggers."""
        logging.getLogger('cursus_cache').setLevel(logging.NOTSET)

        # Third-party loggers (reduce noise)
        third_party_loggers = {
            'uvicorn': logging.WARNING,
            'uvicorn.access': logging.WARNING,
            'fastapi': logging.WARNING,
            'redis': logging.WARNING,
        }

        for logger_name, level in third_party_loggers.items():
            logging.getLogger(logger_name).setLevel(level)

    @classmethod
    def get_config_dict(cls, level: str = 'INFO', format_type: str = 'json') -> Dict[str, Any]:
        """
        Get logging configuration as dictionary for dictConfig (used by uvicorn).

        Args:
            level: Logging level
            format_type: Format type

        Returns:
            Logging configuration dictionary
        """
        return {
            'version': 1,
            'disable_existing_loggers': False,
            'filters': {
                'correlation': {
                    '()': CorrelationFilter,
                }
            },
            'formatters': {
                'json': {
                    '()': JSONFormatter,
                    'include_extra': True
                },
                'colored': {
                    '()': ColoredFormatter,
                    'format': cls.DEFAULT_FORMAT
                },
                'standard': {
                    'format': cls.DEFAULT_FORMAT
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'level': level,
                    'formatter': format_type,
                    'filters': ['correlation'],
                    'stream': 'ext://sys.stdout'
                }
            },
            'loggers': {
                'uvicorn': {'level': 'WARNING'},
                'fastapi': {'level': 'WARNING'},
                'redis': {'level': 'WARNING'},
            },
            'root': {
                'level': level,
                'handlers': ['console']
            }
        }


class CorrelationContext:
    """Context manager for correlation tracking."""

    def __init__(self, correlation_id_value: str = None, request_id_value: str = None):
        self.correlation_id_value = correlation_id_value or str(uuid4())
        self.request_id_value = request_id_value
        self.correlation_token = None
        self.request_token = None

    def __enter__(self):
        self.correlation_token = correlation_id.set(self.correlation_id_value)
        if self.request_id_value:
            self.request_token = request_id.set(self.request_id_value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.correlation_token:
            correlation_id.reset(self.correlation_token)
        if self.request_token:
            request_id.reset(self.request_token)


def get_logger(name: str, component: str = None) -> CursusLogger:
    """Get a Cursus logger instance."""
    return CursusLogger(name, component)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return correlation_id.get()


def initialize_logging():
    """Initialize logging with the configuration for the current environment."""
    environment = os.getenv('ENVIRONMENT', 'development')
    log_level = os.getenv('LOG_LEVEL', 'INFO').upper()

    if environment == 'production':
        LoggingConfig.setup_logging(
            level=log_level,
            format_type='json',
            log_file=os.getenv('LOG_FILE'),
            console_output=True,
            correlation_tracking=True
        )
    else:
        LoggingConfig.setup_logging(
            level=log_level,
            format_type='colored',
            console_output=True,
            correlation_tracking=True
        )


# Auto-initialize if not in test environment
if not os.getenv('TESTING'):
    initialize_logging()
