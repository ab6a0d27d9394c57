"""
Structured logging utilities for the alerting engine.
Provides JSON/text formatting, alerting-specific log categories,
an AUDIT level for security events and performance logging.
"""

import logging
import logging.config
import logging.handlers
import os
import sys
import json
import time
import threading
from datetime import datetime
from typing import Optional, Dict, Any
from pathlib import Path
from dataclasses import dataclass, field
from enum import Enum
import functools
import psutil


class LogLevel(Enum):
    """Log levels used by the alerting engine."""
    TRACE = 5        # Detailed execution traces
    DEBUG = 10       # Debug information
    PERFORMANCE = 15 # Performance metrics
    INFO = 20        # General information
    AUDIT = 25       # Audit trail for security events
    WARNING = 30     # Warning messages
    ERROR = 40       # Error conditions
    CRITICAL = 50    # Critical failures


class LogCategory(Enum):
    """Log categories for classification."""
    ALERTING = "alerting"
    NOTIFICATION = "notification"
    ESCALATION = "escalation"
    SECURITY = "security"
    AUDIT = "audit"
    PERFORMANCE = "performance"
    SYSTEM = "system"
    ERROR = "error"


@dataclass
class LogConfig:
    """Configuration for the logging system."""
    level: str = "INFO"
    format_type: str = "json"
    log_dir: Path = field(default_factory=lambda: Path("logs"))
    max_file_size: int = 50_000_000  # 50MB
    backup_count: int = 5
    enable_performance_logging: bool = True
    enable_audit_logging: bool = True
    file_output: bool = True
    console_output: bool = True
    structured_metadata: bool = True
    correlation_id_enabled: bool = True


@dataclass
class PerformanceMetrics:
    """Performance metrics for logging."""
    start_time: float
    end_time: float
    duration: float
    cpu_usage_start: float
    cpu_usage_end: float
    memory_usage_start: int
    memory_usage_end: int
    function_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'duration_ms': round(self.duration * 1000, 3),
            'cpu_usage_delta': round(self.cpu_usage_end - self.cpu_usage_start, 2),
            'memory_delta_mb': round((self.memory_usage_end - self.memory_usage_start) / 1024 / 1024, 2),
            'function': self.function_name
        }


def setup_logging(
    config: Optional[LogConfig] = None,
    level: str = "INFO",
    format_type: str = "json"
) -> None:
    """
    Setup logging for the application.

    Args:
        config: LogConfig object for advanced configuration
        level: Logging level used when no config is given
        format_type: Format type ('json' or 'text')
    """
    if config is None:
        config = LogConfig(level=level, format_type=format_type)

    for log_level in LogLevel:
        logging.addLevelName(log_level.value, log_level.name)

    if config.format_type == "json":
        formatter = EnhancedJsonFormatter(config)
    else:
        formatter = EnhancedTextFormatter()

    handler_level = getattr(logging, config.level.upper(), logging.INFO)
    handlers = []

    # Console handler
    if config.console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(handler_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if config.file_output:
        config.log_dir.mkdir(parents=True, exist_ok=True)

        # Main application log with rotation
        main_handler = logging.handlers.RotatingFileHandler(
            config.log_dir / "alerting.log",
            maxBytes=config.max_file_size,
            backupCount=config.backup_count
        )
        main_handler.setLevel(handler_level)
        main_handler.setFormatter(formatter)
        handlers.append(main_handler)

        # Performance log
        if config.enable_performance_logging:
            perf_handler = logging.handlers.RotatingFileHandler(
                config.log_dir / "performance.log",
                maxBytes=config.max_file_size,
                backupCount=config.backup_count
            )
            perf_handler.setLevel(LogLevel.PERFORMANCE.value)
            perf_handler.setFormatter(formatter)
            perf_handler.addFilter(CategoryFilter(LogCategory.PERFORMANCE))
            handlers.append(perf_handler)

        # Audit log (security events)
        if config.enable_audit_logging:
            audit_handler = logging.handlers.RotatingFileHandler(
                config.log_dir / "audit.log",
                maxBytes=config.max_file_size,
                backupCount=config.backup_count
            )
            audit_handler.setLevel(LogLevel.AUDIT.value)
            audit_handler.setFormatter(formatter)
            audit_handler.addFilter(CategoryFilter(LogCategory.AUDIT))
            handlers.append(audit_handler)

        # Error log
        error_handler = logging.handlers.RotatingFileHandler(
            config.log_dir / "errors.log",
            maxBytes=config.max_file_size,
            backupCount=config.backup_count
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        handlers.append(error_handler)

    # Configure root logger
    logging.basicConfig(
        level=LogLevel.TRACE.value,  # Set to lowest level, handlers will filter
        handlers=handlers,
        format="%(message)s" if config.format_type == "json" else None
    )

    global _log_config
    _log_config = config


# Global config storage
_log_config: Optional[LogConfig] = None
_correlation_context = threading.local()


class CategoryFilter(logging.Filter):
    """Filter logs by category."""

    def __init__(self, category: LogCategory):
        super().__init__()
        self.category = category.value

    def filter(self, record):
        return getattr(record, 'category', None) == self.category


class EnhancedJsonFormatter(logging.Formatter):
    """JSON formatter with structured metadata."""

    def __init__(self, config: LogConfig):
        super().__init__()
        self.config = config

    def format(self, record):
        log_entry = {
            'timestamp': datetime.utcnow().isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'thread_id': threading.get_ident(),
            'process_id': os.getpid()
        }

        if self.config.correlation_id_enabled:
            correlation_id = getattr(_correlation_context, 'correlation_id', None)
            if correlation_id:
                log_entry['correlation_id'] = correlation_id

        if self.config.structured_metadata:
            if hasattr(record, 'category'):
                log_entry['category'] = record.category

            if hasattr(record, 'performance_metrics'):
                log_entry['performance'] = record.performance_metrics

            if hasattr(record, 'alert_context'):
                log_entry['alert'] = record.alert_context

            if hasattr(record, 'error_context'):
                log_entry['error'] = record.error_context

            if hasattr(record, 'extra_fields'):
                log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': self.formatException(record.exc_info)
            }

        if record.pathname:
            log_entry['source'] = {
                'file': record.pathname,
                'line': record.lineno,
                'function': record.funcName
            }

        return json.dumps(log_entry, default=str)


class EnhancedTextFormatter(logging.Formatter):
    """Text formatter with category, correlation id and structured fields."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record):
        formatted = super().format(record)

        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            rendered = " ".join(f"{key}={value}" for key, value in extra_fields.items())
            formatted = f"{formatted} | {rendered}"

        if hasattr(record, 'category'):
            formatted = f"[{record.category}] {formatted}"

        correlation_id = getattr(_correlation_context, 'correlation_id', None)
        if correlation_id:
            formatted = f"[{correlation_id[:8]}] {formatted}"

        return formatted


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger
    """
    return logging.getLogger(name)


def get_enhanced_logger(name: str, category: Optional[LogCategory] = None) -> 'EnhancedLogger':
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)
        category: Default log category

    Returns:
        Enhanced logger instance
    """
    return EnhancedLogger(name, category)


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID for current thread."""
    _correlation_context.correlation_id = correlation_id


def get_correlation_id() -> Optional[str]:
    """Get correlation ID for current thread."""
    return getattr(_correlation_context, 'correlation_id', None)


def clear_correlation_id() -> None:
    """Clear correlation ID for current thread."""
    if hasattr(_correlation_context, 'correlation_id'):
        delattr(_correlation_context, 'correlation_id')


def performance_logging(func):
    """Decorator logging duration, CPU and RSS deltas of the wrapped call."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = get_enhanced_logger(func.__module__, LogCategory.PERFORMANCE)

        start_time = time.time()
        process = psutil.Process()
        cpu_start = process.cpu_percent()
        memory_start = process.memory_info().rss

        def _metrics() -> Dict[str, Any]:
            end_time = time.time()
            return PerformanceMetrics(
                start_time=start_time,
                end_time=end_time,
                duration=end_time - start_time,
                cpu_usage_start=cpu_start,
                cpu_usage_end=process.cpu_percent(),
                memory_usage_start=memory_start,
                memory_usage_end=process.memory_info().rss,
                function_name=func.__name__
            ).to_dict()

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(
                f"Function {func.__name__} failed",
                performance_metrics=_metrics(),
                exception=str(e)
            )
            raise

        logger.performance(
            f"Function {func.__name__} completed",
            performance_metrics=_metrics()
        )
        return result

    return wrapper


class EnhancedLogger:
    """Logger accepting leveled calls with structured keyword fields."""

    def __init__(self, name: str, default_category: Optional[LogCategory] = None):
        self.logger = logging.getLogger(name)
        self.default_category = default_category

    def _log(
        self,
        log_level: int,
        message: str,
        category: Optional[LogCategory] = None,
        performance_metrics: Optional[Dict[str, Any]] = None,
        alert_context: Optional[Dict[str, Any]] = None,
        error_context: Optional[Dict[str, Any]] = None,
        exc_info: Any = None,
        **extra_fields
    ):
        """Internal logging method with structured data."""
        if not self.logger.isEnabledFor(log_level):
            return

        if exc_info is True:
            exc_info = sys.exc_info()

        record = self.logger.makeRecord(
            name=self.logger.name,
            level=log_level,
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=exc_info
        )

        if category or self.default_category:
            record.category = (category or self.default_category).value

        if performance_metrics:
            record.performance_metrics = performance_metrics

        if alert_context:
            record.alert_context = alert_context

        if error_context:
            record.error_context = error_context

        if extra_fields:
            record.extra_fields = extra_fields

        self.logger.handle(record)

    def trace(self, message: str, **kwargs):
        """Log trace level message."""
        self._log(LogLevel.TRACE.value, message, **kwargs)

    def debug(self, message: str, **kwargs):
        """Log debug level message."""
        self._log(LogLevel.DEBUG.value, message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log info level message."""
        self._log(LogLevel.INFO.value, message, **kwargs)

    def audit(self, message: str, **kwargs):
        """Log audit level message."""
        kwargs.setdefault('category', LogCategory.AUDIT)
        self._log(LogLevel.AUDIT.value, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning level message."""
        self._log(LogLevel.WARNING.value, message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log error level message."""
        kwargs.setdefault('category', LogCategory.ERROR)
        self._log(LogLevel.ERROR.value, message, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical level message."""
        kwargs.setdefault('category', LogCategory.ERROR)
        self._log(LogLevel.CRITICAL.value, message, **kwargs)

    def performance(self, message: str, **kwargs):
        """Log performance metrics."""
        kwargs.setdefault('category', LogCategory.PERFORMANCE)
        self._log(LogLevel.PERFORMANCE.value, message, **kwargs)

    def log_alert_event(
        self,
        event: str,
        alert_id: str,
        severity: str,
        alert_type: str,
        **metadata
    ):
        """Log an alert lifecycle event with structured data."""
        alert_context = {
            'event': event,
            'alert_id': alert_id,
            'severity': severity,
            'alert_type': alert_type,
            'event_time': datetime.utcnow().isoformat(),
            **metadata
        }

        severity_map = {
            'low': LogLevel.INFO.value,
            'medium': LogLevel.WARNING.value,
            'high': LogLevel.WARNING.value,
            'critical': LogLevel.ERROR.value
        }

        level = severity_map.get(severity.lower(), LogLevel.WARNING.value)

        self._log(
            level,
            f"Alert {event}: {alert_id} [{severity}/{alert_type}]",
            category=LogCategory.ALERTING,
            alert_context=alert_context
        )

    def log_error_with_context(
        self,
        error: Exception,
        context: Dict[str, Any],
        severity: str = "error"
    ):
        """Log error with additional context."""
        error_context = {
            'error_type': type(error).__name__,
            'error_message': str(error),
            'context': context,
            'timestamp': datetime.utcnow().isoformat()
        }

        level_map = {
            'warning': LogLevel.WARNING.value,
            'error': LogLevel.ERROR.value,
            'critical': LogLevel.CRITICAL.value
        }

        level = level_map.get(severity.lower(), LogLevel.ERROR.value)

        self._log(
            level,
            f"Error occurred: {str(error)}",
            category=LogCategory.ERROR,
            error_context=error_context
        )


# Initialize logging on module import
try:
    config = LogConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format_type=os.getenv("LOG_FORMAT", "json"),
        log_dir=Path(os.getenv("LOG_DIR", "logs")),
        file_output=os.getenv("LOG_TO_FILE", "true").lower() == "true",
        enable_performance_logging=os.getenv("ENABLE_PERF_LOGGING", "true").lower() == "true",
        enable_audit_logging=os.getenv("ENABLE_AUDIT_LOGGING", "true").lower() == "true"
    )
    setup_logging(config)
except Exception:
    # Fallback to basic logging if setup fails
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
