"""
Centralized logging configuration.
Structured logging for money movement audit trails, dispatch decisions and
sweep timing.
"""
import logging
import logging.config
import json
import sys
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Any, Optional
from pathlib import Path

class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Decimal amounts are rendered as strings so no precision is lost in ledger audits.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, 'extra_data', None)
        if extra_data:
            log_entry.update(extra_data)

        log_entry.update({
            "process_id": record.process,
            "thread_id": record.thread,
        })

        return json.dumps(log_entry, ensure_ascii=False, default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):  # enums
        return value.value
    return str(value)


class StructuredLogger:
    """
    Wrapper around standard logger taking keyword context instead of format args.
    ``exc_info`` is passed through to logging; every other keyword lands in the JSON payload.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_extra(self, level: int, message: str, exc_info: bool = False, **kwargs):
        extra_data = {k: v for k, v in kwargs.items() if v is not None}
        if extra_data and level >= logging.WARNING:
            # Console formatter shows only the message; keep context readable there too.
            context = ", ".join(f"{k}={_json_default(v) if not isinstance(v, (int, float, str)) else v}" for k, v in extra_data.items())
            message = f"{message} [{context}]"
        self.logger.log(level, message, exc_info=exc_info, extra={'extra_data': extra_data})

    def info(self, message: str, **kwargs):
        self._log_with_extra(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_extra(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_extra(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log_with_extra(logging.DEBUG, message, **kwargs)

def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Setup application logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for JSON log output
        enable_console: Whether to log to console
    """

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": JSONFormatter,
            },
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {},
        "loggers": {
            "escortcore": {
                "level": log_level,
                "handlers": [],
                "propagate": False
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": [],
                "propagate": False
            },
            "sqlalchemy.engine": {
                "level": "WARNING",  # SQL echo is too noisy for settlement traces
                "handlers": [],
                "propagate": False
            }
        },
        "root": {
            "level": log_level,
            "handlers": []
        }
    }

    handler_names = []
    if enable_console:
        config["handlers"]["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "standard",
            "level": log_level
        }
        handler_names.append("console")

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "formatter": "json",
            "level": log_level
        }
        handler_names.append("file")

    for logger_cfg in config["loggers"].values():
        logger_cfg["handlers"].extend(handler_names)
    config["root"]["handlers"].extend(handler_names)

    logging.config.dictConfig(config)

def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__, already prefixed with ``escortcore``)
    """
    if not name.startswith("escortcore"):
        name = f"escortcore.{name}"
    return StructuredLogger(name)

def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    job_id: Optional[int] = None,
    provider_id: Optional[int] = None,
) -> None:
    """
    Log business events for audit trails (claims, settlements, clawbacks).

    Args:
        event_type: e.g. 'job_claimed', 'commission_settled', 'commission_clawed_back'
        details: Event-specific details (amounts, wallet id, method ...)
        job_id: Job the event belongs to
        provider_id: Provider the event belongs to
    """
    audit_logger = get_logger("audit")
    audit_logger.info(
        f"Business event: {event_type}",
        event_type=event_type,
        job_id=job_id,
        provider_id=provider_id,
        **details
    )

def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    """
    Log performance metrics.

    Args:
        operation: Operation name
        duration_ms: Duration in milliseconds
        additional_data: Additional context data
    """
    perf_logger = get_logger("performance")
    data = {"duration_ms": duration_ms}
    if additional_data:
        data.update(additional_data)

    perf_logger.info(
        f"Performance: {operation}",
        operation=operation,
        **data
    )
