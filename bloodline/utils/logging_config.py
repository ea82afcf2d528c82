import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

# Context variables for request tracking
request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
operation: ContextVar[Optional[str]] = ContextVar("operation", default=None)

SERVICE_NAME = "bloodline-ledger"


class ContextualJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that includes contextual information"""

    def __init__(self, *args, environment: str = "development", **kwargs):
        super().__init__(*args, **kwargs)
        self.environment = environment

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["environment"] = self.environment
        log_record["service"] = SERVICE_NAME

        if request_id.get():
            log_record["request_id"] = request_id.get()
        if operation.get():
            log_record["operation"] = operation.get()

        if record.exc_info and record.exc_info[0] is not None:
            log_record["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        # Structured payload passed as extra={"extra_fields": {...}}
        if hasattr(record, "extra_fields"):
            log_record.update(record.extra_fields)


def configure_logging(
    level: str = "INFO",
    environment: str = "development",
    log_to_file: bool = False,
    log_dir: str = "logs",
) -> logging.Logger:
    """Set up root logging handlers. Safe to call more than once."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    formatter = ContextualJsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(funcName)s:%(lineno)d %(message)s",
        environment=environment,
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        _setup_file_handlers(formatter, log_dir)

    # Reduce sqlalchemy noise in development
    if environment.lower() in ("development", "dev", "test"):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)

    return root_logger


def _setup_file_handlers(formatter: logging.Formatter, log_dir: str) -> None:
    os.makedirs(log_dir, exist_ok=True)
    root_logger = logging.getLogger()

    app_handler = RotatingFileHandler(
        os.path.join(log_dir, "app.log"), maxBytes=10_000_000, backupCount=10
    )
    app_handler.setFormatter(formatter)
    app_handler.setLevel(logging.INFO)
    root_logger.addHandler(app_handler)

    error_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, "error.log"), when="midnight", interval=1, backupCount=30
    )
    error_handler.setFormatter(formatter)
    error_handler.setLevel(logging.ERROR)
    root_logger.addHandler(error_handler)

    # Audit trail of committed status transitions
    audit_handler = TimedRotatingFileHandler(
        os.path.join(log_dir, "audit.log"), when="midnight", interval=1, backupCount=90
    )
    audit_handler.setFormatter(formatter)
    audit_logger = logging.getLogger("audit")
    audit_logger.addHandler(audit_handler)
    audit_logger.setLevel(logging.INFO)

    perf_handler = RotatingFileHandler(
        os.path.join(log_dir, "performance.log"), maxBytes=5_000_000, backupCount=5
    )
    perf_handler.setFormatter(formatter)
    perf_logger = logging.getLogger("performance")
    perf_logger.addHandler(perf_handler)
    perf_logger.setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance. Use __name__ as the name parameter."""
    return logging.getLogger(name)


def log_audit_event(
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
) -> None:
    """Log audit events"""
    audit_logger = logging.getLogger("audit")
    log_data = {
        "action": action,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "old_values": old_values,
        "new_values": new_values,
        "user_id": user_id,
    }
    audit_logger.info(f"Audit event: {action}", extra={"extra_fields": log_data})


def log_performance_metric(
    operation_name: str,
    duration_seconds: float,
    additional_metrics: Optional[Dict[str, Any]] = None,
) -> None:
    """Log performance metrics"""
    perf_logger = logging.getLogger("performance")

    log_data = {
        "operation": operation_name,
        "duration_seconds": round(duration_seconds, 4),
        "performance_category": "slow" if duration_seconds > 1.0 else "normal",
    }
    if additional_metrics:
        log_data.update(additional_metrics)

    perf_logger.info(
        f"Performance metric: {operation_name}", extra={"extra_fields": log_data}
    )


class LogContext:
    """Context manager for setting request context"""

    def __init__(self, req_id: Optional[str] = None, op: Optional[str] = None):
        self.request_id = req_id
        self.operation = op
        self.tokens = []

    def __enter__(self):
        if self.request_id:
            self.tokens.append(request_id.set(self.request_id))
        if self.operation:
            self.tokens.append(operation.set(self.operation))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for token in reversed(self.tokens):
            token.var.reset(token)
