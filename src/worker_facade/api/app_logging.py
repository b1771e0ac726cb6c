"""
Structured logging configuration.
"""

import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Invocation context variables
invocation_id_var: ContextVar[Optional[str]] = ContextVar('invocation_id', default=None)
trigger_var: ContextVar[Optional[str]] = ContextVar('trigger', default=None)

HANDLER_NAME = 'worker_facade'

_STANDARD_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName',
    'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'message', 'taskName'
}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        level = record.levelname
        logger = record.name
        message = record.getMessage()

        log_data: Dict[str, Any] = {
            "timestamp": timestamp,
            "level": level,
            "logger": logger,
            "message": message,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        invocation_id = invocation_id_var.get()
        if invocation_id:
            log_data["invocation_id"] = invocation_id
        trigger = trigger_var.get()
        if trigger:
            log_data["trigger"] = trigger

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Extra fields passed via ``extra={...}``
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                log_data[key] = value

        try:
            return json.dumps(log_data, default=str)
        except (TypeError, ValueError) as e:
            safe_log_data = {
                "timestamp": timestamp,
                "level": level,
                "logger": logger,
                "message": message,
                "serialization_error": {
                    "exception": str(e),
                    "log_data_repr": str(log_data)
                }
            }
            return json.dumps(safe_log_data, default=str)


def setup_logging(level: str = "INFO", use_json: bool = True):
    """Set up logging configuration.

    Worker runtimes capture stdout, so a single stdout handler serves both
    local runs and deployed instances.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if use_json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
    handler.setFormatter(formatter)
    handler.set_name(HANDLER_NAME)

    root_logger = logging.getLogger()

    # Replace handlers installed by an earlier call to prevent duplicates
    for existing_handler in root_logger.handlers[:]:
        if existing_handler.get_name() == HANDLER_NAME:
            root_logger.removeHandler(existing_handler)
            existing_handler.close()

    root_logger.setLevel(log_level)
    root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)

    root_logger.info("Logging configured: level=%s, use_json=%s", level, use_json)

    return root_logger


def set_invocation_id(invocation_id: str):
    """Set the current invocation ID."""
    invocation_id_var.set(invocation_id)


def get_invocation_id() -> Optional[str]:
    """Get the current invocation ID."""
    return invocation_id_var.get()


def set_trigger(trigger: Optional[str]):
    """Set the trigger currently being handled."""
    trigger_var.set(trigger)
