"""Structured logging configuration with routing context.

This module provides structured JSON logging with:
- Correlation IDs for tracing one payment across cascade attempts
- Merchant and checkout fields stamped on every record
- Masking helper for provider credentials
"""
from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from heypay_routing.config import RoutingSettings

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
merchant_id_var: ContextVar[Optional[str]] = ContextVar("merchant_id", default=None)
checkout_id_var: ContextVar[Optional[str]] = ContextVar("checkout_id", default=None)

_CONTEXT_FIELDS = ("correlation_id", "merchant_id", "checkout_id")

_RESERVED_ATTRS = frozenset((
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
) + _CONTEXT_FIELDS)

MASK_PATTERN = "***"


class RoutingContextFilter(logging.Filter):
    """Logging filter that adds routing context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        record.merchant_id = merchant_id_var.get()
        record.checkout_id = checkout_id_var.get()
        return True


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key in _CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure logging for a process hosting the routing engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Use JSON structured logging (True) or simple format (False)
        log_file: Optional file path for logging output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_output:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - "
            "[%(correlation_id)s %(merchant_id)s %(checkout_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(RoutingContextFilter())
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(RoutingContextFilter())
        root_logger.addHandler(file_handler)


def setup_logging(settings: "RoutingSettings") -> None:
    """Configure logging from RoutingSettings and quiet HTTP client loggers."""
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"cor_{uuid.uuid4().hex[:16]}"


def mask_secret(value: Optional[str], show_chars: int = 4) -> str:
    """Mask a credential, keeping only its prefix for identification."""
    if not value or len(value) <= show_chars * 2:
        return MASK_PATTERN
    return f"{value[:show_chars]}...{MASK_PATTERN}"


class routing_context:
    """Context manager that stamps merchant/checkout/correlation IDs on logs."""

    def __init__(
        self,
        merchant_id: Optional[str] = None,
        checkout_id: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ):
        self.merchant_id = merchant_id
        self.checkout_id = checkout_id
        self.correlation_id = correlation_id
        self._tokens: list = []

    def __enter__(self) -> "routing_context":
        if self.correlation_id or correlation_id_var.get() is None:
            self._tokens.append(correlation_id_var.set(
                self.correlation_id or generate_correlation_id()
            ))
        if self.merchant_id:
            self._tokens.append(merchant_id_var.set(self.merchant_id))
        if self.checkout_id:
            self._tokens.append(checkout_id_var.set(self.checkout_id))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for token in reversed(self._tokens):
            token.var.reset(token)
        self._tokens.clear()
