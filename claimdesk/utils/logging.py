"""Structured logging setup for the claims desk."""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from functools import wraps
from typing import Optional, Dict, Any
from pathlib import Path

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s%(context)s - %(message)s"

# Never mutated in place; every change sets a new dict
_context: ContextVar[Dict[str, Any]] = ContextVar("claimdesk_log_context", default={})


class ContextFilter(logging.Filter):
    """
    Add the caller's context fields to log records.

    Each field becomes a record attribute, and ``%(context)s`` renders
    them all as `` [claim_id=... component=...]`` (empty without context).
    Context lives in a ContextVar, so concurrent requests and timer threads
    never see each other's fields.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        context = _context.get()
        for key, value in context.items():
            setattr(record, key, value)
        record.context = (
            " [" + " ".join(f"{key}={value}" for key, value in context.items()) + "]"
            if context else ""
        )
        return True


_context_filter = ContextFilter()


def setup_logging(
    level: str = "INFO",
    log_format: str = DEFAULT_FORMAT,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up structured logging with optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format string for log messages; may use %(context)s
        log_file: Optional path to log file

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)
        root_logger.addHandler(file_handler)

    return root_logger


def set_context(**kwargs):
    """
    Set context fields for subsequent log messages of the current context.

    Example:
        set_context(claim_id="CLM20250001", component="assessment")
        logger.info("Saving worksheet")  # Will include claim_id and component

    Args:
        **kwargs: Context key-value pairs
    """
    _context.set({**_context.get(), **kwargs})


def clear_context():
    """Clear all context fields."""
    _context.set({})


def current_context() -> Dict[str, Any]:
    """Return a copy of the active context fields."""
    return dict(_context.get())


@contextmanager
def log_context(**kwargs):
    """Add context fields for the duration of a with-block."""
    token = _context.set({**_context.get(), **kwargs})
    try:
        yield
    finally:
        _context.reset(token)


def with_context(**context_kwargs):
    """
    Decorator to add context to all log messages within a function.

    Example:
        @with_context(component="report")
        def build(claim_id):
            set_context(claim_id=claim_id)
            logger.info("Assembling")  # Includes component and claim_id

    Args:
        **context_kwargs: Context key-value pairs
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            with log_context(**context_kwargs):
                return func(*args, **kwargs)

        return wrapper
    return decorator
