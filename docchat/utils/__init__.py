"""
Utility functions and helpers.

This module provides common utility functions used across the application,
including logging, async utilities, text helpers and atomic file writes.
"""

from .logger import get_logger, setup_logging
from .async_utils import (
    AsyncRetry,
    AsyncRWLock,
    KeyedLock,
    async_timer,
    gather_with_concurrency,
    run_async,
    run_async_to_completion,
)
from .text_utils import (
    document_stem,
    is_safe_name,
    normalize_whitespace,
    sanitize_name,
    truncate_text,
)
from .files import read_json, write_json_atomic, write_text_atomic

__all__ = [
    "get_logger",
    "setup_logging",
    "AsyncRetry",
    "AsyncRWLock",
    "KeyedLock",
    "async_timer",
    "gather_with_concurrency",
    "run_async",
    "run_async_to_completion",
    "document_stem",
    "is_safe_name",
    "normalize_whitespace",
    "sanitize_name",
    "truncate_text",
    "read_json",
    "write_json_atomic",
    "write_text_atomic",
]
