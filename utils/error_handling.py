"""Centralized error handling utilities."""

from __future__ import annotations

import functools
import logging
import traceback
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError


logger = logging.getLogger(__name__)


class MeepleVaultError(Exception):
    """Base exception for MeepleVault application errors."""

    def __init__(self, message: str, code: str = "UNKNOWN_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class TransientStorageError(MeepleVaultError):
    """Raised when a read or write against the store fails and should be retried."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message, "TRANSIENT_STORAGE_ERROR", {"operation": operation})
        self.operation = operation


class MalformedRecordError(MeepleVaultError):
    """Raised when a change cannot be interpreted at all (unknown kind or shape)."""

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message, "MALFORMED_RECORD", {"kind": kind})
        self.kind = kind


class UnsupportedDialectError(MeepleVaultError):
    """Raised when the bound database has no upsert construct the stats writer can use."""

    def __init__(self, dialect: str):
        super().__init__(
            f"Stats upserts are not supported on {dialect}", "UNSUPPORTED_DIALECT", {"dialect": dialect}
        )
        self.dialect = dialect


def log_error(error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
    """Log error with context information."""

    error_info = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "traceback": traceback.format_exc(),
    }

    if context:
        error_info["context"] = context

    if isinstance(error, MeepleVaultError):
        error_info["error_code"] = error.code
        error_info["error_details"] = error.details

    logger.error("Application error occurred", extra=error_info)


def translate_storage_errors(func):
    """Decorator re-raising SQLAlchemy failures as TransientStorageError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as e:
            log_error(e, {"function": func.__name__})
            raise TransientStorageError(
                f"Storage operation failed in {func.__name__}: {str(e)}",
                operation=func.__name__,
            ) from e

    return wrapper


def safe_int_conversion(value: Any, default: int = 0) -> int:
    """Safely convert value to integer."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
