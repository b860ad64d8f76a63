"""
Error types and error logging utilities for the rule engine.

This module provides:
- The rule engine exception hierarchy
- Standard error codes per error category
- Standardized error logging with operation context (redacted)
"""

import logging
from typing import Optional, Dict, Any, List

from inbox_rules.redact import redact_value

logger = logging.getLogger(__name__)


class ErrorCode:
    """Standard error codes for different error categories."""
    # Configuration errors (1xxx)
    CONFIG_MISSING = "E1001"
    CONFIG_INVALID = "E1002"

    # Parse errors (2xxx)
    PARSE_EMPTY_INPUT = "E2001"
    PARSE_AI_UNAVAILABLE = "E2002"
    PARSE_AI_FAILED = "E2003"
    PARSE_SCHEMA_INVALID = "E2004"

    # Validation errors (3xxx)
    RULE_INVALID = "E3001"
    IMPORT_EMPTY = "E3002"

    # Lookup errors (4xxx)
    RULE_NOT_FOUND = "E4001"

    # Store errors (5xxx)
    STORE_FAILED = "E5001"

    # Audit errors (6xxx)
    AUDIT_WRITE_FAILED = "E6001"

    # Sweep errors (7xxx)
    SWEEP_TASK_FAILED = "E7001"

    UNKNOWN_ERROR = "E9001"


class RuleEngineError(Exception):
    """Base exception for all rule engine errors."""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = context or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ParseError(RuleEngineError):
    """Raised when free text cannot be reduced to a valid rule."""
    default_code = ErrorCode.PARSE_AI_FAILED


class ValidationError(RuleEngineError):
    """
    Raised when rule records are malformed.

    For bulk payloads, ``issues`` lists every rejected record as
    ``{'index': <position>, 'errors': [<message>, ...]}``.
    """
    default_code = ErrorCode.RULE_INVALID

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        issues: Optional[List[Dict[str, Any]]] = None
    ):
        super().__init__(message, code=code, context=context)
        self.issues = issues or []


class NotFoundError(RuleEngineError):
    """Raised when a rule id does not exist."""
    default_code = ErrorCode.RULE_NOT_FOUND


class StoreError(RuleEngineError):
    """Raised when the underlying persistence layer fails."""
    default_code = ErrorCode.STORE_FAILED


class AuditWriteError(RuleEngineError):
    """Audit row could not be written. Logged only, never propagated."""
    default_code = ErrorCode.AUDIT_WRITE_FAILED


def log_error_with_context(
    error: Exception,
    error_code: str,
    operation: str,
    context: Optional[Dict[str, Any]] = None,
    level: int = logging.ERROR,
    include_traceback: bool = False
) -> None:
    """
    Write one "[code] operation failed" line for an exception.

    The message and context values pass through redaction first, so
    addresses never reach the log in full.

    Args:
        error: Exception being reported
        error_code: One of the ErrorCode constants
        operation: What was being attempted, e.g. "Deleting rule"
        context: Extra key/value pairs; None values are dropped
        level: Log level to use
        include_traceback: Attach exc_info to the record

    Example:
        >>> try:
        ...     store.delete_rule(rule_id)
        ... except StoreError as e:
        ...     log_error_with_context(
        ...         e, ErrorCode.STORE_FAILED,
        ...         "Deleting rule",
        ...         context={'rule_id': rule_id}
        ...     )
    """
    pairs = [f"{key}={value}" for key, value in redact_value(context or {}).items() if value is not None]
    suffix = f" | Context: {', '.join(pairs)}" if pairs else ""

    logger.log(
        level,
        f"[{error_code}] {operation} failed: {type(error).__name__}: {redact_value(str(error))}{suffix}",
        exc_info=include_traceback
    )
