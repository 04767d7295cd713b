"""
Error model for the work-order workflow tools.

Every failure the workflow can report is a ``ToolError`` carrying one of the
codes below. Handlers turn it into the MCP error payload with
``to_dict()``:

    {"error": {"code": ..., "message": ..., "retryable": ..., "details"?: {...}}}

Only conflicts and transient infrastructure problems are retryable; every
business-rule rejection is final until the caller changes the request.
"""

import os
import re
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(str, Enum):
    """Structured error codes for the MCP tools."""
    # Job transitions
    UNKNOWN_STATUS = "UNKNOWN_STATUS"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    MISSING_REQUIRED_FIELDS = "MISSING_REQUIRED_FIELDS"

    # Audit workflow
    MISSING_INFRACTION_DESCRIPTION = "MISSING_INFRACTION_DESCRIPTION"
    MISSING_CORRECTION_PHOTOS = "MISSING_CORRECTION_PHOTOS"
    INVALID_DECISION = "INVALID_DECISION"
    INVALID_AUDIT_RESULT = "INVALID_AUDIT_RESULT"
    INVALID_AUDIT_TRANSITION = "INVALID_AUDIT_TRANSITION"
    AUDIT_NOT_FOUND = "AUDIT_NOT_FOUND"

    # Store lookups and conflicts
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    DEPENDENCY_NOT_FOUND = "DEPENDENCY_NOT_FOUND"
    STALE_STATE = "STALE_STATE"

    VALIDATION_ERROR = "VALIDATION_ERROR"
    DB_NOT_FOUND = "DB_NOT_FOUND"
    DB_ERROR = "DB_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Codes a caller may retry unchanged (after reloading, for STALE_STATE)
RETRYABLE_BY_DEFAULT = frozenset({ErrorCode.STALE_STATE, ErrorCode.INTERNAL_ERROR})


class ToolError(Exception):
    """
    Workflow failure with a machine-readable code.

    Args:
        code: Error code
        message: Human-readable message, safe to show to the caller
        retryable: Defaults by code (see ``RETRYABLE_BY_DEFAULT``)
        original_error: Wrapped exception, never serialized
        details: Extra machine-readable context, e.g. ``missing_fields``
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        retryable: Optional[bool] = None,
        original_error: Optional[Exception] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = code in RETRYABLE_BY_DEFAULT if retryable is None else retryable
        self.original_error = original_error
        self.details = details

    def to_dict(self) -> dict:
        payload = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            payload["details"] = self.details
        return {"error": payload}


# Scrubbing for messages that come from sqlite3 or arbitrary exceptions.
_SQL_PATTERNS = (
    (re.compile(r"SQL:.*", re.IGNORECASE), ""),
    (re.compile(r"[\"'][^\"']*\b(SELECT|INSERT|UPDATE|DELETE)\b[^\"']*[\"']", re.IGNORECASE), "[SQL query]"),
    (re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE)\b.*", re.IGNORECASE), "[SQL query]"),
)
_ABSOLUTE_DIR = re.compile(r"/\S+/")


def sanitize_path(path: str) -> str:
    """Basename for absolute paths; relative paths are returned unchanged."""
    return os.path.basename(path) if os.path.isabs(path) else path


def first_line(message: str) -> str:
    """Drop everything after the first line (tracebacks, query echoes)."""
    return message.split("\n", 1)[0].strip()


def sanitize_sql_error(message: str) -> str:
    """Remove SQL text and absolute directories from a database error message."""
    for pattern, replacement in _SQL_PATTERNS:
        message = pattern.sub(replacement, message)
    return _ABSOLUTE_DIR.sub("[path]/", message).strip()


def create_validation_error(message: str) -> ToolError:
    """Malformed or out-of-range request input."""
    return ToolError(ErrorCode.VALIDATION_ERROR, message)


def create_transition_error(
    code: ErrorCode, message: str, missing_fields: Optional[List[str]] = None
) -> ToolError:
    """
    Rejected job transition (UNKNOWN_STATUS, INVALID_TRANSITION,
    MISSING_REQUIRED_FIELDS).

    Missing gate fields are echoed back in ``details`` so the caller can
    prompt for exactly what is needed.
    """
    details = {"missing_fields": list(missing_fields)} if missing_fields else None
    return ToolError(code, message, details=details)


def create_audit_error(code: ErrorCode, message: str) -> ToolError:
    """Rejected audit workflow or job review step."""
    return ToolError(code, message)


def create_job_not_found_error(job_id: Any) -> ToolError:
    return ToolError(ErrorCode.JOB_NOT_FOUND, f"Job not found: {job_id}")


def create_audit_not_found_error(audit_id: Any) -> ToolError:
    return ToolError(ErrorCode.AUDIT_NOT_FOUND, f"Audit not found: {audit_id}")


def create_dependency_not_found_error(dependency_id: Any) -> ToolError:
    return ToolError(ErrorCode.DEPENDENCY_NOT_FOUND, f"Dependency not found: {dependency_id}")


def create_stale_state_error(message: str) -> ToolError:
    """
    A conditional write matched no row because another request changed the
    record first. The caller should reload and try again.
    """
    return ToolError(ErrorCode.STALE_STATE, message)


def create_db_not_found_error(db_path: str) -> ToolError:
    return ToolError(ErrorCode.DB_NOT_FOUND, f"Database not found: {sanitize_path(db_path)}")


def create_db_error(
    message: str, retryable: bool = False, original_error: Optional[Exception] = None
) -> ToolError:
    """
    SQLite failure. Locked/busy databases are passed in as retryable by the
    store; everything else is not.
    """
    return ToolError(
        ErrorCode.DB_ERROR,
        f"Database error: {first_line(sanitize_sql_error(message))}",
        retryable=retryable,
        original_error=original_error,
    )


def create_internal_error(message: str, original_error: Optional[Exception] = None) -> ToolError:
    """Unexpected exception caught at the tool boundary."""
    return ToolError(
        ErrorCode.INTERNAL_ERROR,
        f"Internal error: {first_line(message)}",
        original_error=original_error,
    )
