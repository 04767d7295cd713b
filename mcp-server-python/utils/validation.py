"""
Input validation utilities shared by the work-order tools.

Validates list limits and generates the timestamps used for lifecycle and
audit stamps.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from models.errors import create_validation_error

# Constants for QA list validation
DEFAULT_LIMIT = 50
MIN_LIMIT = 1
MAX_LIMIT = 1000


def validate_limit(limit: Optional[int], default: int = DEFAULT_LIMIT) -> int:
    """
    Validate the limit parameter.

    Args:
        limit: The requested page size (None for default)
        default: Value used when limit is None

    Returns:
        Validated limit value

    Raises:
        ToolError: If limit is invalid
    """
    if limit is None:
        return default

    # bool is a subclass of int in Python, reject explicitly
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise create_validation_error(
            f"Invalid limit type: expected integer, got {type(limit).__name__}"
        )

    if limit < MIN_LIMIT:
        raise create_validation_error(f"Invalid limit: {limit} is below minimum of {MIN_LIMIT}")

    if limit > MAX_LIMIT:
        raise create_validation_error(f"Invalid limit: {limit} exceeds maximum of {MAX_LIMIT}")

    return limit


def is_blank(value: Any) -> bool:
    """True for None, empty strings and whitespace-only strings."""
    if value is None:
        return True
    return isinstance(value, str) and not value.strip()


def get_current_utc_timestamp() -> str:
    """
    Generate a UTC timestamp in ISO 8601 format with millisecond precision.

    Returns a timestamp string in the format: YYYY-MM-DDTHH:MM:SS.mmmZ
    Example: 2026-02-04T03:47:36.966Z

    Used for every lifecycle/audit stamp (``assignedToGFDate``,
    ``qaReviewedDate``, ``resolvedDate``...) and the store's ``updated_at``.
    All writes made by one operation share the same timestamp.

    Returns:
        ISO 8601 UTC timestamp string with millisecond precision and Z suffix
    """
    now = datetime.now(timezone.utc)
    # Format with millisecond precision and replace +00:00 with Z
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")
