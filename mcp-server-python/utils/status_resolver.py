"""
Legacy status alias resolution.

Older clients still send a handful of historical status strings. They are
accepted on input and mapped to canonical ``JobStatus`` values here, before
any comparison or storage; they are never written back.
"""

from typing import Any, Mapping

from models.status import LEGACY_STATUS_MAP


def resolve_status(status: Any, aliases: Mapping[str, str] = LEGACY_STATUS_MAP) -> Any:
    """
    Map a legacy status alias to its canonical value.

    Non-string input (including ``None``) and unknown strings pass through
    unchanged; rejecting unknown statuses is the transition validator's job.

    Args:
        status: Raw status value from a request or stored document
        aliases: Alias table (defaults to the built-in legacy map)

    Returns:
        Canonical status string, or the input unchanged

    Examples:
        >>> resolve_status("in-progress")
        'in_progress'
        >>> resolve_status("scheduled")
        'scheduled'
        >>> resolve_status(None) is None
        True
    """
    if not isinstance(status, str) or not status:
        return status
    return aliases.get(status, status)


def is_legacy_status(status: Any, aliases: Mapping[str, str] = LEGACY_STATUS_MAP) -> bool:
    """Return True if ``status`` is one of the historical alias strings."""
    return isinstance(status, str) and status in aliases
