"""Pydantic schemas for the job dependency tools."""

from __future__ import annotations

from typing import Optional

from pydantic import field_validator

from models.status import DependencyStatus, DependencyType
from schemas.common import DbPathMixin, JobIdMixin, StrictIgnoreRequest

ALLOWED_DEPENDENCY_TYPES = frozenset(t.value for t in DependencyType)
ALLOWED_DEPENDENCY_STATUSES = frozenset(s.value for s in DependencyStatus)


def _check_member(value: Optional[str], allowed: frozenset, field_name: str) -> Optional[str]:
    if value is None:
        return None
    if value not in allowed:
        raise ValueError(
            f"Invalid {field_name}: '{value}'. Allowed values: {', '.join(sorted(allowed))}"
        )
    return value


class AddJobDependencyRequest(DbPathMixin, JobIdMixin, StrictIgnoreRequest):
    """Request schema for add_job_dependency."""

    type: str
    description: Optional[str] = None
    scheduled_date: Optional[str] = None
    ticket_number: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, value: str) -> str:
        return _check_member(value, ALLOWED_DEPENDENCY_TYPES, "type")


class UpdateJobDependencyRequest(DbPathMixin, JobIdMixin, StrictIgnoreRequest):
    """Request schema for update_job_dependency. Omitted fields are left as is."""

    dependency_id: str
    type: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None
    scheduled_date: Optional[str] = None
    completed_date: Optional[str] = None
    ticket_number: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, value: Optional[str]) -> Optional[str]:
        return _check_member(value, ALLOWED_DEPENDENCY_TYPES, "type")

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: Optional[str]) -> Optional[str]:
        return _check_member(value, ALLOWED_DEPENDENCY_STATUSES, "status")
