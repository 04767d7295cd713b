"""Pydantic schemas for the job lifecycle tools."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import Field, field_validator

from schemas.common import (
    ActorMixin,
    DbPathMixin,
    JobIdMixin,
    StrictIgnoreRequest,
    StrictResponse,
)


class ValidateJobTransitionRequest(StrictIgnoreRequest):
    """Request schema for validate_job_transition.

    Statuses stay loosely checked here: unknown or missing values are
    reported by the transition policy as UNKNOWN_STATUS, not as a schema
    error.
    """

    from_status: Optional[str] = None
    to_status: Optional[str] = None
    fields: dict[str, Any] = Field(default_factory=dict)

    @field_validator("fields", mode="before")
    @classmethod
    def coerce_fields_none(cls, value: Any) -> Any:
        if value is None:
            return {}
        return value


class CreateJobRequest(DbPathMixin, StrictIgnoreRequest):
    """Request schema for create_job."""

    title: Optional[str] = None
    wo_number: Optional[str] = None
    pm_number: Optional[str] = None
    address: Optional[str] = None
    dependencies: list[dict[str, Any]] = Field(default_factory=list)


class GetJobRequest(DbPathMixin, JobIdMixin, StrictIgnoreRequest):
    """Request schema for get_job."""


class UpdateJobStatusRequest(DbPathMixin, JobIdMixin, ActorMixin, StrictIgnoreRequest):
    """Request schema for update_job_status."""

    status: str
    fields: dict[str, Any] = Field(default_factory=dict)
    expected_version: Optional[int] = None

    @field_validator("status")
    @classmethod
    def validate_status_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Invalid status: cannot be empty")
        return value

    @field_validator("fields", mode="before")
    @classmethod
    def coerce_fields_none(cls, value: Any) -> Any:
        if value is None:
            return {}
        return value


class UpdateJobStatusResponse(StrictResponse):
    """Success response schema for update_job_status."""

    job_id: int
    previous_status: str
    status: str
    version: int
    job: dict[str, Any]


class ReviewJobRequest(DbPathMixin, JobIdMixin, ActorMixin, StrictIgnoreRequest):
    """Request schema for review_job.

    ``action`` is checked by the review step so an unknown value comes back
    as INVALID_DECISION rather than a schema error.
    """

    action: str
    notes: Optional[str] = None
    specs_referenced: list[str] = Field(default_factory=list)
    expected_version: Optional[int] = None

    @field_validator("specs_referenced", mode="before")
    @classmethod
    def coerce_specs_none(cls, value: Any) -> Any:
        if value is None:
            return []
        return value


class ReviewJobResponse(StrictResponse):
    """Success response schema for review_job."""

    job_id: int
    previous_status: str
    status: str
    review_status: str
    version: int
    job: dict[str, Any]
