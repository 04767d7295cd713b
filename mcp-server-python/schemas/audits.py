"""Pydantic schemas for the audit (go-back) tools."""

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


class AuditIdMixin(JobIdMixin):
    """Job id plus the audit record identifier."""

    audit_id: str

    @field_validator("audit_id")
    @classmethod
    def validate_audit_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Invalid audit_id: cannot be empty")
        return value


class RecordAuditRequest(DbPathMixin, JobIdMixin, StrictIgnoreRequest):
    """Request schema for record_audit.

    ``result`` and ``infraction_description`` are checked by the audit
    workflow so the caller gets INVALID_AUDIT_RESULT /
    MISSING_INFRACTION_DESCRIPTION rather than a generic schema error.
    """

    result: Optional[str] = None
    infraction_description: Optional[str] = None
    infraction_type: Optional[str] = None
    spec_reference: Optional[str] = None
    audit_number: Optional[str] = None
    audit_date: Optional[str] = None
    inspector_name: Optional[str] = None
    inspector_id: Optional[str] = None


class ReviewAuditRequest(DbPathMixin, AuditIdMixin, ActorMixin, StrictIgnoreRequest):
    """Request schema for review_audit."""

    decision: Optional[str] = None
    assign_to_gf: Optional[str] = None
    qa_notes: Optional[str] = None
    correction_notes: Optional[str] = None
    dispute_reason: Optional[str] = None
    specs_referenced: list[str] = Field(default_factory=list)


class SubmitAuditCorrectionRequest(DbPathMixin, AuditIdMixin, ActorMixin, StrictIgnoreRequest):
    """Request schema for submit_audit_correction."""

    photos: list[Any] = Field(default_factory=list)
    description: Optional[str] = None

    @field_validator("photos", mode="before")
    @classmethod
    def coerce_photos_none(cls, value: Any) -> Any:
        if value is None:
            return []
        return value


class ResolveAuditRequest(DbPathMixin, AuditIdMixin, ActorMixin, StrictIgnoreRequest):
    """Request schema for resolve_audit."""

    resolution_notes: Optional[str] = None


class GetJobAuditsRequest(DbPathMixin, JobIdMixin, StrictIgnoreRequest):
    """Request schema for get_job_audits."""


class AuditMutationResponse(StrictResponse):
    """Response schema shared by the audit mutation tools."""

    job_id: int
    audit: dict[str, Any]
    has_failed_audit: bool
    promoted: bool
    job_status: str
    previous_status: Optional[str] = None


class JobAuditsResponse(StrictResponse):
    """Response schema for get_job_audits (camelCase, as stored)."""

    auditHistory: list[dict[str, Any]]
    hasFailedAudit: bool
    failedAuditCount: int
    passedAuditDate: Optional[str] = None
    jobInfo: dict[str, Any]
