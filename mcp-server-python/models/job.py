"""
Work-order document models.

A ``Job`` is the only shared mutable resource of the workflow core. It embeds
its audit history and dependency list; the store keeps those as addressable
rows so one element can be updated without rewriting the whole document.

All models use camelCase keys on the wire (``assignedToGF``,
``hasFailedAudit``...) and snake_case attributes in Python.
"""

import uuid
from typing import List, Optional

from pydantic import Field

from models.status import AuditStatus, DependencyStatus, JobStatus
from schemas.common import CamelDocument


def new_record_id() -> str:
    """Generate an identifier for an embedded audit or dependency record."""
    return uuid.uuid4().hex


class CorrectionPhoto(CamelDocument):
    """Proof-of-correction photo reference (the file itself lives elsewhere)."""

    name: str
    url: Optional[str] = None
    upload_date: Optional[str] = None
    uploaded_by: Optional[str] = None


class AuditRecord(CamelDocument):
    """A single utility audit and its go-back sub-flow."""

    id: str = Field(default_factory=new_record_id)
    audit_number: Optional[str] = None
    audit_date: Optional[str] = None
    received_date: Optional[str] = None
    inspector_name: Optional[str] = None
    inspector_id: Optional[str] = None

    result: str
    status: str = AuditStatus.PENDING_QA.value

    # Populated only for failed audits
    infraction_type: Optional[str] = None
    infraction_description: Optional[str] = None
    spec_reference: Optional[str] = None

    qa_reviewed_date: Optional[str] = None
    qa_reviewed_by: Optional[str] = None
    qa_decision: Optional[str] = None
    qa_notes: Optional[str] = None
    specs_referenced: List[str] = Field(default_factory=list)
    dispute_reason: Optional[str] = None

    correction_assigned_to: Optional[str] = None
    correction_assigned_date: Optional[str] = None
    correction_notes: Optional[str] = None
    correction_description: Optional[str] = None
    correction_photos: List[CorrectionPhoto] = Field(default_factory=list)
    correction_completed_date: Optional[str] = None
    correction_completed_by: Optional[str] = None

    resolved_date: Optional[str] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None


class Dependency(CamelDocument):
    """External prerequisite for field work (USA ticket, traffic control...)."""

    id: str = Field(default_factory=new_record_id)
    type: str
    status: str = DependencyStatus.REQUIRED.value
    description: str = ""
    scheduled_date: Optional[str] = None
    completed_date: Optional[str] = None
    ticket_number: str = ""
    notes: str = ""


class Job(CamelDocument):
    """Work order document."""

    id: Optional[int] = None
    title: Optional[str] = None
    wo_number: Optional[str] = None
    pm_number: Optional[str] = None
    address: Optional[str] = None

    status: str = JobStatus.NEW.value

    assigned_to_gf: Optional[str] = Field(default=None, alias="assignedToGF")
    assigned_to_gf_date: Optional[str] = Field(default=None, alias="assignedToGFDate")
    assigned_to_gf_by: Optional[str] = Field(default=None, alias="assignedToGFBy")

    pre_field_date: Optional[str] = None
    pre_field_notes: Optional[str] = None
    site_conditions: Optional[str] = None
    bid_amount: Optional[float] = None
    bid_notes: Optional[str] = None
    estimated_hours: Optional[float] = None
    crew_size: Optional[int] = None
    crew_scheduled_date: Optional[str] = None

    stuck_date: Optional[str] = None
    stuck_by: Optional[str] = None
    stuck_reason: Optional[str] = None

    safety_gate_cleared: Optional[bool] = None
    safety_gate_cleared_at: Optional[str] = None
    safety_gate_cleared_by: Optional[str] = None

    crew_submitted_date: Optional[str] = None
    crew_submitted_by: Optional[str] = None
    crew_submission_notes: Optional[str] = None

    # GF -> QA -> PM review chain
    gf_review_date: Optional[str] = None
    gf_reviewed_by: Optional[str] = None
    gf_review_status: Optional[str] = None
    gf_review_notes: Optional[str] = None
    qa_review_date: Optional[str] = None
    qa_reviewed_by: Optional[str] = None
    qa_review_status: Optional[str] = None
    qa_review_notes: Optional[str] = None
    qa_specs_referenced: List[str] = Field(default_factory=list)
    pm_approval_date: Optional[str] = None
    pm_approved_by: Optional[str] = None
    pm_approval_status: Optional[str] = None
    pm_approval_notes: Optional[str] = None

    completed_date: Optional[str] = None
    completed_by: Optional[str] = None

    utility_submitted_date: Optional[str] = None
    utility_visible: bool = False
    utility_status: Optional[str] = None

    billed_date: Optional[str] = None
    invoiced_date: Optional[str] = None

    # Audit aggregate (derived, written only by the recompute step)
    has_failed_audit: bool = False
    failed_audit_count: int = 0
    passed_audit_date: Optional[str] = None

    audit_history: List[AuditRecord] = Field(default_factory=list)
    dependencies: List[Dependency] = Field(default_factory=list)

    version: int = 1
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# Job attributes that live in dedicated store columns or child tables rather
# than in the jobs.payload_json document.
COLUMN_BACKED_JOB_FIELDS = frozenset(
    {
        "id",
        "status",
        "assigned_to_gf",
        "has_failed_audit",
        "failed_audit_count",
        "passed_audit_date",
        "audit_history",
        "dependencies",
        "version",
        "created_at",
        "updated_at",
    }
)


def job_payload(job: Job) -> dict:
    """Serialize the document part of a job (everything not column-backed)."""
    return job.model_dump(mode="json", by_alias=True, exclude=set(COLUMN_BACKED_JOB_FIELDS))


def job_info(job: Job) -> dict:
    """Short job summary used alongside audit listings."""
    return {
        "id": job.id,
        "title": job.title,
        "woNumber": job.wo_number,
        "pmNumber": job.pm_number,
        "address": job.address,
        "status": job.status,
    }
