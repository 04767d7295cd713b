"""
Centralized, type-safe status definitions for the work-order workflow.

This module is the single source of truth for the status vocabularies used
across the application:

- ``JobStatus``: the 14 canonical work-order statuses stored on jobs.
- ``AuditResult`` / ``AuditStatus``: the outcome of a utility audit and the
  state of its go-back sub-flow.
- ``QADecision``: the QA reviewer's verdict on a failed audit.
- ``ReviewAction`` / ``ReviewStatus``: the GF -> QA -> PM review chain a
  job passes through before it is ready to submit.
- ``InfractionType``, ``DependencyType``, ``DependencyStatus``: supporting
  vocabularies for audit infractions and job dependencies.

All Enums inherit from ``(str, Enum)`` so that members compare equal to plain
strings and serialize naturally to JSON at API boundaries.
"""

from enum import Enum


class JobStatus(str, Enum):
    """Canonical statuses for the ``jobs`` table.

    Lifecycle (happy path):
        new -> assigned_to_gf -> pre_fielding -> scheduled -> in_progress
        -> pending_gf_review -> pending_qa_review -> pending_pm_approval
        -> ready_to_submit -> submitted -> billed -> invoiced

    ``stuck`` is a side branch off scheduled/in_progress and ``go_back``
    is reached from submitted when the utility rejects the work.
    """

    NEW = "new"
    ASSIGNED_TO_GF = "assigned_to_gf"
    PRE_FIELDING = "pre_fielding"
    SCHEDULED = "scheduled"
    STUCK = "stuck"
    IN_PROGRESS = "in_progress"
    PENDING_GF_REVIEW = "pending_gf_review"
    PENDING_QA_REVIEW = "pending_qa_review"
    PENDING_PM_APPROVAL = "pending_pm_approval"
    READY_TO_SUBMIT = "ready_to_submit"
    SUBMITTED = "submitted"
    GO_BACK = "go_back"
    BILLED = "billed"
    INVOICED = "invoiced"


# Historical status strings still accepted on input. Never stored.
LEGACY_STATUS_MAP = {
    "pending": JobStatus.NEW.value,
    "pre-field": JobStatus.PRE_FIELDING.value,
    "in-progress": JobStatus.IN_PROGRESS.value,
    "completed": JobStatus.READY_TO_SUBMIT.value,
}


class AuditResult(str, Enum):
    """Outcome of a utility inspection. Immutable once recorded."""

    PASS = "pass"
    FAIL = "fail"


class AuditStatus(str, Enum):
    """Statuses for a single audit record.

    Transitions:
        closed  (pass, terminal)
        pending_qa  ->  correction_assigned | disputed
        correction_assigned  ->  correction_submitted
        correction_submitted  ->  resolved
    """

    PENDING_QA = "pending_qa"
    CORRECTION_ASSIGNED = "correction_assigned"
    CORRECTION_SUBMITTED = "correction_submitted"
    DISPUTED = "disputed"
    RESOLVED = "resolved"
    CLOSED = "closed"


# A failed audit in one of these statuses no longer counts against the job
INACTIVE_AUDIT_STATUSES = frozenset(
    {AuditStatus.RESOLVED.value, AuditStatus.CLOSED.value, AuditStatus.DISPUTED.value}
)


class QADecision(str, Enum):
    """QA verdict on a failed audit."""

    ACCEPTED = "accepted"
    DISPUTED = "disputed"


class ReviewAction(str, Enum):
    """What a GF, QA or PM reviewer does with a job waiting on them."""

    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVISION = "request_revision"


class ReviewStatus(str, Enum):
    """Outcome stamped on the job for one review stage."""

    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


class InfractionType(str, Enum):
    WORKMANSHIP = "workmanship"
    MATERIALS = "materials"
    SAFETY = "safety"
    INCOMPLETE = "incomplete"
    AS_BUILT = "as_built"
    PHOTOS = "photos"
    CLEARANCES = "clearances"
    GROUNDING = "grounding"
    OTHER = "other"


class DependencyType(str, Enum):
    USA = "usa"
    VEGETATION = "vegetation"
    TRAFFIC_CONTROL = "traffic_control"
    NO_PARKS = "no_parks"
    CWC = "cwc"
    AFW_TYPE = "afw_type"
    SPECIAL_EQUIPMENT = "special_equipment"
    CIVIL = "civil"


class DependencyStatus(str, Enum):
    REQUIRED = "required"
    CHECK = "check"
    SCHEDULED = "scheduled"
    NOT_REQUIRED = "not_required"
