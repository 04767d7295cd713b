"""
Audit record workflow and job-level audit aggregate.

Each utility audit on a job runs its own small state machine, parallel to
the job lifecycle:

    pass  -> closed                       (terminal, never reviewed)
    fail  -> pending_qa
    pending_qa -> correction_assigned     (QA accepts the infraction)
    pending_qa -> disputed                (QA disputes it, terminal)
    correction_assigned -> correction_submitted   (crew uploads proof)
    correction_submitted -> resolved      (QA approves the correction)

The job carries a derived aggregate: ``hasFailedAudit`` is true while any
failed audit is still active (not resolved, closed or disputed), and
``failedAuditCount`` counts every failed audit ever recorded.

All functions here mutate in-memory ``Job``/``AuditRecord`` objects. Every
input is checked before the first assignment, so a rejected call never
leaves a half-updated record behind.
"""

import logging
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError

from models.errors import (
    ErrorCode,
    create_audit_error,
    create_audit_not_found_error,
    create_validation_error,
)
from models.job import AuditRecord, CorrectionPhoto, Job
from models.status import (
    INACTIVE_AUDIT_STATUSES,
    AuditResult,
    AuditStatus,
    InfractionType,
    JobStatus,
    QADecision,
)
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import get_current_utc_timestamp, is_blank

logger = logging.getLogger(__name__)

# Audit status -> statuses it may move to
AUDIT_TRANSITIONS = MappingProxyType(
    {
        AuditStatus.PENDING_QA.value: frozenset(
            {AuditStatus.CORRECTION_ASSIGNED.value, AuditStatus.DISPUTED.value}
        ),
        # resolved directly from correction_assigned is a QA close-out
        AuditStatus.CORRECTION_ASSIGNED.value: frozenset(
            {AuditStatus.CORRECTION_SUBMITTED.value, AuditStatus.RESOLVED.value}
        ),
        AuditStatus.CORRECTION_SUBMITTED.value: frozenset({AuditStatus.RESOLVED.value}),
        AuditStatus.DISPUTED.value: frozenset(),
        AuditStatus.RESOLVED.value: frozenset(),
        AuditStatus.CLOSED.value: frozenset(),
    }
)

VALID_RESULTS = frozenset(r.value for r in AuditResult)
VALID_DECISIONS = frozenset(d.value for d in QADecision)
VALID_INFRACTION_TYPES = frozenset(t.value for t in InfractionType)

DEFAULT_RESOLUTION_NOTES = "Correction approved"


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def is_active_failure(record: AuditRecord) -> bool:
    """A failed audit that still counts against the job."""
    return record.result == AuditResult.FAIL.value and record.status not in INACTIVE_AUDIT_STATUSES


def has_active_failures(records: Iterable[AuditRecord]) -> bool:
    return any(is_active_failure(record) for record in records)


def find_audit(job: Job, audit_id: str) -> AuditRecord:
    """
    Look up an audit record on a job by identifier.

    Raises:
        ToolError: AUDIT_NOT_FOUND if the job has no such record
    """
    for record in job.audit_history:
        if record.id == audit_id:
            return record
    raise create_audit_not_found_error(audit_id)


def check_audit_transition(record: AuditRecord, target: str) -> None:
    """
    Ensure ``record`` may move to ``target``.

    Raises:
        ToolError: INVALID_AUDIT_TRANSITION when the edge is not allowed
    """
    allowed = AUDIT_TRANSITIONS.get(record.status, frozenset())
    if target not in allowed:
        raise create_audit_error(
            ErrorCode.INVALID_AUDIT_TRANSITION,
            f'Audit {record.id} is "{record.status}" and cannot move to "{target}"',
        )


def recompute_job_readiness(job: Job, promote: bool = False) -> bool:
    """
    Recompute the job's audit aggregate from its audit history.

    Sets ``has_failed_audit`` to whether any failed audit is still active.
    When ``promote`` is true and no active failure remains, the job itself
    moves to ``ready_to_submit``: a job with every go-back cleared is ready
    to go back to the utility. This is the only place the audit workflow
    writes the job's lifecycle status.

    Args:
        job: Job whose ``audit_history`` is current
        promote: Whether a fully cleared job should be promoted

    Returns:
        True if the job status was promoted
    """
    job.has_failed_audit = has_active_failures(job.audit_history)
    if promote and not job.has_failed_audit:
        job.status = JobStatus.READY_TO_SUBMIT.value
        return True
    return False


def record_audit(
    job: Job,
    result: Union[str, AuditResult],
    infraction_description: Optional[str] = None,
    infraction_type: Optional[str] = None,
    spec_reference: Optional[str] = None,
    audit_number: Optional[str] = None,
    audit_date: Optional[str] = None,
    inspector_name: Optional[str] = None,
    inspector_id: Optional[str] = None,
    now: Optional[str] = None,
) -> AuditRecord:
    """
    Record a utility audit outcome on ``job``.

    A passing audit is closed immediately and sets ``passedAuditDate``. A
    failing audit enters QA review (``pending_qa``), bumps
    ``failedAuditCount`` and raises the job's ``hasFailedAudit`` flag.

    Raises:
        ToolError: INVALID_AUDIT_RESULT for anything but pass/fail,
            MISSING_INFRACTION_DESCRIPTION for a failure without a description,
            VALIDATION_ERROR for an unknown infraction type
    """
    result = _plain(result)
    if result not in VALID_RESULTS:
        raise create_audit_error(
            ErrorCode.INVALID_AUDIT_RESULT, 'Audit result must be "pass" or "fail"'
        )

    failed = result == AuditResult.FAIL.value
    if failed and is_blank(infraction_description):
        raise create_audit_error(
            ErrorCode.MISSING_INFRACTION_DESCRIPTION,
            "Infraction description is required for failed audits",
        )

    infraction_type = _plain(infraction_type)
    if failed and infraction_type is not None and infraction_type not in VALID_INFRACTION_TYPES:
        raise create_validation_error(
            f"Invalid infraction_type: '{infraction_type}'. "
            f"Allowed values: {', '.join(sorted(VALID_INFRACTION_TYPES))}"
        )

    now = now or get_current_utc_timestamp()
    record = AuditRecord(
        result=result,
        status=AuditStatus.PENDING_QA.value if failed else AuditStatus.CLOSED.value,
        audit_number=audit_number,
        audit_date=audit_date or now,
        received_date=now,
        inspector_name=inspector_name,
        inspector_id=inspector_id,
    )
    if failed:
        record.infraction_type = infraction_type or InfractionType.OTHER.value
        record.infraction_description = infraction_description
        record.spec_reference = spec_reference

    job.audit_history.append(record)
    if failed:
        job.failed_audit_count += 1
        recompute_job_readiness(job, promote=False)
    else:
        job.passed_audit_date = now

    return record


def apply_audit_decision(
    record: AuditRecord,
    job: Job,
    decision: Union[str, QADecision],
    assignee: Optional[Any] = None,
    notes: Optional[str] = None,
    dispute_reason: Optional[str] = None,
    specs_referenced: Optional[Sequence[str]] = None,
    actor: Optional[str] = None,
    now: Optional[str] = None,
    correction_notes: Optional[str] = None,
) -> None:
    """
    Apply a QA review decision to a failed audit in ``pending_qa``.

    ``accepted`` moves the audit to ``correction_assigned``; with an assignee
    the correction assignment is stamped and the assignee becomes the job's
    general foreman. ``disputed`` closes the audit as disputed and recomputes
    ``hasFailedAudit`` over the remaining active failures, which clears the
    flag when this was the last one. The job status never changes here.

    Args:
        record: Audit record to review (must belong to ``job``)
        job: Job owning the record
        decision: "accepted" or "disputed"
        assignee: Foreman to carry out the correction (accepted only)
        notes: QA notes on the review
        dispute_reason: Why the infraction is disputed
        specs_referenced: Spec sections QA cited
        actor: Reviewing QA user
        now: Timestamp for the stamps
        correction_notes: Instructions for the assigned foreman (accepted
            with an assignee only)

    Raises:
        ToolError: INVALID_DECISION or INVALID_AUDIT_TRANSITION; nothing is
            modified in that case
    """
    decision = _plain(decision)
    if decision not in VALID_DECISIONS:
        raise create_audit_error(
            ErrorCode.INVALID_DECISION, 'Decision must be "accepted" or "disputed"'
        )

    accepted = decision == QADecision.ACCEPTED.value
    target = AuditStatus.CORRECTION_ASSIGNED.value if accepted else AuditStatus.DISPUTED.value
    check_audit_transition(record, target)

    now = now or get_current_utc_timestamp()
    record.qa_reviewed_date = now
    record.qa_reviewed_by = actor
    record.qa_decision = decision
    record.qa_notes = notes or ""
    record.specs_referenced = list(specs_referenced or [])
    record.status = target

    if accepted:
        if not is_blank(assignee):
            record.correction_assigned_to = str(assignee)
            record.correction_assigned_date = now
            record.correction_notes = correction_notes or ""
            job.assigned_to_gf = str(assignee)
    else:
        record.dispute_reason = dispute_reason
        recompute_job_readiness(job, promote=False)


def submit_correction(
    record: AuditRecord,
    photos: Sequence[Union[CorrectionPhoto, dict]],
    description: Optional[str] = None,
    actor: Optional[str] = None,
    now: Optional[str] = None,
) -> List[CorrectionPhoto]:
    """
    Submit correction proof for an audit in ``correction_assigned``.

    Photos are appended to any already on the record; uploads without their
    own date/uploader are stamped with ``now``/``actor``.

    Returns:
        The photos that were appended

    Raises:
        ToolError: INVALID_AUDIT_TRANSITION, MISSING_CORRECTION_PHOTOS, or
            VALIDATION_ERROR for a malformed photo
    """
    check_audit_transition(record, AuditStatus.CORRECTION_SUBMITTED.value)

    if not photos:
        raise create_audit_error(
            ErrorCode.MISSING_CORRECTION_PHOTOS, "Correction photos are required as proof"
        )

    now = now or get_current_utc_timestamp()
    parsed: List[CorrectionPhoto] = []
    for photo in photos:
        try:
            item = photo if isinstance(photo, CorrectionPhoto) else CorrectionPhoto.model_validate(photo)
        except ValidationError as e:
            raise map_pydantic_validation_error(e) from e
        parsed.append(
            item.model_copy(
                update={
                    "upload_date": item.upload_date or now,
                    "uploaded_by": item.uploaded_by or actor,
                }
            )
        )

    record.correction_photos.extend(parsed)
    record.correction_description = description
    record.correction_completed_date = now
    record.correction_completed_by = actor
    record.status = AuditStatus.CORRECTION_SUBMITTED.value
    return parsed


def resolve_audit(
    record: AuditRecord,
    job: Job,
    notes: Optional[str] = None,
    actor: Optional[str] = None,
    now: Optional[str] = None,
    allow_direct_resolve: bool = True,
) -> bool:
    """
    Approve the correction and resolve the audit.

    Normally valid from ``correction_submitted``. Resolving straight from
    ``correction_assigned`` (QA closing the go-back without a crew
    submission) is tolerated unless ``allow_direct_resolve`` is off, and is
    logged as a warning.

    After resolving, the job aggregate is recomputed across all audits with
    promotion: when no active failure remains the job becomes
    ``ready_to_submit``.

    Returns:
        True if the job was promoted to ready_to_submit

    Raises:
        ToolError: INVALID_AUDIT_TRANSITION
    """
    if record.status == AuditStatus.CORRECTION_ASSIGNED.value and not allow_direct_resolve:
        raise create_audit_error(
            ErrorCode.INVALID_AUDIT_TRANSITION,
            f"Audit {record.id} has no submitted correction to approve",
        )
    check_audit_transition(record, AuditStatus.RESOLVED.value)

    if record.status == AuditStatus.CORRECTION_ASSIGNED.value:
        logger.warning(
            "Audit %s on job %s resolved without a submitted correction", record.id, job.id
        )

    now = now or get_current_utc_timestamp()
    record.status = AuditStatus.RESOLVED.value
    record.resolved_date = now
    record.resolved_by = actor
    record.resolution_notes = notes or DEFAULT_RESOLUTION_NOTES

    return recompute_job_readiness(job, promote=True)
