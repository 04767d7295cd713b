"""
Job lifecycle transitions.

Applies a validated status change to an in-memory ``Job`` and stamps the
side effects each target status carries (who assigned the foreman and when,
when pre-fielding started, why the job is stuck, who cleared the safety
gate...). Persistence is the caller's job.

``apply_job_review`` drives the GF -> QA -> PM review chain on top of the
same transition policy: each stage stamps its reviewer, notes and outcome, then
moves the job forward on approval or back one stage otherwise.

Validation always happens first: the transition policy check and the
parsing of optional fields both complete before the job is touched, so a
rejected request leaves the job exactly as it was.
"""

import logging
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

from pydantic import ValidationError

from models.errors import ErrorCode, create_audit_error, create_transition_error
from models.job import Job
from models.status import JobStatus, ReviewAction, ReviewStatus
from schemas.common import CamelDocument
from utils.job_transition_policy import (
    DEFAULT_TRANSITION_TABLE,
    AssignmentEvidence,
    SafetyGateEvidence,
    TransitionResult,
    TransitionTable,
    check_transition_or_raise,
)
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.status_resolver import is_legacy_status, resolve_status
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)


class LifecycleFields(CamelDocument):
    """Optional job details that may accompany any status change.

    ``crewScheduledDate`` and ``stuckReason`` double as gate evidence, so
    they take any value the transition policy admitted.
    """

    crew_scheduled_date: Any = None
    crew_size: Optional[int] = None
    estimated_hours: Optional[float] = None
    pre_field_notes: Optional[str] = None
    site_conditions: Optional[str] = None
    bid_amount: Optional[float] = None
    bid_notes: Optional[str] = None
    submission_notes: Optional[str] = None
    stuck_reason: Any = None


_FALSE_TEXT = ("false", "0", "f", "n", "no", "off")


def _as_text(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value if isinstance(value, str) else str(value)


def _as_flag(value: Any) -> bool:
    """Safety gate evidence as stored: "false"/"no"/"0" text reads as False."""
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_TEXT
    return bool(value)


def _is_given(value: Any) -> bool:
    return value is not None and value != ""


def _apply_detail_fields(job: Job, details: LifecycleFields) -> None:
    if _is_given(details.crew_scheduled_date):
        job.crew_scheduled_date = _as_text(details.crew_scheduled_date)
    if details.crew_size is not None:
        job.crew_size = details.crew_size
    if details.estimated_hours is not None:
        job.estimated_hours = details.estimated_hours
    if details.pre_field_notes is not None:
        job.pre_field_notes = details.pre_field_notes
    if details.site_conditions is not None:
        job.site_conditions = details.site_conditions
    if details.bid_amount is not None:
        job.bid_amount = details.bid_amount
    if details.bid_notes is not None:
        job.bid_notes = details.bid_notes


def apply_job_transition(
    job: Job,
    to_status: Any,
    fields: Optional[Mapping[str, Any]] = None,
    actor: Optional[str] = None,
    now: Optional[str] = None,
    table: TransitionTable = DEFAULT_TRANSITION_TABLE,
) -> TransitionResult:
    """
    Move ``job`` to ``to_status`` and stamp the status side effects.

    Gate evidence is read from ``fields`` only (not from values already on
    the job), so every gated transition carries its own evidence.

    Side effects by target status:
        assigned_to_gf: assignedToGF; assignedToGFDate/By if not yet set
        pre_fielding: preFieldDate if not yet set
        stuck: stuckDate, stuckBy, stuckReason
        in_progress: safetyGateCleared from the gate evidence; when cleared,
            safetyGateClearedAt/By if not yet set
        pending_gf_review: crewSubmittedDate/By, crewSubmissionNotes
        ready_to_submit: completedDate/By if not yet set
        submitted: utilitySubmittedDate, utilityVisible, utilityStatus
        billed / invoiced: billedDate / invoicedDate

    ``go_back`` leaves ``hasFailedAudit`` alone: that flag is
    derived from the audit history and only the audit recompute writes it.

    Args:
        job: Job to mutate in place
        to_status: Target status (canonical or legacy alias)
        fields: Request payload with gate evidence and optional details
        actor: Acting user recorded in the stamps
        now: Timestamp for the stamps (defaults to current UTC time)
        table: Transition table to validate against

    Returns:
        The admitted TransitionResult

    Raises:
        ToolError: UNKNOWN_STATUS, INVALID_TRANSITION, MISSING_REQUIRED_FIELDS,
            or VALIDATION_ERROR for a malformed optional detail; the job is
            not modified
    """
    fields = dict(fields or {})
    result = check_transition_or_raise(job.status, to_status, fields, table)
    if is_legacy_status(to_status):
        logger.debug("Job %s: legacy status %r stored as %r", job.id, to_status, result.canonical_to)

    try:
        details = LifecycleFields.model_validate(fields)
    except ValidationError as e:
        raise map_pydantic_validation_error(e) from e

    now = now or get_current_utc_timestamp()
    evidence = result.evidence
    target = result.canonical_to

    _apply_detail_fields(job, details)
    job.status = target

    if target == JobStatus.ASSIGNED_TO_GF.value:
        if isinstance(evidence, AssignmentEvidence):
            job.assigned_to_gf = _as_text(evidence.assigned_to_gf)
        if not job.assigned_to_gf_date:
            job.assigned_to_gf_date = now
            job.assigned_to_gf_by = actor

    elif target == JobStatus.PRE_FIELDING.value:
        if not job.pre_field_date:
            job.pre_field_date = now

    elif target == JobStatus.STUCK.value:
        job.stuck_date = now
        job.stuck_by = actor
        if _is_given(details.stuck_reason):
            job.stuck_reason = _as_text(details.stuck_reason)

    elif target == JobStatus.IN_PROGRESS.value:
        if isinstance(evidence, SafetyGateEvidence):
            job.safety_gate_cleared = _as_flag(evidence.safety_gate_cleared)
        if job.safety_gate_cleared and not job.safety_gate_cleared_at:
            job.safety_gate_cleared_at = now
            job.safety_gate_cleared_by = actor

    elif target == JobStatus.PENDING_GF_REVIEW.value:
        job.crew_submitted_date = now
        job.crew_submitted_by = actor
        if details.submission_notes is not None:
            job.crew_submission_notes = details.submission_notes

    elif target == JobStatus.READY_TO_SUBMIT.value:
        if not job.completed_date:
            job.completed_date = now
            job.completed_by = actor

    elif target == JobStatus.SUBMITTED.value:
        job.utility_submitted_date = now
        job.utility_visible = True
        job.utility_status = JobStatus.SUBMITTED.value

    elif target == JobStatus.BILLED.value:
        job.billed_date = now

    elif target == JobStatus.INVOICED.value:
        job.invoiced_date = now

    logger.debug(
        "Job %s moved %s -> %s", job.id, result.canonical_from, result.canonical_to
    )
    return result


# Review stage -> (target on approve, target on reject / request_revision)
REVIEW_STAGES = MappingProxyType(
    {
        JobStatus.PENDING_GF_REVIEW.value: (
            JobStatus.PENDING_QA_REVIEW.value,
            JobStatus.IN_PROGRESS.value,
        ),
        JobStatus.PENDING_QA_REVIEW.value: (
            JobStatus.PENDING_PM_APPROVAL.value,
            JobStatus.PENDING_GF_REVIEW.value,
        ),
        JobStatus.PENDING_PM_APPROVAL.value: (
            JobStatus.READY_TO_SUBMIT.value,
            JobStatus.PENDING_QA_REVIEW.value,
        ),
    }
)

REVIEW_OUTCOMES = MappingProxyType(
    {
        ReviewAction.APPROVE.value: ReviewStatus.APPROVED.value,
        ReviewAction.REJECT.value: ReviewStatus.REJECTED.value,
        ReviewAction.REQUEST_REVISION.value: ReviewStatus.REVISION_REQUESTED.value,
    }
)


def apply_job_review(
    job: Job,
    action: Any,
    notes: Optional[str] = None,
    specs_referenced: Optional[Sequence[str]] = None,
    actor: Optional[str] = None,
    now: Optional[str] = None,
    table: TransitionTable = DEFAULT_TRANSITION_TABLE,
) -> TransitionResult:
    """
    Record a GF, QA or PM review of the crew's work and move the job on.

    The stage follows from the job's status:
        pending_gf_review: approve -> pending_qa_review, otherwise back to
            in_progress; stamps gfReviewDate/By/Notes/Status
        pending_qa_review: approve -> pending_pm_approval, otherwise back to
            pending_gf_review; stamps qaReviewDate/By/Notes/Status and
            qaSpecsReferenced when given
        pending_pm_approval: approve -> ready_to_submit (with completedDate/By),
            otherwise back to pending_qa_review; stamps pmApprovalDate/By/
            Notes/Status

    The move itself is checked against ``table`` like any other transition.

    Raises:
        ToolError: INVALID_DECISION for an unknown action, INVALID_TRANSITION
            when the job is not waiting on a review (or ``table`` lacks the
            edge); the job is not modified
    """
    action = getattr(action, "value", action)
    if action not in REVIEW_OUTCOMES:
        raise create_audit_error(
            ErrorCode.INVALID_DECISION,
            'Action must be "approve", "reject" or "request_revision"',
        )

    stage = resolve_status(job.status)
    if stage not in REVIEW_STAGES:
        raise create_transition_error(
            ErrorCode.INVALID_TRANSITION, f'Job is not in a reviewable state: "{job.status}"'
        )

    approve_target, send_back_target = REVIEW_STAGES[stage]
    target = approve_target if action == ReviewAction.APPROVE.value else send_back_target
    result = check_transition_or_raise(job.status, target, {}, table)

    now = now or get_current_utc_timestamp()
    outcome = REVIEW_OUTCOMES[action]

    if stage == JobStatus.PENDING_GF_REVIEW.value:
        job.gf_review_date = now
        job.gf_reviewed_by = actor
        job.gf_review_notes = notes
        job.gf_review_status = outcome

    elif stage == JobStatus.PENDING_QA_REVIEW.value:
        job.qa_review_date = now
        job.qa_reviewed_by = actor
        job.qa_review_notes = notes
        job.qa_review_status = outcome
        if specs_referenced:
            job.qa_specs_referenced = list(specs_referenced)

    else:
        job.pm_approval_date = now
        job.pm_approved_by = actor
        job.pm_approval_notes = notes
        job.pm_approval_status = outcome
        if outcome == ReviewStatus.APPROVED.value:
            job.completed_date = now
            job.completed_by = actor

    job.status = result.canonical_to
    logger.debug("Job %s review at %s: %s -> %s", job.id, stage, outcome, job.status)
    return result
