"""
MCP tool handlers for the audit (go-back) workflow.

record_audit, review_audit, submit_audit_correction and resolve_audit each
persist exactly one audit record through ``AuditMutator``; get_job_audits
is a read.
"""

from typing import Any, Dict

from pydantic import ValidationError

from config import get_config
from db.jobs_store import JobsStore
from models.errors import ToolError, create_internal_error
from models.job import job_info
from schemas.audits import (
    AuditMutationResponse,
    GetJobAuditsRequest,
    JobAuditsResponse,
    RecordAuditRequest,
    ResolveAuditRequest,
    ReviewAuditRequest,
    SubmitAuditCorrectionRequest,
)
from utils.audit_mutator import AuditMutationOutcome, AuditMutator
from utils.pydantic_error_mapper import map_pydantic_validation_error


def _mutator(db_path) -> AuditMutator:
    return AuditMutator(db_path, timeout=get_config().db_timeout_seconds)


def _outcome_response(outcome: AuditMutationOutcome) -> Dict[str, Any]:
    return AuditMutationResponse(**outcome.to_dict()).model_dump(exclude_none=True)


def record_audit(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Record a utility audit outcome on a job.

    Args:
        args: Dictionary containing:
            - job_id (int): Audited job
            - result (str): "pass" or "fail"
            - infraction_description (str): Required when result is "fail"
            - infraction_type (str, optional): workmanship, materials, safety,
              incomplete, as_built, photos, clearances, grounding, other
              (default: other)
            - spec_reference, audit_number, audit_date, inspector_name,
              inspector_id (str, optional)
            - db_path (str, optional): Database path override

    Returns:
        {
            "job_id": int,
            "audit": {...},             # the new record, camelCase keys
            "has_failed_audit": bool,
            "promoted": false,
            "job_status": str
        }

        On error: INVALID_AUDIT_RESULT, MISSING_INFRACTION_DESCRIPTION,
        VALIDATION_ERROR, JOB_NOT_FOUND, DB_NOT_FOUND, DB_ERROR, INTERNAL_ERROR.
    """
    try:
        request = RecordAuditRequest.model_validate(args)

        outcome = _mutator(request.db_path).record(
            request.job_id,
            request.result,
            infraction_description=request.infraction_description,
            infraction_type=request.infraction_type,
            spec_reference=request.spec_reference,
            audit_number=request.audit_number,
            audit_date=request.audit_date,
            inspector_name=request.inspector_name,
            inspector_id=request.inspector_id,
        )
        return _outcome_response(outcome)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()


def review_audit(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    QA review of a failed audit in ``pending_qa``.

    ``accepted`` assigns the correction (and, with ``assign_to_gf``, makes
    that foreman the job's assignee). ``disputed`` closes the audit and
    clears ``hasFailedAudit`` when no other failure is active.

    Args:
        args: Dictionary containing:
            - job_id (int), audit_id (str)
            - decision (str): "accepted" or "disputed"
            - assign_to_gf (str, optional)
            - qa_notes, dispute_reason (str, optional)
            - correction_notes (str, optional): Instructions for the assigned
              foreman, stored only with assign_to_gf
            - specs_referenced (list[str], optional)
            - actor (str, optional): Reviewing QA user
            - db_path (str, optional)

    Returns:
        Audit mutation result (see record_audit) plus ``previous_status``.
        On error: INVALID_DECISION, INVALID_AUDIT_TRANSITION, AUDIT_NOT_FOUND,
        STALE_STATE (retryable), JOB_NOT_FOUND, ...
    """
    try:
        request = ReviewAuditRequest.model_validate(args)

        outcome = _mutator(request.db_path).review(
            request.job_id,
            request.audit_id,
            request.decision,
            assignee=request.assign_to_gf,
            notes=request.qa_notes,
            dispute_reason=request.dispute_reason,
            specs_referenced=request.specs_referenced,
            actor=request.actor,
            correction_notes=request.correction_notes,
        )
        return _outcome_response(outcome)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()


def submit_audit_correction(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Crew submits correction proof for an audit in ``correction_assigned``.

    Args:
        args: Dictionary containing:
            - job_id (int), audit_id (str)
            - photos (list): At least one {"name", "url"?, "uploadDate"?,
              "uploadedBy"?} object
            - description (str, optional)
            - actor (str, optional): Submitting user
            - db_path (str, optional)

    Returns:
        Audit mutation result. On error: MISSING_CORRECTION_PHOTOS,
        INVALID_AUDIT_TRANSITION, AUDIT_NOT_FOUND, STALE_STATE, ...
    """
    try:
        request = SubmitAuditCorrectionRequest.model_validate(args)

        outcome = _mutator(request.db_path).submit_correction(
            request.job_id,
            request.audit_id,
            request.photos,
            description=request.description,
            actor=request.actor,
        )
        return _outcome_response(outcome)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()


def resolve_audit(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    QA approves the correction and resolves the audit.

    When this clears the job's last active failure the job is promoted to
    ``ready_to_submit`` and ``promoted`` is true.

    Args:
        args: Dictionary containing:
            - job_id (int), audit_id (str)
            - resolution_notes (str, optional): Default "Correction approved"
            - actor (str, optional): Resolving QA user
            - db_path (str, optional)

    Returns:
        Audit mutation result. On error: INVALID_AUDIT_TRANSITION,
        AUDIT_NOT_FOUND, STALE_STATE (retryable), ...
    """
    try:
        request = ResolveAuditRequest.model_validate(args)

        outcome = _mutator(request.db_path).resolve(
            request.job_id,
            request.audit_id,
            notes=request.resolution_notes,
            actor=request.actor,
            allow_direct_resolve=get_config().allow_direct_resolve,
        )
        return _outcome_response(outcome)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()


def get_job_audits(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Audit history and aggregate of one job.

    Returns:
        {
            "auditHistory": [...],
            "hasFailedAudit": bool,
            "failedAuditCount": int,
            "passedAuditDate": str | null,
            "jobInfo": {"id", "title", "woNumber", "pmNumber", "address", "status"}
        }
    """
    try:
        request = GetJobAuditsRequest.model_validate(args)

        with JobsStore(request.db_path, timeout=get_config().db_timeout_seconds) as store:
            job = store.load_job(request.job_id)

        return JobAuditsResponse(
            auditHistory=[record.to_document() for record in job.audit_history],
            hasFailedAudit=job.has_failed_audit,
            failedAuditCount=job.failed_audit_count,
            passedAuditDate=job.passed_audit_date,
            jobInfo=job_info(job),
        ).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()
