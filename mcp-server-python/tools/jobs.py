"""
MCP tool handlers for the job document: create_job, get_job,
update_job_status and review_job.

Status changes go through the job lifecycle (policy check, then side-effect
stamps) and are persisted with a write conditional on the job version, so a
request built on a stale read is rejected with STALE_STATE instead of
overwriting a newer change.
"""

import logging
from typing import Any, Dict, List

from pydantic import ValidationError

from config import get_config
from db.jobs_store import JobsStore
from models.errors import ToolError, create_internal_error, create_validation_error
from models.job import Dependency, Job
from schemas.dependencies import ALLOWED_DEPENDENCY_STATUSES, ALLOWED_DEPENDENCY_TYPES
from schemas.jobs import (
    CreateJobRequest,
    GetJobRequest,
    ReviewJobRequest,
    ReviewJobResponse,
    UpdateJobStatusRequest,
    UpdateJobStatusResponse,
)
from utils.job_lifecycle import REVIEW_OUTCOMES, apply_job_review, apply_job_transition
from utils.job_transition_policy import get_valid_next_statuses
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import get_current_utc_timestamp

logger = logging.getLogger(__name__)


def parse_dependencies(items: List[Dict[str, Any]]) -> List[Dependency]:
    """
    Parse dependency payloads (camelCase or snake_case keys).

    Raises:
        ToolError: VALIDATION_ERROR for a malformed item or an unknown
            type/status
    """
    dependencies = []
    for index, item in enumerate(items):
        try:
            dependency = Dependency.model_validate(item)
        except ValidationError as e:
            error = map_pydantic_validation_error(e)
            raise create_validation_error(f"Dependency at index {index}: {error.message}") from e

        if dependency.type not in ALLOWED_DEPENDENCY_TYPES:
            raise create_validation_error(
                f"Dependency at index {index}: invalid type '{dependency.type}'"
            )
        if dependency.status not in ALLOWED_DEPENDENCY_STATUSES:
            raise create_validation_error(
                f"Dependency at index {index}: invalid status '{dependency.status}'"
            )
        dependencies.append(dependency)
    return dependencies


def create_job(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a work order in status ``new``.

    The database file and schema are created on first use.

    Args:
        args: Dictionary containing:
            - title, wo_number, pm_number, address (str, optional)
            - dependencies (list, optional): Dependency objects with
              ``type`` and optional status/description/scheduledDate/
              ticketNumber/notes
            - db_path (str, optional): Database path override

    Returns:
        {"job": {...}} with the stored document (camelCase keys), or the
        standard error object.
    """
    try:
        request = CreateJobRequest.model_validate(args)
        dependencies = parse_dependencies(request.dependencies)

        job = Job(
            title=request.title,
            wo_number=request.wo_number,
            pm_number=request.pm_number,
            address=request.address,
            dependencies=dependencies,
        )

        timestamp = get_current_utc_timestamp()
        with JobsStore(
            request.db_path, create=True, timeout=get_config().db_timeout_seconds
        ) as store:
            stored = store.create_job(job, timestamp)
            store.commit()

        logger.info("Created job %s (%s)", stored.id, stored.wo_number or "no WO number")
        return {"job": stored.to_document()}

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()


def get_job(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Whole-document read of one job.

    Returns:
        {
            "job": {...},                  # camelCase document incl. auditHistory
            "validNextStatuses": [str]     # successors of the current status
        }
    """
    try:
        request = GetJobRequest.model_validate(args)

        with JobsStore(request.db_path, timeout=get_config().db_timeout_seconds) as store:
            job = store.load_job(request.job_id)

        return {
            "job": job.to_document(),
            "validNextStatuses": get_valid_next_statuses(job.status),
        }

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()


def update_job_status(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Move a job to a new lifecycle status.

    Steps:
    1. Validate the request shape
    2. Read the job inside a write transaction
    3. Check the transition (aliases, graph, evidence gates) and stamp the
       target status side effects on the in-memory job
    4. Write the job conditionally on its version and commit

    Any rejection in step 3 or 4 leaves the stored job untouched.

    Args:
        args: Dictionary containing:
            - job_id (int): Job to update
            - status (str): Target status (canonical or legacy alias)
            - fields (dict, optional): Gate evidence and optional details,
              camelCase keys
            - actor (str, optional): Acting user for the stamps
            - expected_version (int, optional): Version the caller read;
              defaults to the version read in step 2
            - db_path (str, optional): Database path override

    Returns:
        {
            "job_id": int,
            "previous_status": str,
            "status": str,
            "version": int,
            "job": {...}
        }

        On error: UNKNOWN_STATUS, INVALID_TRANSITION, MISSING_REQUIRED_FIELDS
        (with details.missing_fields), VALIDATION_ERROR, JOB_NOT_FOUND,
        STALE_STATE (retryable), DB_NOT_FOUND, DB_ERROR, INTERNAL_ERROR.
    """
    try:
        request = UpdateJobStatusRequest.model_validate(args)

        timestamp = get_current_utc_timestamp()
        with JobsStore(request.db_path, timeout=get_config().db_timeout_seconds) as store:
            job = store.load_job(request.job_id)
            previous_status = job.status
            expected_version = (
                request.expected_version if request.expected_version is not None else job.version
            )

            apply_job_transition(
                job, request.status, request.fields, actor=request.actor, now=timestamp
            )

            new_version = store.save_job(job, expected_version=expected_version, timestamp=timestamp)
            store.commit()

        job.version = new_version
        job.updated_at = timestamp

        logger.info("Job %s: %s -> %s", job.id, previous_status, job.status)
        return UpdateJobStatusResponse(
            job_id=job.id,
            previous_status=previous_status,
            status=job.status,
            version=new_version,
            job=job.to_document(),
        ).model_dump(exclude_none=True)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()


def review_job(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    GF, QA or PM review of a job waiting in pending_gf_review,
    pending_qa_review or pending_pm_approval.

    ``approve`` moves the job one stage forward (PM approval makes it
    ready_to_submit); ``reject`` and ``request_revision`` send it back one
    stage. The stage's review fields are stamped on the job and the write is
    conditional on the job version, as for update_job_status.

    Args:
        args: Dictionary containing:
            - job_id (int): Job under review
            - action (str): "approve", "reject" or "request_revision"
            - notes (str, optional): Reviewer notes
            - specs_referenced (list[str], optional): Specs QA cited
            - actor (str, optional): Reviewer
            - expected_version (int, optional): Version the caller read
            - db_path (str, optional): Database path override

    Returns:
        {
            "job_id": int,
            "previous_status": str,
            "status": str,
            "review_status": "approved" | "rejected" | "revision_requested",
            "version": int,
            "job": {...}
        }

        On error: INVALID_DECISION, INVALID_TRANSITION (job not waiting on a
        review), VALIDATION_ERROR, JOB_NOT_FOUND, STALE_STATE (retryable),
        DB_NOT_FOUND, DB_ERROR, INTERNAL_ERROR.
    """
    try:
        request = ReviewJobRequest.model_validate(args)

        timestamp = get_current_utc_timestamp()
        with JobsStore(request.db_path, timeout=get_config().db_timeout_seconds) as store:
            job = store.load_job(request.job_id)
            previous_status = job.status
            expected_version = (
                request.expected_version if request.expected_version is not None else job.version
            )

            apply_job_review(
                job,
                request.action,
                notes=request.notes,
                specs_referenced=request.specs_referenced,
                actor=request.actor,
                now=timestamp,
            )

            new_version = store.save_job(job, expected_version=expected_version, timestamp=timestamp)
            store.commit()

        job.version = new_version
        job.updated_at = timestamp

        review_status = REVIEW_OUTCOMES[request.action]
        logger.info(
            "Job %s review %s: %s -> %s", job.id, review_status, previous_status, job.status
        )
        return ReviewJobResponse(
            job_id=job.id,
            previous_status=previous_status,
            status=job.status,
            review_status=review_status,
            version=new_version,
            job=job.to_document(),
        ).model_dump(exclude_none=True)

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()
