"""
MCP tool handlers for job dependencies (USA tickets, traffic control,
vegetation clearing...).

Each dependency is its own row, addressed by identifier; updating one never
rewrites the job document or its audit history.
"""

from typing import Any, Dict

from pydantic import ValidationError

from config import get_config
from db.jobs_store import JobsStore
from models.errors import ToolError, create_internal_error, create_validation_error
from models.job import Dependency
from schemas.dependencies import AddJobDependencyRequest, UpdateJobDependencyRequest
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import get_current_utc_timestamp

# Request fields that map onto Dependency attributes
_DEPENDENCY_FIELDS = (
    "type",
    "status",
    "description",
    "scheduled_date",
    "completed_date",
    "ticket_number",
    "notes",
)


def add_job_dependency(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Append a dependency (status ``required``) to a job.

    Returns:
        {"job_id": int, "dependency": {...}} or the standard error object
    """
    try:
        request = AddJobDependencyRequest.model_validate(args)

        dependency = Dependency(
            type=request.type,
            description=request.description or "",
            scheduled_date=request.scheduled_date,
            ticket_number=request.ticket_number or "",
            notes=request.notes or "",
        )

        with JobsStore(request.db_path, timeout=get_config().db_timeout_seconds) as store:
            store.add_dependency(request.job_id, dependency, get_current_utc_timestamp())
            store.commit()

        return {"job_id": request.job_id, "dependency": dependency.to_document()}

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()


def update_job_dependency(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Update one dependency by identifier. Omitted fields keep their value.

    Returns:
        {"job_id": int, "dependency": {...}} or the standard error object
        (DEPENDENCY_NOT_FOUND when the job has no such dependency)
    """
    try:
        request = UpdateJobDependencyRequest.model_validate(args)

        changes = {
            name: getattr(request, name)
            for name in _DEPENDENCY_FIELDS
            if getattr(request, name) is not None
        }
        if not changes:
            raise create_validation_error("No dependency fields to update")

        with JobsStore(request.db_path, timeout=get_config().db_timeout_seconds) as store:
            dependency = store.update_dependency(
                request.job_id, request.dependency_id, changes, get_current_utc_timestamp()
            )
            store.commit()

        return {"job_id": request.job_id, "dependency": dependency.to_document()}

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()
