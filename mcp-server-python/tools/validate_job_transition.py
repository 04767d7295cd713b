"""
MCP tool handler for validate_job_transition.

Pure policy check: resolves legacy aliases, checks the transition graph and
the evidence gates, and reports the decision. Nothing is read or written.
"""

from typing import Any, Dict

from pydantic import ValidationError

from models.errors import ToolError, create_internal_error
from schemas.jobs import ValidateJobTransitionRequest
from utils.job_transition_policy import get_valid_next_statuses, validate_transition
from utils.pydantic_error_mapper import map_pydantic_validation_error


def validate_job_transition(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check whether a job may move from one status to another.

    A rejected transition is a normal result, not an error: the response
    carries ``valid: false`` with the reason and code. Only a malformed
    request returns the top-level error object.

    Args:
        args: Dictionary containing:
            - from_status (str): Current status (canonical or legacy alias)
            - to_status (str): Desired status (canonical or legacy alias)
            - fields (dict, optional): Gate evidence, camelCase keys
              (assignedToGF, crewScheduledDate, safetyGateCleared, stuckReason)

    Returns:
        Dictionary with structure:
        {
            "valid": bool,
            "canonicalFrom": str,       # omitted for unknown statuses
            "canonicalTo": str,         # omitted for unknown statuses
            "requiredFields": [str],    # missing gate fields; [] when valid
            "error": str,               # only when rejected
            "code": str,                # only when rejected
            "validNextStatuses": [str]  # successors of the source status
        }

        On request error, returns:
        {
            "error": {
                "code": "VALIDATION_ERROR" | "INTERNAL_ERROR",
                "message": str,
                "retryable": bool
            }
        }
    """
    try:
        request = ValidateJobTransitionRequest.model_validate(args)

        result = validate_transition(request.from_status, request.to_status, request.fields)
        response = result.to_dict()
        response["validNextStatuses"] = get_valid_next_statuses(request.from_status)
        return response

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()
