"""
MCP tool handlers for the QA work queues: qa_pending_review,
qa_failed_audits and qa_stats. All read-only.
"""

from typing import Any, Dict

from pydantic import ValidationError

from config import get_config
from db.jobs_reader import (
    get_connection,
    query_failed_audit_jobs,
    query_pending_review_jobs,
    query_qa_stats,
)
from models.errors import ToolError, create_internal_error
from schemas.qa import QaListRequest, QaListResponse, QaStatsRequest, QaStatsResponse
from utils.pydantic_error_mapper import map_pydantic_validation_error
from utils.validation import validate_limit


def qa_pending_review(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    Jobs waiting in ``pending_qa_review``, most recently crew-submitted first.

    Args:
        args: Dictionary containing:
            - limit (int, optional): 1-1000 (default: WORKORDER_QA_LIST_LIMIT)
            - db_path (str, optional)

    Returns:
        {"jobs": [summary...], "count": int}
    """
    try:
        request = QaListRequest.model_validate(args)
        limit = validate_limit(request.limit, default=get_config().qa_list_limit)

        with get_connection(request.db_path) as conn:
            jobs = query_pending_review_jobs(conn, limit)

        return QaListResponse(jobs=jobs, count=len(jobs)).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()


def qa_failed_audits(args: Dict[str, Any]) -> Dict[str, Any]:
    """Jobs carrying at least one active failed audit, most recently updated first."""
    try:
        request = QaListRequest.model_validate(args)
        limit = validate_limit(request.limit, default=get_config().qa_list_limit)

        with get_connection(request.db_path) as conn:
            jobs = query_failed_audit_jobs(conn, limit)

        return QaListResponse(jobs=jobs, count=len(jobs)).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()


def qa_stats(args: Dict[str, Any]) -> Dict[str, Any]:
    """
    QA dashboard counts.

    Returns:
        {
            "pending_review": int,
            "failed_audits": int,
            "total_failed_audits": int,
            "audits_by_status": {status: count}
        }
    """
    try:
        request = QaStatsRequest.model_validate(args)

        with get_connection(request.db_path) as conn:
            stats = query_qa_stats(conn)

        return QaStatsResponse(**stats).model_dump()

    except ValidationError as e:
        return map_pydantic_validation_error(e).to_dict()

    except ToolError as e:
        return e.to_dict()

    except Exception as e:
        internal_error = create_internal_error(message=str(e), original_error=e)
        return internal_error.to_dict()
