"""
Read-only queries for the QA queues.

Provides read-only access to the work-order database with connection
management and deterministic query ordering.
"""

import json
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from db.jobs_store import resolve_db_path
from models.errors import (
    create_db_error,
    create_db_not_found_error,
)
from models.status import AuditResult, INACTIVE_AUDIT_STATUSES, JobStatus


@contextmanager
def get_connection(db_path: Optional[str] = None):
    """
    Context manager for read-only SQLite connections.

    Ensures connections are always properly closed, even on errors.

    Args:
        db_path: Optional database path override

    Yields:
        sqlite3.Connection: Database connection

    Raises:
        ToolError: If database file doesn't exist or connection fails
    """
    resolved_path = resolve_db_path(db_path)

    if not resolved_path.exists() or not resolved_path.is_file():
        raise create_db_not_found_error(str(resolved_path))

    conn = None
    try:
        # URI mode allows the read-only flag
        uri = f"file:{resolved_path}?mode=ro"
        conn = sqlite3.connect(uri, uri=True)
        conn.row_factory = sqlite3.Row

        yield conn

    except sqlite3.OperationalError as e:
        error_msg = str(e)
        if "unable to open database" in error_msg.lower():
            raise create_db_not_found_error(str(resolved_path)) from e
        else:
            raise create_db_error(error_msg, retryable=True, original_error=e) from e

    except sqlite3.Error as e:
        raise create_db_error(str(e), retryable=False, original_error=e) from e

    finally:
        if conn is not None:
            conn.close()


# Subquery counting a job's active failed audits
_ACTIVE_AUDITS_SQL = f"""
    (SELECT COUNT(*) FROM audit_records a
     WHERE a.job_id = jobs.id
       AND a.result = '{AuditResult.FAIL.value}'
       AND a.status NOT IN ({", ".join(f"'{s}'" for s in sorted(INACTIVE_AUDIT_STATUSES))}))
"""


def _row_to_summary(row: sqlite3.Row) -> Dict[str, Any]:
    payload = json.loads(row["payload_json"])
    return {
        "id": row["id"],
        "title": payload.get("title"),
        "woNumber": payload.get("woNumber"),
        "pmNumber": payload.get("pmNumber"),
        "address": payload.get("address"),
        "status": row["status"],
        "assignedToGF": row["assigned_to_gf"],
        "hasFailedAudit": bool(row["has_failed_audit"]),
        "failedAuditCount": row["failed_audit_count"],
        "activeFailedAudits": row["active_failed_audits"],
        "crewSubmittedDate": payload.get("crewSubmittedDate"),
        "updatedAt": row["updated_at"],
    }


def query_pending_review_jobs(conn: sqlite3.Connection, limit: int) -> List[Dict[str, Any]]:
    """
    Jobs waiting for QA review, most recently crew-submitted first.

    Args:
        conn: Database connection
        limit: Maximum number of rows to return

    Returns:
        List of job summaries

    Raises:
        ToolError: If query execution fails
    """
    try:
        rows = conn.execute(
            f"""
            SELECT id, status, assigned_to_gf, has_failed_audit, failed_audit_count,
                   payload_json, updated_at, {_ACTIVE_AUDITS_SQL} AS active_failed_audits
            FROM jobs
            WHERE status = ?
            ORDER BY json_extract(payload_json, '$.crewSubmittedDate') DESC, id DESC
            LIMIT ?
            """,
            (JobStatus.PENDING_QA_REVIEW.value, limit),
        ).fetchall()
    except sqlite3.Error as e:
        raise create_db_error(str(e), retryable=False, original_error=e) from e

    return [_row_to_summary(row) for row in rows]


def query_failed_audit_jobs(conn: sqlite3.Connection, limit: int) -> List[Dict[str, Any]]:
    """
    Jobs with at least one active failed audit, most recently updated first.

    Raises:
        ToolError: If query execution fails
    """
    try:
        rows = conn.execute(
            f"""
            SELECT id, status, assigned_to_gf, has_failed_audit, failed_audit_count,
                   payload_json, updated_at, {_ACTIVE_AUDITS_SQL} AS active_failed_audits
            FROM jobs
            WHERE has_failed_audit = 1
            ORDER BY updated_at DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
    except sqlite3.Error as e:
        raise create_db_error(str(e), retryable=False, original_error=e) from e

    return [_row_to_summary(row) for row in rows]


def query_qa_stats(conn: sqlite3.Connection) -> Dict[str, Any]:
    """
    Counts for the QA dashboard.

    Returns:
        {
            "pending_review": int,        # jobs in pending_qa_review
            "failed_audits": int,         # jobs with hasFailedAudit
            "total_failed_audits": int,   # failed audits ever recorded
            "audits_by_status": {status: count}
        }

    Raises:
        ToolError: If query execution fails
    """
    try:
        pending_review = conn.execute(
            "SELECT COUNT(*) FROM jobs WHERE status = ?", (JobStatus.PENDING_QA_REVIEW.value,)
        ).fetchone()[0]
        failed_audits = conn.execute(
            "SELECT COUNT(*) FROM jobs WHERE has_failed_audit = 1"
        ).fetchone()[0]
        total_failed = conn.execute(
            "SELECT COALESCE(SUM(failed_audit_count), 0) FROM jobs"
        ).fetchone()[0]
        status_rows = conn.execute(
            "SELECT status, COUNT(*) AS n FROM audit_records GROUP BY status ORDER BY status"
        ).fetchall()
    except sqlite3.Error as e:
        raise create_db_error(str(e), retryable=False, original_error=e) from e

    return {
        "pending_review": pending_review,
        "failed_audits": failed_audits,
        "total_failed_audits": total_failed,
        "audits_by_status": {row["status"]: row["n"] for row in status_rows},
    }
