"""
Document store for work orders backed by SQLite.

A job is stored as one ``jobs`` row (status, assignee, audit aggregate,
version and a JSON payload of the remaining document fields) plus one row
per embedded audit record in ``audit_records`` and one per dependency in
``job_dependencies``. The child rows keep the document's list order through
a ``position`` column and are addressed by their own identifier, which lets
a single list element be updated without rewriting the whole job.

The store offers three write primitives:
- conditional whole-document write of the lifecycle fields, keyed on
  ``jobs.version`` (optimistic concurrency)
- targeted conditional update of one audit record, keyed on its identifier
  and its expected prior status
- conditional write of the audit aggregate, keyed on ``jobs.version``

A write that matches zero rows raises STALE_STATE (or a NOT_FOUND code when
the target no longer exists).
"""

import json
import os
import sqlite3
from pathlib import Path
from typing import Any, List, Mapping, Optional

from models.errors import (
    create_audit_not_found_error,
    create_db_error,
    create_db_not_found_error,
    create_dependency_not_found_error,
    create_job_not_found_error,
    create_stale_state_error,
)
from models.job import AuditRecord, Dependency, Job, job_payload

# Default database path relative to repository root
DEFAULT_DB_PATH = "data/workorders/jobs.db"

# Seconds to wait for another connection's write lock
DEFAULT_TIMEOUT_SECONDS = 5.0


def resolve_db_path(db_path: Optional[str] = None) -> Path:
    """
    Resolve the database path with support for overrides and defaults.

    Resolution order:
    1. Provided db_path parameter
    2. WORKORDER_DB environment variable
    3. WORKORDER_ROOT/data/workorders/jobs.db
    4. Default path: data/workorders/jobs.db

    Args:
        db_path: Optional database path override

    Returns:
        Resolved absolute Path to the database
    """
    if db_path is not None:
        path_str = db_path
    else:
        db_env = os.getenv("WORKORDER_DB")
        if db_env:
            path_str = db_env
        else:
            root_env = os.getenv("WORKORDER_ROOT")
            if root_env:
                return Path(root_env) / "data" / "workorders" / "jobs.db"
            path_str = DEFAULT_DB_PATH

    path = Path(path_str)

    # If relative, resolve from repository root
    if not path.is_absolute():
        current_file = Path(__file__).resolve()
        repo_root = current_file.parents[2]  # db/ -> mcp-server-python/ -> repo/
        path = repo_root / path

    return path


def ensure_parent_dirs(db_path: Path) -> None:
    """
    Ensure parent directories exist for the database file.

    Raises:
        ToolError: If directory creation fails
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise create_db_error(
            f"Failed to create parent directories: {str(e)}", retryable=False, original_error=e
        ) from e


def bootstrap_schema(conn: sqlite3.Connection) -> None:
    """
    Create the jobs, audit_records and job_dependencies tables if missing.

    This operation is idempotent - safe to call on existing databases.

    Args:
        conn: Database connection

    Raises:
        ToolError: If schema creation fails
    """
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS jobs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                status TEXT NOT NULL DEFAULT 'new',
                assigned_to_gf TEXT,
                has_failed_audit INTEGER NOT NULL DEFAULT 0,
                failed_audit_count INTEGER NOT NULL DEFAULT 0,
                passed_audit_date TEXT,
                payload_json TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_records (
                id TEXT PRIMARY KEY,
                job_id INTEGER NOT NULL REFERENCES jobs(id),
                position INTEGER NOT NULL,
                result TEXT NOT NULL,
                status TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS job_dependencies (
                id TEXT PRIMARY KEY,
                job_id INTEGER NOT NULL REFERENCES jobs(id),
                position INTEGER NOT NULL,
                dep_type TEXT NOT NULL,
                status TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_jobs_has_failed_audit ON jobs(has_failed_audit)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_records_job ON audit_records(job_id, position)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_job_dependencies_job ON job_dependencies(job_id, position)"
        )
        conn.commit()

    except sqlite3.Error as e:
        raise create_db_error(
            f"Failed to bootstrap schema: {str(e)}", retryable=False, original_error=e
        ) from e


class JobsStore:
    """
    Context manager for read/write operations on the work-order database.

    The context opens with ``BEGIN IMMEDIATE`` so reads made inside it see a
    stable snapshot while the write lock is held. Transactions begun by
    ``commit()`` are deferred. Rolls back on exceptions and always closes
    the connection.

    Usage:
        with JobsStore(db_path) as store:
            job = store.load_job(1)
            store.save_job(job, expected_version=job.version, timestamp=ts)
            store.commit()
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        create: bool = False,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """
        Initialize store with database path.

        Args:
            db_path: Optional database path override
            create: Create the database file and schema if missing
            timeout: Seconds to wait on a locked database
        """
        self.db_path = db_path
        self.create = create
        self.timeout = timeout
        self.resolved_path: Optional[Path] = None
        self.conn: Optional[sqlite3.Connection] = None
        self._in_transaction = False

    def __enter__(self):
        """
        Open connection and begin transaction.

        Raises:
            ToolError: If database file doesn't exist or connection fails
        """
        self.resolved_path = resolve_db_path(self.db_path)

        if self.create:
            ensure_parent_dirs(self.resolved_path)
        elif not self.resolved_path.exists() or not self.resolved_path.is_file():
            raise create_db_not_found_error(str(self.resolved_path))

        try:
            self.conn = sqlite3.connect(str(self.resolved_path), timeout=self.timeout)
            self.conn.row_factory = sqlite3.Row

            if self.create:
                bootstrap_schema(self.conn)

            self.conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True

            return self

        except sqlite3.OperationalError as e:
            self._close()
            error_msg = str(e)
            if "unable to open database" in error_msg.lower():
                raise create_db_not_found_error(str(self.resolved_path)) from e
            else:
                raise create_db_error(error_msg, retryable=True, original_error=e) from e

        except sqlite3.Error as e:
            self._close()
            raise create_db_error(str(e), retryable=False, original_error=e) from e

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Rollback on exception, close connection always."""
        try:
            if exc_type is not None and self._in_transaction:
                self.rollback()
        finally:
            self._close()

        return False

    def _close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
        self._in_transaction = False

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise create_db_error("Connection not established", retryable=False)
        return self.conn

    # ------------------------------------------------------------------
    # Whole-document read
    # ------------------------------------------------------------------

    def load_job(self, job_id: int) -> Job:
        """
        Read a job with its audit history and dependencies.

        Raises:
            ToolError: JOB_NOT_FOUND, or DB_ERROR if the query fails
        """
        conn = self._connection()

        try:
            row = conn.execute(
                """
                SELECT id, status, assigned_to_gf, has_failed_audit, failed_audit_count,
                       passed_audit_date, payload_json, version, created_at, updated_at
                FROM jobs
                WHERE id = ?
                """,
                (job_id,),
            ).fetchone()
            if row is None:
                raise create_job_not_found_error(job_id)

            document = json.loads(row["payload_json"])
            document.update(
                {
                    "id": row["id"],
                    "status": row["status"],
                    "assignedToGF": row["assigned_to_gf"],
                    "hasFailedAudit": bool(row["has_failed_audit"]),
                    "failedAuditCount": row["failed_audit_count"],
                    "passedAuditDate": row["passed_audit_date"],
                    "version": row["version"],
                    "createdAt": row["created_at"],
                    "updatedAt": row["updated_at"],
                }
            )
            document["auditHistory"] = [
                record.to_document() for record in self.read_audit_records(job_id)
            ]
            document["dependencies"] = [
                dependency.to_document() for dependency in self.read_dependencies(job_id)
            ]
            return Job.model_validate(document)

        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

    def read_audit_records(self, job_id: int) -> List[AuditRecord]:
        """Current audit records of a job, in insertion order."""
        conn = self._connection()

        try:
            rows = conn.execute(
                """
                SELECT id, status, payload_json
                FROM audit_records
                WHERE job_id = ?
                ORDER BY position ASC
                """,
                (job_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        return [
            AuditRecord.model_validate(
                {**json.loads(row["payload_json"]), "id": row["id"], "status": row["status"]}
            )
            for row in rows
        ]

    def read_dependencies(self, job_id: int) -> List[Dependency]:
        conn = self._connection()

        try:
            rows = conn.execute(
                """
                SELECT id, payload_json
                FROM job_dependencies
                WHERE job_id = ?
                ORDER BY position ASC
                """,
                (job_id,),
            ).fetchall()
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        return [
            Dependency.model_validate({**json.loads(row["payload_json"]), "id": row["id"]})
            for row in rows
        ]

    def get_job_version(self, job_id: int) -> int:
        """
        Current version of a job.

        Raises:
            ToolError: JOB_NOT_FOUND
        """
        conn = self._connection()

        try:
            row = conn.execute("SELECT version FROM jobs WHERE id = ?", (job_id,)).fetchone()
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        if row is None:
            raise create_job_not_found_error(job_id)
        return row["version"]

    def _raise_job_conflict(self, job_id: int, expected_version: int) -> None:
        current = self.get_job_version(job_id)
        raise create_stale_state_error(
            f"Job {job_id} was modified concurrently "
            f"(expected version {expected_version}, found {current})"
        )

    # ------------------------------------------------------------------
    # Job writes
    # ------------------------------------------------------------------

    def create_job(self, job: Job, timestamp: str) -> Job:
        """
        Insert a new job (and any dependencies it carries).

        Audit history on the input is ignored; audits are only added through
        ``append_audit_record``.

        Returns:
            The stored job as read back from the database
        """
        conn = self._connection()

        try:
            cursor = conn.execute(
                """
                INSERT INTO jobs (
                    status, assigned_to_gf, has_failed_audit, failed_audit_count,
                    passed_audit_date, payload_json, version, created_at, updated_at
                ) VALUES (?, ?, 0, 0, NULL, ?, 1, ?, ?)
                """,
                (
                    job.status,
                    job.assigned_to_gf,
                    json.dumps(job_payload(job)),
                    timestamp,
                    timestamp,
                ),
            )
            job_id = cursor.lastrowid

            for dependency in job.dependencies:
                self.add_dependency(job_id, dependency, timestamp)

        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        return self.load_job(job_id)

    def save_job(self, job: Job, expected_version: int, timestamp: str) -> int:
        """
        Conditional whole-document write of a job's lifecycle fields.

        Writes status, assignee and the JSON payload only if the stored
        version still equals ``expected_version``. The audit aggregate,
        audit records and dependencies are never written here.

        Returns:
            The new version

        Raises:
            ToolError: STALE_STATE on a version mismatch, JOB_NOT_FOUND
        """
        conn = self._connection()

        try:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET status = ?,
                    assigned_to_gf = ?,
                    payload_json = ?,
                    version = version + 1,
                    updated_at = ?
                WHERE id = ? AND version = ?
                """,
                (
                    job.status,
                    job.assigned_to_gf,
                    json.dumps(job_payload(job)),
                    timestamp,
                    job.id,
                    expected_version,
                ),
            )
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        if cursor.rowcount == 0:
            self._raise_job_conflict(job.id, expected_version)
        return expected_version + 1

    def set_job_assignee(self, job_id: int, assignee: str, timestamp: str) -> None:
        """Targeted update of ``assigned_to_gf`` (QA accepting with an assignee)."""
        conn = self._connection()

        try:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET assigned_to_gf = ?,
                    version = version + 1,
                    updated_at = ?
                WHERE id = ?
                """,
                (assignee, timestamp, job_id),
            )
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        if cursor.rowcount == 0:
            raise create_job_not_found_error(job_id)

    def write_job_aggregate(
        self,
        job_id: int,
        has_failed_audit: bool,
        expected_version: int,
        timestamp: str,
        status: Optional[str] = None,
    ) -> None:
        """
        Conditional write of the audit aggregate.

        Sets ``has_failed_audit`` (and ``status`` when given) only if the job
        version still equals ``expected_version``.

        Raises:
            ToolError: STALE_STATE on a version mismatch, JOB_NOT_FOUND
        """
        conn = self._connection()

        try:
            cursor = conn.execute(
                """
                UPDATE jobs
                SET has_failed_audit = ?,
                    status = COALESCE(?, status),
                    version = version + 1,
                    updated_at = ?
                WHERE id = ? AND version = ?
                """,
                (1 if has_failed_audit else 0, status, timestamp, job_id, expected_version),
            )
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        if cursor.rowcount == 0:
            self._raise_job_conflict(job_id, expected_version)

    def increment_failed_audit_count(self, job_id: int, timestamp: str) -> None:
        """Atomically bump ``failed_audit_count`` (never decremented)."""
        self._update_job_counters(
            job_id,
            """
            UPDATE jobs
            SET failed_audit_count = failed_audit_count + 1,
                version = version + 1,
                updated_at = ?
            WHERE id = ?
            """,
            (timestamp, job_id),
        )

    def mark_audit_passed(self, job_id: int, passed_date: str, timestamp: str) -> None:
        self._update_job_counters(
            job_id,
            """
            UPDATE jobs
            SET passed_audit_date = ?,
                version = version + 1,
                updated_at = ?
            WHERE id = ?
            """,
            (passed_date, timestamp, job_id),
        )

    def _update_job_counters(self, job_id: int, query: str, params: tuple) -> None:
        conn = self._connection()

        try:
            cursor = conn.execute(query, params)
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        if cursor.rowcount == 0:
            raise create_job_not_found_error(job_id)

    # ------------------------------------------------------------------
    # Audit records
    # ------------------------------------------------------------------

    def _next_position(self, table: str, job_id: int) -> int:
        # table is one of two module-internal names, never user input
        row = self._connection().execute(
            f"SELECT COALESCE(MAX(position), -1) + 1 AS next_position FROM {table} WHERE job_id = ?",
            (job_id,),
        ).fetchone()
        return row["next_position"]

    def append_audit_record(self, job_id: int, record: AuditRecord, timestamp: str) -> None:
        """
        Append an audit record at the end of a job's audit history.

        Raises:
            ToolError: JOB_NOT_FOUND, or DB_ERROR if the insert fails
        """
        self.get_job_version(job_id)
        conn = self._connection()

        try:
            conn.execute(
                """
                INSERT INTO audit_records (
                    id, job_id, position, result, status, payload_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    job_id,
                    self._next_position("audit_records", job_id),
                    record.result,
                    record.status,
                    json.dumps(record.to_document()),
                    timestamp,
                    timestamp,
                ),
            )
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

    def update_audit_record(
        self, job_id: int, record: AuditRecord, expected_status: str, timestamp: str
    ) -> None:
        """
        Targeted conditional update of one audit record.

        The row is matched by ``(job_id, record.id)`` and only written if its
        status is still ``expected_status``. Sibling records and the job row
        are untouched.

        Raises:
            ToolError: AUDIT_NOT_FOUND if the record does not exist on the
                job, STALE_STATE if it moved on since it was read
        """
        conn = self._connection()

        try:
            cursor = conn.execute(
                """
                UPDATE audit_records
                SET status = ?,
                    payload_json = ?,
                    updated_at = ?
                WHERE job_id = ? AND id = ? AND status = ?
                """,
                (
                    record.status,
                    json.dumps(record.to_document()),
                    timestamp,
                    job_id,
                    record.id,
                    expected_status,
                ),
            )
            if cursor.rowcount > 0:
                return

            row = conn.execute(
                "SELECT status FROM audit_records WHERE job_id = ? AND id = ?",
                (job_id, record.id),
            ).fetchone()

        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        if row is None:
            raise create_audit_not_found_error(record.id)
        raise create_stale_state_error(
            f"Audit {record.id} was modified concurrently "
            f"(expected status '{expected_status}', found '{row['status']}')"
        )

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependency(self, job_id: int, dependency: Dependency, timestamp: str) -> Dependency:
        """
        Append a dependency to a job.

        Raises:
            ToolError: JOB_NOT_FOUND, or DB_ERROR if the insert fails
        """
        self.get_job_version(job_id)
        conn = self._connection()

        try:
            conn.execute(
                """
                INSERT INTO job_dependencies (
                    id, job_id, position, dep_type, status, payload_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    dependency.id,
                    job_id,
                    self._next_position("job_dependencies", job_id),
                    dependency.type,
                    dependency.status,
                    json.dumps(dependency.to_document()),
                    timestamp,
                    timestamp,
                ),
            )
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        return dependency

    def update_dependency(
        self, job_id: int, dependency_id: str, changes: Mapping[str, Any], timestamp: str
    ) -> Dependency:
        """
        Targeted update of one dependency by identifier.

        Args:
            job_id: Owning job
            dependency_id: Dependency identifier
            changes: Attribute values to overwrite (snake_case names)
            timestamp: updated_at value

        Returns:
            The updated dependency

        Raises:
            ToolError: DEPENDENCY_NOT_FOUND
        """
        conn = self._connection()

        try:
            row = conn.execute(
                "SELECT payload_json FROM job_dependencies WHERE job_id = ? AND id = ?",
                (job_id, dependency_id),
            ).fetchone()
            if row is None:
                raise create_dependency_not_found_error(dependency_id)

            current = Dependency.model_validate(
                {**json.loads(row["payload_json"]), "id": dependency_id}
            )
            updated = current.model_copy(update=dict(changes))

            conn.execute(
                """
                UPDATE job_dependencies
                SET dep_type = ?,
                    status = ?,
                    payload_json = ?,
                    updated_at = ?
                WHERE job_id = ? AND id = ?
                """,
                (
                    updated.type,
                    updated.status,
                    json.dumps(updated.to_document()),
                    timestamp,
                    job_id,
                    dependency_id,
                ),
            )
        except sqlite3.Error as e:
            raise create_db_error(str(e), retryable=False, original_error=e) from e

        return updated

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def commit(self) -> None:
        """
        Commit the transaction and immediately begin the next one.

        The next transaction is a deferred ``BEGIN``: it takes no lock until
        its first write, so once ``conn.commit()`` succeeds nothing here can
        fail on a busy database and report a landed write as an error.

        Raises:
            ToolError: If commit fails (nothing was written)
        """
        conn = self._connection()

        if not self._in_transaction:
            return

        try:
            conn.commit()
            # Keep the store usable after a commit, on the same connection
            conn.execute("BEGIN")
            self._in_transaction = True

        except sqlite3.Error as e:
            raise create_db_error(
                f"Failed to commit transaction: {str(e)}", retryable=True, original_error=e
            ) from e

    def rollback(self) -> None:
        """
        Rollback the transaction.

        Does not raise: rollback runs during error handling and the original
        error is the one worth reporting.
        """
        if self.conn is None:
            return

        if not self._in_transaction:
            return

        try:
            self.conn.rollback()
            self._in_transaction = False
        except sqlite3.Error:
            # Suppress rollback errors - we're already in error handling
            pass
