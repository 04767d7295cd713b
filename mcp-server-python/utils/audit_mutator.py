"""
Concurrency-safe persistence of audit record mutations.

Two QA reviewers may work different failed audits on the same job at the
same time. Writing the whole job back after mutating an in-memory copy
would let the slower request erase the faster one's resolution, and would
compute ``hasFailedAudit`` from a stale audit list. ``AuditMutator`` avoids
both:

1. The job is read (or a caller-held snapshot is used) and the audit
   workflow computes the new record on a private deep copy. Any validation
   failure aborts here, before anything is written.
2. Only that one record is written, with a conditional update keyed on its
   identifier and the status it had when read. If another request moved the
   record first the update matches nothing and STALE_STATE is raised.
3. In the same ``BEGIN IMMEDIATE`` transaction as step 2 the current audit
   list is re-read from the store, the aggregate is recomputed from it, and
   the result is written conditionally on the job version read there. The
   record update and the aggregate commit once, together.
"""

import logging
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from db.jobs_store import DEFAULT_TIMEOUT_SECONDS, JobsStore
from models.errors import ToolError
from models.job import AuditRecord, Job
from models.status import AuditStatus, QADecision
from utils.audit_workflow import (
    apply_audit_decision,
    find_audit,
    recompute_job_readiness,
    record_audit,
    resolve_audit,
    submit_correction,
)
from utils.validation import get_current_utc_timestamp, is_blank

logger = logging.getLogger(__name__)

# (record, working job copy, timestamp) -> None; raises ToolError to abort
AuditMutation = Callable[[AuditRecord, Job, str], None]


class AuditMutationOutcome:
    """Result of one persisted audit mutation."""

    def __init__(
        self,
        job_id: int,
        record: AuditRecord,
        previous_status: Optional[str],
        has_failed_audit: bool,
        promoted: bool,
        job_status: str,
    ):
        self.job_id = job_id
        self.record = record
        self.previous_status = previous_status
        self.has_failed_audit = has_failed_audit
        self.promoted = promoted
        self.job_status = job_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert outcome to dictionary format."""
        result = {
            "job_id": self.job_id,
            "audit": self.record.to_document(),
            "has_failed_audit": self.has_failed_audit,
            "promoted": self.promoted,
            "job_status": self.job_status,
        }
        if self.previous_status is not None:
            result["previous_status"] = self.previous_status
        return result


class AuditMutator:
    """
    Applies single audit record mutations against the job store.

    Usage:
        mutator = AuditMutator(db_path)
        outcome = mutator.resolve(job_id, audit_id, actor="qa1")
        if outcome.promoted:
            ...
    """

    def __init__(self, db_path: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.db_path = db_path
        self.timeout = timeout

    def _store(self) -> JobsStore:
        return JobsStore(self.db_path, timeout=self.timeout)

    def _recompute_aggregate(
        self, store: JobsStore, job_id: int, promote: bool, now: str
    ) -> Tuple[Job, bool]:
        # Reads and writes inside one transaction; never uses a cached job
        current = store.load_job(job_id)
        promoted = recompute_job_readiness(current, promote=promote)
        store.write_job_aggregate(
            job_id,
            current.has_failed_audit,
            expected_version=current.version,
            timestamp=now,
            status=current.status if promoted else None,
        )
        store.commit()
        if promoted:
            logger.info("Job %s has no active failed audits; promoted to %s", job_id, current.status)
        return current, promoted

    def record(self, job_id: int, result: str, **report: Any) -> AuditMutationOutcome:
        """
        Append a new audit record and update the job aggregate.

        The insert, the ``failedAuditCount`` increment (or ``passedAuditDate``)
        and the aggregate recompute commit together; an append cannot race
        a sibling record's update.

        Args:
            job_id: Job receiving the audit
            result: "pass" or "fail"
            **report: Keyword arguments for ``record_audit`` (infraction
                description/type, spec reference, inspector, audit number...)
        """
        now = get_current_utc_timestamp()
        with self._store() as store:
            working = store.load_job(job_id)
            record = record_audit(working, result, now=now, **report)

            store.append_audit_record(job_id, record, now)
            if record.status == AuditStatus.CLOSED.value:
                store.mark_audit_passed(job_id, now, now)
            else:
                store.increment_failed_audit_count(job_id, now)

            current = store.load_job(job_id)
            recompute_job_readiness(current, promote=False)
            store.write_job_aggregate(
                job_id, current.has_failed_audit, expected_version=current.version, timestamp=now
            )
            store.commit()

        logger.info("Recorded %s audit %s on job %s", record.result, record.id, job_id)
        return AuditMutationOutcome(
            job_id=job_id,
            record=record,
            previous_status=None,
            has_failed_audit=current.has_failed_audit,
            promoted=False,
            job_status=current.status,
        )

    def apply(
        self,
        job_id: int,
        audit_id: str,
        mutation: AuditMutation,
        promote: bool = False,
        snapshot: Optional[Job] = None,
        assignee: Optional[str] = None,
    ) -> AuditMutationOutcome:
        """
        Apply one mutation to one audit record.

        Args:
            job_id: Job owning the audit
            audit_id: Audit record identifier
            mutation: Audit workflow step applied to the working copy
            promote: Promote the job to ready_to_submit when no active
                failure remains after the mutation
            snapshot: Job as previously read by the caller; defaults to a
                fresh read. Never modified.
            assignee: Foreman written to the stored job in the same
                transaction, whatever the snapshot holds

        Raises:
            ToolError: Any workflow error from ``mutation`` (nothing written),
                AUDIT_NOT_FOUND, or STALE_STATE if the record changed since
                it was read
        """
        now = get_current_utc_timestamp()
        with self._store() as store:
            working = snapshot.model_copy(deep=True) if snapshot is not None else store.load_job(job_id)
            record = find_audit(working, audit_id)
            previous_status = record.status

            mutation(record, working, now)

            try:
                store.update_audit_record(job_id, record, previous_status, now)
            except ToolError as e:
                logger.warning(
                    "Audit %s on job %s not updated from status %s: %s",
                    audit_id,
                    job_id,
                    previous_status,
                    e.code.value,
                )
                raise
            if assignee is not None:
                store.set_job_assignee(job_id, assignee, now)

            current, promoted = self._recompute_aggregate(store, job_id, promote, now)

        return AuditMutationOutcome(
            job_id=job_id,
            record=record,
            previous_status=previous_status,
            has_failed_audit=current.has_failed_audit,
            promoted=promoted,
            job_status=current.status,
        )

    def review(
        self,
        job_id: int,
        audit_id: str,
        decision: str,
        assignee: Optional[Any] = None,
        notes: Optional[str] = None,
        dispute_reason: Optional[str] = None,
        specs_referenced: Optional[Sequence[str]] = None,
        actor: Optional[str] = None,
        snapshot: Optional[Job] = None,
        correction_notes: Optional[str] = None,
    ) -> AuditMutationOutcome:
        """
        QA review (accepted/disputed) of a failed audit.

        An accepted review with an assignee always writes that foreman to the
        stored job, even when ``snapshot`` already shows them assigned.
        """
        accepted = getattr(decision, "value", decision) == QADecision.ACCEPTED.value
        mirrored = str(assignee) if accepted and not is_blank(assignee) else None

        def mutation(record: AuditRecord, job: Job, now: str) -> None:
            apply_audit_decision(
                record,
                job,
                decision,
                assignee=assignee,
                notes=notes,
                dispute_reason=dispute_reason,
                specs_referenced=specs_referenced,
                actor=actor,
                now=now,
                correction_notes=correction_notes,
            )

        return self.apply(
            job_id, audit_id, mutation, promote=False, snapshot=snapshot, assignee=mirrored
        )

    def submit_correction(
        self,
        job_id: int,
        audit_id: str,
        photos: Sequence[Any],
        description: Optional[str] = None,
        actor: Optional[str] = None,
        snapshot: Optional[Job] = None,
    ) -> AuditMutationOutcome:
        """Crew submits correction proof for an assigned go-back."""

        def mutation(record: AuditRecord, job: Job, now: str) -> None:
            submit_correction(record, photos, description=description, actor=actor, now=now)

        return self.apply(job_id, audit_id, mutation, promote=False, snapshot=snapshot)

    def resolve(
        self,
        job_id: int,
        audit_id: str,
        notes: Optional[str] = None,
        actor: Optional[str] = None,
        allow_direct_resolve: bool = True,
        snapshot: Optional[Job] = None,
    ) -> AuditMutationOutcome:
        """QA approves the correction; may promote the job to ready_to_submit."""

        def mutation(record: AuditRecord, job: Job, now: str) -> None:
            resolve_audit(
                record,
                job,
                notes=notes,
                actor=actor,
                now=now,
                allow_direct_resolve=allow_direct_resolve,
            )

        return self.apply(job_id, audit_id, mutation, promote=True, snapshot=snapshot)
