"""
Tests for concurrency-safe audit persistence.

Concurrent requests are simulated with caller-held snapshots: each
"request" reads the job first, then writes later, after a sibling request
already committed.
"""

from pathlib import Path

import pytest

from db.jobs_store import JobsStore
from models.errors import ErrorCode, ToolError
from models.job import Dependency, Job
from utils.audit_mutator import AuditMutator

TS = "2026-03-01T08:00:00.000Z"
PHOTO = {"name": "after.jpg", "url": "https://files.example/after.jpg"}


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "jobs.db")


@pytest.fixture
def job_id(db_path) -> int:
    with JobsStore(db_path, create=True) as store:
        job = store.create_job(
            Job(
                title="Span replacement",
                status="new",
                dependencies=[Dependency(type="usa", ticket_number="USA-77")],
            ),
            TS,
        )
        store.commit()
    return job.id


@pytest.fixture
def mutator(db_path) -> AuditMutator:
    return AuditMutator(db_path, timeout=1.0)


def load(db_path: str, job_id: int) -> Job:
    with JobsStore(db_path) as store:
        return store.load_job(job_id)


def fail(mutator: AuditMutator, job_id: int, description: str = "Crossarm not level") -> str:
    return mutator.record(job_id, "fail", infraction_description=description).record.id


def to_submitted(mutator: AuditMutator, job_id: int, audit_id: str) -> None:
    mutator.review(job_id, audit_id, "accepted", assignee="gf-1", actor="qa-1")
    mutator.submit_correction(job_id, audit_id, [PHOTO], description="Fixed", actor="crew-1")


class TestRecord:
    """Test suite for AuditMutator.record."""

    def test_failed_audit(self, mutator, db_path, job_id):
        outcome = mutator.record(job_id, "fail", infraction_description="Missing tag")
        assert outcome.has_failed_audit is True
        assert outcome.promoted is False
        assert outcome.previous_status is None

        job = load(db_path, job_id)
        assert job.has_failed_audit is True
        assert job.failed_audit_count == 1
        assert job.audit_history[0].status == "pending_qa"

    def test_passed_audit(self, mutator, db_path, job_id):
        outcome = mutator.record(job_id, "pass")
        assert outcome.record.status == "closed"
        job = load(db_path, job_id)
        assert job.passed_audit_date is not None
        assert job.failed_audit_count == 0
        assert job.has_failed_audit is False

    def test_rejected_audit_writes_nothing(self, mutator, db_path, job_id):
        version = load(db_path, job_id).version
        with pytest.raises(ToolError) as exc_info:
            mutator.record(job_id, "fail")
        assert exc_info.value.code == ErrorCode.MISSING_INFRACTION_DESCRIPTION

        job = load(db_path, job_id)
        assert job.audit_history == []
        assert job.version == version

    def test_outcome_dict(self, mutator, job_id):
        data = mutator.record(job_id, "fail", infraction_description="x").to_dict()
        assert set(data) == {"job_id", "audit", "has_failed_audit", "promoted", "job_status"}
        assert data["audit"]["result"] == "fail"
        assert "infractionDescription" in data["audit"]


class TestSingleAuditFlow:
    """Test suite for one audit through review, correction and resolve."""

    def test_full_go_back_flow(self, mutator, db_path, job_id):
        audit_id = fail(mutator, job_id)

        reviewed = mutator.review(job_id, audit_id, "accepted", assignee="gf-9", actor="qa-1")
        assert reviewed.previous_status == "pending_qa"
        assert reviewed.record.status == "correction_assigned"
        assert load(db_path, job_id).assigned_to_gf == "gf-9"

        submitted = mutator.submit_correction(job_id, audit_id, [PHOTO], actor="crew-1")
        assert submitted.record.status == "correction_submitted"

        resolved = mutator.resolve(job_id, audit_id, actor="qa-1")
        assert resolved.promoted is True
        assert resolved.has_failed_audit is False
        assert resolved.job_status == "ready_to_submit"

        job = load(db_path, job_id)
        assert job.status == "ready_to_submit"
        assert job.has_failed_audit is False
        assert job.failed_audit_count == 1
        assert job.audit_history[0].resolved_by == "qa-1"
        assert job.audit_history[0].correction_photos[0].name == "after.jpg"

    def test_dispute_clears_flag_without_status_change(self, mutator, db_path, job_id):
        audit_id = fail(mutator, job_id)
        outcome = mutator.review(job_id, audit_id, "disputed", dispute_reason="Within tolerance")
        assert outcome.has_failed_audit is False
        assert outcome.promoted is False

        job = load(db_path, job_id)
        assert job.status == "new"
        assert job.has_failed_audit is False

    def test_validation_failure_writes_nothing(self, mutator, db_path, job_id):
        audit_id = fail(mutator, job_id)
        mutator.review(job_id, audit_id, "accepted")
        before = load(db_path, job_id)

        with pytest.raises(ToolError) as exc_info:
            mutator.submit_correction(job_id, audit_id, [])
        assert exc_info.value.code == ErrorCode.MISSING_CORRECTION_PHOTOS

        after = load(db_path, job_id)
        assert after.version == before.version
        assert after.audit_history[0].model_dump() == before.audit_history[0].model_dump()

    def test_unknown_audit(self, mutator, job_id):
        with pytest.raises(ToolError) as exc_info:
            mutator.resolve(job_id, "does-not-exist")
        assert exc_info.value.code == ErrorCode.AUDIT_NOT_FOUND

    def test_unknown_job(self, mutator, job_id):
        with pytest.raises(ToolError) as exc_info:
            mutator.record(job_id + 1, "pass")
        assert exc_info.value.code == ErrorCode.JOB_NOT_FOUND

    def test_direct_resolve_disabled(self, mutator, job_id):
        audit_id = fail(mutator, job_id)
        mutator.review(job_id, audit_id, "accepted")
        with pytest.raises(ToolError) as exc_info:
            mutator.resolve(job_id, audit_id, allow_direct_resolve=False)
        assert exc_info.value.code == ErrorCode.INVALID_AUDIT_TRANSITION


class TestConcurrentSiblings:
    """Two reviewers resolving different audits of the same job."""

    def test_sibling_resolves_from_stale_snapshots_both_land(self, mutator, db_path, job_id):
        """
        Both requests read the job while both audits were still open. The
        second write must neither undo the first resolution nor compute the
        aggregate from its stale copy.
        """
        first = fail(mutator, job_id, "Crossarm not level")
        second = fail(mutator, job_id, "Missing pole tag")
        to_submitted(mutator, job_id, first)
        to_submitted(mutator, job_id, second)

        snapshot_a = load(db_path, job_id)
        snapshot_b = load(db_path, job_id)

        outcome_a = mutator.resolve(job_id, first, actor="qa-a", snapshot=snapshot_a)
        assert outcome_a.promoted is False
        assert outcome_a.has_failed_audit is True

        outcome_b = mutator.resolve(job_id, second, actor="qa-b", snapshot=snapshot_b)
        assert outcome_b.promoted is True
        assert outcome_b.has_failed_audit is False

        job = load(db_path, job_id)
        assert [r.status for r in job.audit_history] == ["resolved", "resolved"]
        assert [r.resolved_by for r in job.audit_history] == ["qa-a", "qa-b"]
        assert job.has_failed_audit is False
        assert job.status == "ready_to_submit"
        assert job.failed_audit_count == 2

    def test_same_audit_twice_is_stale(self, mutator, db_path, job_id):
        """The slower of two resolves of the same audit gets STALE_STATE."""
        audit_id = fail(mutator, job_id)
        to_submitted(mutator, job_id, audit_id)

        snapshot_a = load(db_path, job_id)
        snapshot_b = load(db_path, job_id)

        mutator.resolve(job_id, audit_id, notes="first", actor="qa-a", snapshot=snapshot_a)
        with pytest.raises(ToolError) as exc_info:
            mutator.resolve(job_id, audit_id, notes="second", actor="qa-b", snapshot=snapshot_b)

        error = exc_info.value
        assert error.code == ErrorCode.STALE_STATE
        assert error.retryable is True

        record = load(db_path, job_id).audit_history[0]
        assert record.resolved_by == "qa-a"
        assert record.resolution_notes == "first"

    def test_snapshot_is_not_modified(self, mutator, db_path, job_id):
        audit_id = fail(mutator, job_id)
        to_submitted(mutator, job_id, audit_id)
        snapshot = load(db_path, job_id)

        mutator.resolve(job_id, audit_id, snapshot=snapshot)

        assert snapshot.audit_history[0].status == "correction_submitted"
        assert snapshot.status == "new"

    def test_review_and_record_interleave(self, mutator, db_path, job_id):
        """A new failure recorded after a dispute snapshot keeps the flag up."""
        first = fail(mutator, job_id)
        snapshot = load(db_path, job_id)

        fail(mutator, job_id, "Guy wire slack")
        outcome = mutator.review(job_id, first, "disputed", snapshot=snapshot)

        assert outcome.has_failed_audit is True
        assert load(db_path, job_id).has_failed_audit is True

    def test_accept_writes_assignee_despite_snapshot(self, mutator, db_path, job_id):
        """The snapshot already names the assignee but the stored job moved on."""
        audit_id = fail(mutator, job_id)
        with JobsStore(db_path) as store:
            store.set_job_assignee(job_id, "gf-1", TS)
            store.commit()
        snapshot = load(db_path, job_id)
        with JobsStore(db_path) as store:
            store.set_job_assignee(job_id, "gf-2", TS)
            store.commit()

        mutator.review(job_id, audit_id, "accepted", assignee="gf-1", snapshot=snapshot)

        assert load(db_path, job_id).assigned_to_gf == "gf-1"

    def test_dispute_never_writes_assignee(self, mutator, db_path, job_id):
        audit_id = fail(mutator, job_id)
        snapshot = load(db_path, job_id)
        snapshot.assigned_to_gf = "gf-9"
        with JobsStore(db_path) as store:
            store.set_job_assignee(job_id, "gf-2", TS)
            store.commit()

        mutator.review(job_id, audit_id, "disputed", assignee="gf-9", snapshot=snapshot)

        assert load(db_path, job_id).assigned_to_gf == "gf-2"

    def test_dependencies_untouched(self, mutator, db_path, job_id):
        before = [d.model_dump() for d in load(db_path, job_id).dependencies]

        audit_id = fail(mutator, job_id)
        to_submitted(mutator, job_id, audit_id)
        mutator.resolve(job_id, audit_id)

        after = [d.model_dump() for d in load(db_path, job_id).dependencies]
        assert after == before
        assert after[0]["ticket_number"] == "USA-77"
