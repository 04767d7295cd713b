"""
Tests for the job transition policy.

Covers the transition graph, the evidence gates, legacy alias handling and
the immutable transition table.
"""

import dataclasses

import pytest
from hypothesis import given, strategies as st

from models.errors import ErrorCode, ToolError
from models.status import LEGACY_STATUS_MAP, JobStatus
from utils.job_transition_policy import (
    DEFAULT_TRANSITION_TABLE,
    AssignmentEvidence,
    SafetyGateEvidence,
    StuckEvidence,
    TransitionTable,
    check_transition_or_raise,
    get_valid_next_statuses,
    validate_transition,
)

ALL_STATUSES = [s.value for s in JobStatus]

# Evidence satisfying every gate at once
FULL_EVIDENCE = {
    "assignedToGF": "gf-1",
    "crewScheduledDate": "2026-03-02",
    "safetyGateCleared": True,
    "stuckReason": "Waiting on traffic control",
}

EXPECTED_GRAPH = {
    "new": {"assigned_to_gf"},
    "assigned_to_gf": {"pre_fielding"},
    "pre_fielding": {"scheduled"},
    "scheduled": {"in_progress", "stuck"},
    "stuck": {"scheduled", "in_progress"},
    "in_progress": {"pending_gf_review", "stuck"},
    "pending_gf_review": {"pending_qa_review", "in_progress"},
    "pending_qa_review": {"pending_pm_approval", "pending_gf_review"},
    "pending_pm_approval": {"ready_to_submit", "pending_qa_review"},
    "ready_to_submit": {"submitted"},
    "submitted": {"billed", "go_back"},
    "go_back": {"in_progress", "pending_gf_review"},
    "billed": {"invoiced"},
    "invoiced": set(),
}

GATES = {
    ("new", "assigned_to_gf"): "assignedToGF",
    ("pre_fielding", "scheduled"): "crewScheduledDate",
    ("scheduled", "in_progress"): "safetyGateCleared",
    ("scheduled", "stuck"): "stuckReason",
    ("in_progress", "stuck"): "stuckReason",
}


class TestTransitionGraph:
    """Test suite for the shape of the default transition graph."""

    def test_graph_matches_lifecycle(self):
        """Test the default table holds exactly the documented edges."""
        actual = {
            source: set(targets) for source, targets in DEFAULT_TRANSITION_TABLE.transitions.items()
        }
        assert actual == EXPECTED_GRAPH

    def test_every_status_has_an_entry(self):
        """Test all 14 canonical statuses are known to the table."""
        assert DEFAULT_TRANSITION_TABLE.statuses == set(ALL_STATUSES)

    def test_every_edge_is_admitted_with_evidence(self):
        """Test every edge in the graph validates when all evidence is supplied."""
        for source, targets in EXPECTED_GRAPH.items():
            for target in targets:
                result = validate_transition(source, target, FULL_EVIDENCE)
                assert result.valid is True, (source, target, result.error)
                assert result.required_fields == []

    @given(st.sampled_from(ALL_STATUSES), st.sampled_from(ALL_STATUSES))
    def test_edges_outside_graph_are_rejected(self, source, target):
        """Any pair not in the graph is INVALID_TRANSITION, whatever the evidence."""
        result = validate_transition(source, target, FULL_EVIDENCE)
        if target in EXPECTED_GRAPH[source]:
            assert result.valid is True
        else:
            assert result.valid is False
            assert result.code == ErrorCode.INVALID_TRANSITION
            assert result.error == f'Transition from "{source}" to "{target}" is not allowed'

    def test_invoiced_is_terminal(self):
        """Test nothing leaves invoiced."""
        assert get_valid_next_statuses("invoiced") == []

    def test_valid_next_statuses_sorted_and_alias_aware(self):
        """Test successor listing resolves aliases and sorts."""
        assert get_valid_next_statuses("submitted") == ["billed", "go_back"]
        assert get_valid_next_statuses("in-progress") == ["pending_gf_review", "stuck"]
        assert get_valid_next_statuses("archived") == []
        assert get_valid_next_statuses(None) == []


class TestUnknownStatuses:
    """Test suite for UNKNOWN_STATUS handling."""

    def test_unknown_source(self):
        result = validate_transition("archived", "new")
        assert result.valid is False
        assert result.code == ErrorCode.UNKNOWN_STATUS
        assert result.error == 'Unknown source status "archived"'
        assert result.canonical_from is None

    def test_unknown_target(self):
        result = validate_transition("new", "done")
        assert result.valid is False
        assert result.code == ErrorCode.UNKNOWN_STATUS
        assert result.error == 'Unknown target status "done"'

    def test_missing_source(self):
        """Test a None source is an unknown status, not a crash."""
        result = validate_transition(None, "new")
        assert result.code == ErrorCode.UNKNOWN_STATUS

    def test_enum_members_are_accepted(self):
        """Test JobStatus members work like their string values."""
        result = validate_transition(JobStatus.BILLED, JobStatus.INVOICED)
        assert result.valid is True
        assert result.canonical_from == "billed"
        assert result.canonical_to == "invoiced"


class TestEvidenceGates:
    """Test suite for required evidence on gated transitions."""

    @pytest.mark.parametrize("edge,field", sorted(GATES.items()))
    def test_missing_gate_field_is_reported(self, edge, field):
        """Test omitting the gate field yields MISSING_REQUIRED_FIELDS naming it."""
        source, target = edge
        fields = {k: v for k, v in FULL_EVIDENCE.items() if k != field}
        result = validate_transition(source, target, fields)
        assert result.valid is False
        assert result.code == ErrorCode.MISSING_REQUIRED_FIELDS
        assert result.required_fields == [field]
        assert result.error == f"Missing required fields for this transition: {field}"

    @pytest.mark.parametrize("empty", [None, ""])
    def test_none_and_empty_string_are_missing(self, empty):
        result = validate_transition("scheduled", "in_progress", {"safetyGateCleared": empty})
        assert result.code == ErrorCode.MISSING_REQUIRED_FIELDS
        assert result.required_fields == ["safetyGateCleared"]

    def test_false_is_present(self):
        """Test an evaluated-but-not-cleared safety gate still admits the move."""
        result = validate_transition("scheduled", "in_progress", {"safetyGateCleared": False})
        assert result.valid is True
        assert isinstance(result.evidence, SafetyGateEvidence)
        assert result.evidence.safety_gate_cleared is False

    def test_zero_is_present(self):
        """Test a numeric foreman id of 0 counts as present."""
        result = validate_transition("new", "assigned_to_gf", {"assignedToGF": 0})
        assert result.valid is True
        assert isinstance(result.evidence, AssignmentEvidence)

    @pytest.mark.parametrize("edge,field", sorted(GATES.items()))
    def test_zero_passes_every_gate(self, edge, field):
        """Test numeric 0 satisfies each gated edge."""
        source, target = edge
        result = validate_transition(source, target, {field: 0})
        assert result.valid is True
        assert result.code is None
        assert result.required_fields == []

    @pytest.mark.parametrize(
        "field,value",
        [
            ("stuckReason", 0),
            ("safetyGateCleared", 5),
            ("crewScheduledDate", False),
            ("safetyGateCleared", "maybe"),
        ],
    )
    def test_any_present_value_is_admitted(self, field, value):
        """Test gate values are checked for presence only, never for type."""
        edge = next(edge for edge, name in sorted(GATES.items()) if name == field)
        result = validate_transition(edge[0], edge[1], {field: value})
        assert result.valid is True
        assert result.evidence.model_dump(by_alias=True) == {field: value}

    def test_ungated_edges_need_nothing(self):
        result = validate_transition("assigned_to_gf", "pre_fielding", {})
        assert result.valid is True
        assert result.evidence is None

    def test_evidence_is_parsed(self):
        result = validate_transition("in_progress", "stuck", {"stuckReason": "No USA ticket"})
        assert isinstance(result.evidence, StuckEvidence)
        assert result.evidence.stuck_reason == "No USA ticket"

    def test_required_fields_come_from_evidence_aliases(self):
        assert DEFAULT_TRANSITION_TABLE.required_fields("new", "assigned_to_gf") == ("assignedToGF",)
        assert DEFAULT_TRANSITION_TABLE.required_fields("new", "pre_fielding") == ()


class TestLegacyAliases:
    """Test suite for legacy status equivalence."""

    @given(
        st.sampled_from(sorted(LEGACY_STATUS_MAP)),
        st.sampled_from(ALL_STATUSES),
    )
    def test_alias_source_behaves_like_canonical(self, alias, target):
        """A legacy source gives the same decision as its canonical status."""
        via_alias = validate_transition(alias, target, FULL_EVIDENCE)
        via_canonical = validate_transition(LEGACY_STATUS_MAP[alias], target, FULL_EVIDENCE)
        assert via_alias.to_dict() == via_canonical.to_dict()

    @given(
        st.sampled_from(ALL_STATUSES),
        st.sampled_from(sorted(LEGACY_STATUS_MAP)),
    )
    def test_alias_target_behaves_like_canonical(self, source, alias):
        """A legacy target gives the same decision as its canonical status."""
        via_alias = validate_transition(source, alias, FULL_EVIDENCE)
        via_canonical = validate_transition(source, LEGACY_STATUS_MAP[alias], FULL_EVIDENCE)
        assert via_alias.to_dict() == via_canonical.to_dict()

    def test_legacy_completed_target(self):
        result = validate_transition("pending_pm_approval", "completed")
        assert result.valid is True
        assert result.canonical_to == "ready_to_submit"


class TestTransitionResult:
    """Test suite for TransitionResult serialization."""

    def test_valid_result_dict(self):
        result = validate_transition("pending", "assigned_to_gf", {"assignedToGF": "gf-1"})
        assert result.to_dict() == {
            "valid": True,
            "canonicalFrom": "new",
            "canonicalTo": "assigned_to_gf",
            "requiredFields": [],
        }

    def test_rejected_result_dict(self):
        result = validate_transition("new", "billed")
        assert result.to_dict() == {
            "valid": False,
            "error": 'Transition from "new" to "billed" is not allowed',
            "code": "INVALID_TRANSITION",
        }


class TestTransitionTable:
    """Test suite for custom and immutable tables."""

    def test_default_table_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_TRANSITION_TABLE.transitions["new"] = frozenset({"invoiced"})
        with pytest.raises(dataclasses.FrozenInstanceError):
            DEFAULT_TRANSITION_TABLE.transitions = {}

    def test_custom_table(self):
        """Test a caller-supplied table replaces the default graph."""
        table = TransitionTable.build(
            transitions={"draft": ["open"], "open": ["closed"], "closed": []},
            evidence={("open", "closed"): StuckEvidence},
        )
        assert validate_transition("draft", "open", table=table).valid is True
        assert validate_transition("new", "assigned_to_gf", table=table).code == ErrorCode.UNKNOWN_STATUS

        missing = validate_transition("open", "closed", {}, table=table)
        assert missing.required_fields == ["stuckReason"]


class TestCheckTransitionOrRaise:
    """Test suite for the raising wrapper."""

    def test_returns_result_when_valid(self):
        result = check_transition_or_raise("new", "assigned_to_gf", {"assignedToGF": "gf-1"})
        assert result.valid is True

    def test_missing_fields_carried_in_details(self):
        with pytest.raises(ToolError) as exc_info:
            check_transition_or_raise("pre_fielding", "scheduled", {})
        error = exc_info.value
        assert error.code == ErrorCode.MISSING_REQUIRED_FIELDS
        assert error.details == {"missing_fields": ["crewScheduledDate"]}
        assert error.retryable is False

    def test_invalid_transition_raises(self):
        with pytest.raises(ToolError) as exc_info:
            check_transition_or_raise("new", "billed")
        assert exc_info.value.code == ErrorCode.INVALID_TRANSITION
        assert exc_info.value.details is None

    def test_odd_gate_value_does_not_raise(self):
        result = check_transition_or_raise("scheduled", "in_progress", {"safetyGateCleared": 5})
        assert result.valid is True
        assert result.evidence.safety_gate_cleared == 5
