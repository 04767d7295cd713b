"""
Transition policy for work-order (job) status changes.

This module enforces the job lifecycle rules:
- Both endpoints are resolved through the legacy alias table first
- The source status must be a known state and the target a canonical status
- The target must be an allowed successor of the source
- Gated transitions require evidence (assignee, schedule date, safety gate
  flag, stuck reason) before they are admitted

The transition graph and its evidence gates live in an immutable
``TransitionTable``. Callers may pass their own table; the module default
is ``DEFAULT_TRANSITION_TABLE``.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field

from models.errors import ErrorCode, ToolError, create_transition_error
from models.status import JobStatus
from utils.status_resolver import resolve_status


class TransitionEvidence(BaseModel):
    """Base class for the gate evidence attached to one ``from -> to`` pair.

    Gate fields hold the raw request value. Presence is the only check:
    ``0`` and ``False`` are as good as any other non-missing value, and
    turning a value into a stored field is left to the lifecycle step.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        """Wire names of the gate fields, in declaration order."""
        return tuple(info.alias or name for name, info in cls.model_fields.items())


class AssignmentEvidence(TransitionEvidence):
    """new -> assigned_to_gf"""

    assigned_to_gf: Any = Field(alias="assignedToGF")


class ScheduleEvidence(TransitionEvidence):
    """pre_fielding -> scheduled"""

    crew_scheduled_date: Any = Field(alias="crewScheduledDate")


class SafetyGateEvidence(TransitionEvidence):
    """scheduled -> in_progress

    ``False`` means the gate was evaluated and not cleared. Only absence
    blocks the transition.
    """

    safety_gate_cleared: Any = Field(alias="safetyGateCleared")


class StuckEvidence(TransitionEvidence):
    """scheduled -> stuck, in_progress -> stuck"""

    stuck_reason: Any = Field(alias="stuckReason")


def _plain(status: Any) -> Any:
    """Unwrap Enum members to their raw value."""
    if isinstance(status, Enum):
        return status.value
    return status


@dataclass(frozen=True)
class TransitionTable:
    """Immutable job transition graph plus per-edge evidence models."""

    transitions: Mapping[str, FrozenSet[str]]
    evidence: Mapping[Tuple[str, str], Type[TransitionEvidence]]

    @classmethod
    def build(
        cls,
        transitions: Mapping[Any, Iterable[Any]],
        evidence: Optional[Mapping[Tuple[Any, Any], Type[TransitionEvidence]]] = None,
    ) -> "TransitionTable":
        """Freeze plain dicts (Enum members or strings) into a table."""
        frozen_transitions = {
            _plain(source): frozenset(_plain(target) for target in targets)
            for source, targets in transitions.items()
        }
        frozen_evidence = {
            (_plain(source), _plain(target)): model
            for (source, target), model in (evidence or {}).items()
        }
        return cls(
            transitions=MappingProxyType(frozen_transitions),
            evidence=MappingProxyType(frozen_evidence),
        )

    @property
    def statuses(self) -> FrozenSet[str]:
        """Every status known to the table (the canonical set)."""
        return frozenset(self.transitions)

    def allowed_targets(self, status: str) -> FrozenSet[str]:
        return self.transitions.get(status, frozenset())

    def evidence_for(self, from_status: str, to_status: str) -> Optional[Type[TransitionEvidence]]:
        return self.evidence.get((from_status, to_status))

    def required_fields(self, from_status: str, to_status: str) -> Tuple[str, ...]:
        model = self.evidence_for(from_status, to_status)
        return model.field_names() if model is not None else ()


DEFAULT_TRANSITION_TABLE = TransitionTable.build(
    transitions={
        JobStatus.NEW: [JobStatus.ASSIGNED_TO_GF],
        JobStatus.ASSIGNED_TO_GF: [JobStatus.PRE_FIELDING],
        JobStatus.PRE_FIELDING: [JobStatus.SCHEDULED],
        JobStatus.SCHEDULED: [JobStatus.IN_PROGRESS, JobStatus.STUCK],
        JobStatus.STUCK: [JobStatus.SCHEDULED, JobStatus.IN_PROGRESS],
        JobStatus.IN_PROGRESS: [JobStatus.PENDING_GF_REVIEW, JobStatus.STUCK],
        JobStatus.PENDING_GF_REVIEW: [JobStatus.PENDING_QA_REVIEW, JobStatus.IN_PROGRESS],
        JobStatus.PENDING_QA_REVIEW: [JobStatus.PENDING_PM_APPROVAL, JobStatus.PENDING_GF_REVIEW],
        JobStatus.PENDING_PM_APPROVAL: [JobStatus.READY_TO_SUBMIT, JobStatus.PENDING_QA_REVIEW],
        JobStatus.READY_TO_SUBMIT: [JobStatus.SUBMITTED],
        JobStatus.SUBMITTED: [JobStatus.BILLED, JobStatus.GO_BACK],
        JobStatus.GO_BACK: [JobStatus.IN_PROGRESS, JobStatus.PENDING_GF_REVIEW],
        JobStatus.BILLED: [JobStatus.INVOICED],
        JobStatus.INVOICED: [],
    },
    evidence={
        (JobStatus.NEW, JobStatus.ASSIGNED_TO_GF): AssignmentEvidence,
        (JobStatus.PRE_FIELDING, JobStatus.SCHEDULED): ScheduleEvidence,
        (JobStatus.SCHEDULED, JobStatus.IN_PROGRESS): SafetyGateEvidence,
        (JobStatus.SCHEDULED, JobStatus.STUCK): StuckEvidence,
        (JobStatus.IN_PROGRESS, JobStatus.STUCK): StuckEvidence,
    },
)


class TransitionResult:
    """Result of a job transition policy check."""

    def __init__(
        self,
        valid: bool,
        canonical_from: Optional[str] = None,
        canonical_to: Optional[str] = None,
        required_fields: Optional[List[str]] = None,
        error: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        evidence: Optional[TransitionEvidence] = None,
    ):
        """
        Initialize a transition result.

        Args:
            valid: Whether the transition is admitted
            canonical_from: Resolved source status (absent for unknown statuses)
            canonical_to: Resolved target status (absent for unknown statuses)
            required_fields: Missing gate fields on failure, empty list on success
            error: Human-readable reason when the transition is rejected
            code: Error code when the transition is rejected
            evidence: Gate evidence for admitted gated transitions
        """
        self.valid = valid
        self.canonical_from = canonical_from
        self.canonical_to = canonical_to
        self.required_fields = required_fields
        self.error = error
        self.code = code
        self.evidence = evidence

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary format."""
        result: Dict[str, Any] = {"valid": self.valid}
        if self.canonical_from is not None:
            result["canonicalFrom"] = self.canonical_from
        if self.canonical_to is not None:
            result["canonicalTo"] = self.canonical_to
        if self.required_fields is not None:
            result["requiredFields"] = list(self.required_fields)
        if self.error:
            result["error"] = self.error
        if self.code is not None:
            result["code"] = self.code.value
        return result


def _is_missing(value: Any) -> bool:
    # False and 0 are present values
    return value is None or (isinstance(value, str) and value == "")


def validate_transition(
    from_status: Any,
    to_status: Any,
    fields: Optional[Mapping[str, Any]] = None,
    table: TransitionTable = DEFAULT_TRANSITION_TABLE,
) -> TransitionResult:
    """
    Validate a job status transition according to the transition table.

    Policy rules:
    1. Resolve both endpoints through the legacy alias table
    2. Unknown source status (no table entry) -> UNKNOWN_STATUS
    3. Unknown target status (not canonical) -> UNKNOWN_STATUS
    4. Edge not in the graph -> INVALID_TRANSITION
    5. Gate fields missing (None or "") -> MISSING_REQUIRED_FIELDS,
       with ``required_fields`` listing the missing names
    6. Otherwise the transition is admitted, whatever the gate values hold

    Never raises; rejections are reported on the result.

    Args:
        from_status: Current job status (canonical or legacy alias)
        to_status: Desired job status (canonical or legacy alias)
        fields: Request payload carrying gate evidence (camelCase keys)
        table: Transition table to validate against

    Returns:
        TransitionResult describing the decision

    Examples:
        >>> validate_transition("scheduled", "in_progress", {"safetyGateCleared": False}).valid
        True

        >>> result = validate_transition("scheduled", "in_progress", {"safetyGateCleared": ""})
        >>> result.code.value, result.required_fields
        ('MISSING_REQUIRED_FIELDS', ['safetyGateCleared'])

        >>> validate_transition("scheduled", "stuck", {"stuckReason": 0}).valid
        True

        >>> validate_transition("pending", "assigned_to_gf", {"assignedToGF": "u1"}).canonical_from
        'new'

        >>> validate_transition("invoiced", "new").code.value
        'INVALID_TRANSITION'
    """
    fields = fields or {}
    raw_from = _plain(from_status)
    raw_to = _plain(to_status)
    canonical_from = resolve_status(raw_from)
    canonical_to = resolve_status(raw_to)

    if not isinstance(canonical_from, str) or canonical_from not in table.transitions:
        return TransitionResult(
            valid=False,
            error=f'Unknown source status "{raw_from}"',
            code=ErrorCode.UNKNOWN_STATUS,
        )

    if not isinstance(canonical_to, str) or canonical_to not in table.statuses:
        return TransitionResult(
            valid=False,
            error=f'Unknown target status "{raw_to}"',
            code=ErrorCode.UNKNOWN_STATUS,
        )

    if canonical_to not in table.allowed_targets(canonical_from):
        return TransitionResult(
            valid=False,
            error=f'Transition from "{canonical_from}" to "{canonical_to}" is not allowed',
            code=ErrorCode.INVALID_TRANSITION,
        )

    evidence_model = table.evidence_for(canonical_from, canonical_to)
    if evidence_model is None:
        return TransitionResult(
            valid=True, canonical_from=canonical_from, canonical_to=canonical_to, required_fields=[]
        )

    required = evidence_model.field_names()
    missing = [name for name in required if _is_missing(fields.get(name))]
    if missing:
        return TransitionResult(
            valid=False,
            canonical_from=canonical_from,
            canonical_to=canonical_to,
            required_fields=missing,
            error=f"Missing required fields for this transition: {', '.join(missing)}",
            code=ErrorCode.MISSING_REQUIRED_FIELDS,
        )

    return TransitionResult(
        valid=True,
        canonical_from=canonical_from,
        canonical_to=canonical_to,
        required_fields=[],
        evidence=evidence_model.model_validate({name: fields[name] for name in required}),
    )


def get_valid_next_statuses(
    status: Any, table: TransitionTable = DEFAULT_TRANSITION_TABLE
) -> List[str]:
    """Allowed successors of ``status`` (aliases resolved), sorted; [] if unknown."""
    canonical = resolve_status(_plain(status))
    if not isinstance(canonical, str):
        return []
    return sorted(table.allowed_targets(canonical))


def check_transition_or_raise(
    from_status: Any,
    to_status: Any,
    fields: Optional[Mapping[str, Any]] = None,
    table: TransitionTable = DEFAULT_TRANSITION_TABLE,
) -> TransitionResult:
    """
    Validate a transition and raise ToolError if it is rejected.

    Convenience wrapper around validate_transition for callers that are about
    to mutate a job and want the rejection to abort the whole operation.

    Raises:
        ToolError: With the result's code; MISSING_REQUIRED_FIELDS carries the
            missing names in ``details["missing_fields"]``

    Examples:
        >>> check_transition_or_raise("new", "assigned_to_gf", {"assignedToGF": "gf1"}).valid
        True

        >>> try:
        ...     check_transition_or_raise("new", "billed")
        ... except ToolError as e:
        ...     print(e.code.value)
        INVALID_TRANSITION
    """
    result = validate_transition(from_status, to_status, fields, table)

    if result.valid:
        return result
    raise create_transition_error(result.code, result.error, result.required_fields)
