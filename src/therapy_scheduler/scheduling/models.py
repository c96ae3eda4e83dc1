"""Data models for therapy session scheduling."""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterator

from ..exceptions import InvalidSchedulingData
from .constants import DEFAULT_MAX_SESSIONS_PER_DAY
from .utils import format_time, intervals_overlap, parse_date, parse_time


class SessionType(str, Enum):
    """Kind of therapy delivered in a session."""

    SPEECH = "speech"
    OCCUPATIONAL = "occupational"
    PHYSICAL = "physical"
    ABA = "aba"
    PSYCHOLOGICAL = "psychological"


class SessionStatus(str, Enum):
    """Lifecycle status of a session."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    RESCHEDULED = "rescheduled"


class AvailabilityStatus(str, Enum):
    """Whether an availability window can be booked."""

    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class Severity(str, Enum):
    """Conflict severity. Only blocking conflicts prevent a commit."""

    BLOCKING = "blocking"
    ADVISORY = "advisory"


class ConflictKind(str, Enum):
    """Kinds of scheduling conflicts."""

    THERAPIST_DOUBLE_BOOKING = "therapist_double_booking"
    THERAPIST_UNAVAILABLE = "therapist_unavailable"
    BREAK_OVERLAP = "break_overlap"
    MAX_SESSIONS_EXCEEDED = "max_sessions_exceeded"
    ROOM_UNAVAILABLE = "room_unavailable"
    ROOM_CAPACITY = "room_capacity"
    ROOM_UNSUPPORTED_TYPE = "room_unsupported_type"
    STUDENT_DOUBLE_BOOKING = "student_double_booking"
    EQUIPMENT_UNAVAILABLE = "equipment_unavailable"
    EQUIPMENT_IN_USE = "equipment_in_use"
    THERAPIST_NOT_QUALIFIED = "therapist_not_qualified"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    PREFERENCE_VIOLATION = "preference_violation"
    STUDENT_MIN_GAP = "student_min_gap"
    BACK_TO_BACK = "back_to_back"


# One severity per kind, applied everywhere a conflict is raised
SEVERITY_BY_KIND: dict[ConflictKind, Severity] = {
    ConflictKind.THERAPIST_DOUBLE_BOOKING: Severity.BLOCKING,
    ConflictKind.THERAPIST_UNAVAILABLE: Severity.BLOCKING,
    ConflictKind.BREAK_OVERLAP: Severity.BLOCKING,
    ConflictKind.MAX_SESSIONS_EXCEEDED: Severity.BLOCKING,
    ConflictKind.ROOM_UNAVAILABLE: Severity.BLOCKING,
    ConflictKind.ROOM_CAPACITY: Severity.BLOCKING,
    ConflictKind.ROOM_UNSUPPORTED_TYPE: Severity.BLOCKING,
    ConflictKind.STUDENT_DOUBLE_BOOKING: Severity.BLOCKING,
    ConflictKind.EQUIPMENT_UNAVAILABLE: Severity.BLOCKING,
    ConflictKind.EQUIPMENT_IN_USE: Severity.BLOCKING,
    ConflictKind.THERAPIST_NOT_QUALIFIED: Severity.BLOCKING,
    ConflictKind.CONCURRENT_MODIFICATION: Severity.BLOCKING,
    ConflictKind.PREFERENCE_VIOLATION: Severity.ADVISORY,
    ConflictKind.STUDENT_MIN_GAP: Severity.ADVISORY,
    ConflictKind.BACK_TO_BACK: Severity.ADVISORY,
}


class Algorithm(str, Enum):
    """Optimization strategies."""

    GENETIC_ALGORITHM = "genetic_algorithm"
    SIMULATED_ANNEALING = "simulated_annealing"
    CONSTRAINT_SATISFACTION = "constraint_satisfaction"
    HYBRID = "hybrid"


class PerformanceMode(str, Enum):
    """Search thoroughness requested by the caller."""

    STANDARD = "standard"
    PEAK_LOAD = "peak_load"


class BulkOperationType(str, Enum):
    """Batch change applied by the bulk coordinator."""

    RESCHEDULE_RANGE = "reschedule_range"
    RESCHEDULE_THERAPIST = "reschedule_therapist"
    EMERGENCY_RESCHEDULE = "emergency_reschedule"
    TIME_SHIFT = "time_shift"
    ROOM_CHANGE = "room_change"


class BulkOperationStatus(str, Enum):
    """Bulk operation lifecycle."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ROLLED_BACK = "rolled_back"


class FreezeStrategy(str, Enum):
    """How sessions inside a freeze window are handled."""

    EXTEND_PROGRAM = "extend_program"
    SKIP_SESSIONS = "skip_sessions"


class FreezeStatus(str, Enum):
    """Freeze lifecycle."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ChangeType(str, Enum):
    """Type of outbound session change event."""

    CREATED = "created"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    RESTORED = "restored"


def _require(data: dict[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise InvalidSchedulingData("required field is missing", key)
    return data[key]


def _enum(enum_cls: type[Enum], value: Any, key: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidSchedulingData(f"'{value}' is not one of: {allowed}", key) from None


def _int(data: dict[str, Any], key: str, default: int | None = None) -> int | None:
    value = data.get(key)
    if value is None:
        return default
    # bool is an int subclass but never a valid count
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise InvalidSchedulingData(f"must be an integer, got {value!r}", key)
    try:
        return int(value)
    except ValueError:
        raise InvalidSchedulingData(f"must be an integer, got {value!r}", key) from None


def _float(data: dict[str, Any], key: str, default: float | None = None) -> float | None:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise InvalidSchedulingData(f"must be a number, got {value!r}", key)
    try:
        return float(value)
    except ValueError:
        raise InvalidSchedulingData(f"must be a number, got {value!r}", key) from None


@dataclass(frozen=True)
class Placement:
    """Where and when a session happens."""

    therapist_id: str
    room_id: str
    date: date
    start: int
    end: int

    @property
    def duration(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "Placement") -> bool:
        return self.date == other.date and intervals_overlap(
            self.start, self.end, other.start, other.end
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "therapist_id": self.therapist_id,
            "room_id": self.room_id,
            "date": self.date.isoformat(),
            "start_time": format_time(self.start),
            "end_time": format_time(self.end),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Placement":
        return cls(
            therapist_id=str(_require(data, "therapist_id")),
            room_id=str(_require(data, "room_id")),
            date=parse_date(_require(data, "date")),
            start=parse_time(_require(data, "start_time"), "start_time"),
            end=parse_time(_require(data, "end_time"), "end_time"),
        )


@dataclass
class Session:
    """A single therapy appointment."""

    id: str
    student_id: str
    therapist_id: str
    room_id: str
    date: date
    start: int
    end: int
    session_type: SessionType
    program_id: str = ""
    status: SessionStatus = SessionStatus.SCHEDULED
    required_equipment: frozenset[str] = frozenset()
    duration_override: int | None = None
    reschedule_count: int = 0

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise InvalidSchedulingData(
                f"start {format_time(self.start)} must be before end {format_time(self.end)}",
                "end_time",
            )
        if self.duration_override is not None and self.duration_override <= 0:
            raise InvalidSchedulingData("duration must be positive", "duration_minutes")
        self.required_equipment = frozenset(self.required_equipment)

    @property
    def duration(self) -> int:
        """Booked length in minutes; defaults to end - start."""
        if self.duration_override is not None:
            return self.duration_override
        return self.end - self.start

    @property
    def placement(self) -> Placement:
        return Placement(self.therapist_id, self.room_id, self.date, self.start, self.end)

    @property
    def is_occupying(self) -> bool:
        """Cancelled sessions free their therapist, room, and student."""
        return self.status != SessionStatus.CANCELLED

    @property
    def is_movable(self) -> bool:
        return self.status in (SessionStatus.SCHEDULED, SessionStatus.RESCHEDULED)

    def overlaps(self, other: "Session") -> bool:
        return self.date == other.date and intervals_overlap(
            self.start, self.end, other.start, other.end
        )

    def moved_to(self, placement: Placement) -> "Session":
        """Return a rescheduled copy of this session at ``placement``."""
        return replace(
            self,
            therapist_id=placement.therapist_id,
            room_id=placement.room_id,
            date=placement.date,
            start=placement.start,
            end=placement.end,
            status=SessionStatus.RESCHEDULED,
            reschedule_count=self.reschedule_count + 1,
        )

    def cancelled(self) -> "Session":
        return replace(self, status=SessionStatus.CANCELLED)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        """Create a Session from a JSON-style dictionary."""
        start = parse_time(_require(data, "start_time"), "start_time")
        end = parse_time(_require(data, "end_time"), "end_time")
        duration = _int(data, "duration_minutes")
        return cls(
            id=str(_require(data, "id")),
            student_id=str(_require(data, "student_id")),
            therapist_id=str(_require(data, "therapist_id")),
            room_id=str(_require(data, "room_id")),
            date=parse_date(_require(data, "date")),
            start=start,
            end=end,
            session_type=_enum(SessionType, _require(data, "session_type"), "session_type"),
            program_id=str(data.get("program_id", "")),
            status=_enum(SessionStatus, data.get("status", "scheduled"), "status"),
            required_equipment=frozenset(data.get("required_equipment", [])),
            duration_override=(
                duration if duration is not None and duration != end - start else None
            ),
            reschedule_count=_int(data, "reschedule_count", 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "therapist_id": self.therapist_id,
            "room_id": self.room_id,
            "program_id": self.program_id,
            "date": self.date.isoformat(),
            "start_time": format_time(self.start),
            "end_time": format_time(self.end),
            "duration_minutes": self.duration,
            "session_type": self.session_type.value,
            "status": self.status.value,
            "required_equipment": sorted(self.required_equipment),
            "reschedule_count": self.reschedule_count,
        }


@dataclass(frozen=True)
class BreakInterval:
    """A sub-range of an availability window that cannot be booked."""

    start: int
    end: int

    def to_dict(self) -> dict[str, str]:
        return {"start_time": format_time(self.start), "end_time": format_time(self.end)}


@dataclass
class TherapistAvailability:
    """A therapist's open window on one date."""

    therapist_id: str
    date: date
    start: int
    end: int
    breaks: list[BreakInterval] = field(default_factory=list)
    max_sessions_per_day: int = DEFAULT_MAX_SESSIONS_PER_DAY
    status: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    specializations: frozenset[SessionType] = frozenset()

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise InvalidSchedulingData("window start must be before end", "end_time")
        if self.max_sessions_per_day < 0:
            raise InvalidSchedulingData("must not be negative", "max_sessions_per_day")
        self.breaks = sorted(self.breaks, key=lambda b: b.start)
        previous_end = self.start
        for brk in self.breaks:
            if brk.start >= brk.end:
                raise InvalidSchedulingData("break start must be before end", "breaks")
            if brk.start < previous_end or brk.end > self.end:
                raise InvalidSchedulingData(
                    f"break {format_time(brk.start)}-{format_time(brk.end)} overlaps "
                    "another break or leaves the window",
                    "breaks",
                )
            previous_end = brk.end
        self.specializations = frozenset(self.specializations)

    @property
    def is_available(self) -> bool:
        return self.status == AvailabilityStatus.AVAILABLE

    def contains(self, start: int, end: int) -> bool:
        return self.start <= start and end <= self.end

    def break_overlapping(self, start: int, end: int) -> BreakInterval | None:
        for brk in self.breaks:
            if intervals_overlap(start, end, brk.start, brk.end):
                return brk
        return None

    def qualifies(self, session_type: SessionType) -> bool:
        return not self.specializations or session_type in self.specializations

    def bookable_starts(self, duration: int, step: int) -> Iterator[int]:
        """Yield start minutes where ``duration`` fits inside the window and avoids breaks."""
        start = self.start
        while start + duration <= self.end:
            if self.break_overlapping(start, start + duration) is None:
                yield start
            start += step

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TherapistAvailability":
        breaks = [
            BreakInterval(
                parse_time(_require(b, "start_time"), "breaks"),
                parse_time(_require(b, "end_time"), "breaks"),
            )
            for b in data.get("breaks", [])
        ]
        return cls(
            therapist_id=str(_require(data, "therapist_id")),
            date=parse_date(_require(data, "date")),
            start=parse_time(_require(data, "start_time"), "start_time"),
            end=parse_time(_require(data, "end_time"), "end_time"),
            breaks=breaks,
            max_sessions_per_day=_int(data, "max_sessions_per_day", DEFAULT_MAX_SESSIONS_PER_DAY),
            status=_enum(AvailabilityStatus, data.get("status", "available"), "status"),
            specializations=frozenset(
                _enum(SessionType, s, "specializations") for s in data.get("specializations", [])
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "therapist_id": self.therapist_id,
            "date": self.date.isoformat(),
            "start_time": format_time(self.start),
            "end_time": format_time(self.end),
            "breaks": [b.to_dict() for b in self.breaks],
            "max_sessions_per_day": self.max_sessions_per_day,
            "status": self.status.value,
            "specializations": sorted(s.value for s in self.specializations),
        }


@dataclass
class TherapyRoom:
    """A treatment room."""

    id: str
    capacity: int
    supported_session_types: frozenset[SessionType]
    equipment: frozenset[str] = frozenset()
    active: bool = True
    name: str = ""

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise InvalidSchedulingData("room capacity must be at least 1", "capacity")
        self.supported_session_types = frozenset(self.supported_session_types)
        self.equipment = frozenset(self.equipment)

    def supports(self, session_type: SessionType) -> bool:
        return session_type in self.supported_session_types

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TherapyRoom":
        return cls(
            id=str(_require(data, "id")),
            capacity=_int(data, "capacity", 1),
            supported_session_types=frozenset(
                _enum(SessionType, s, "supported_session_types")
                for s in _require(data, "supported_session_types")
            ),
            equipment=frozenset(data.get("equipment", [])),
            active=bool(data.get("active", True)),
            name=str(data.get("name", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "capacity": self.capacity,
            "supported_session_types": sorted(t.value for t in self.supported_session_types),
            "equipment": sorted(self.equipment),
            "active": self.active,
        }


@dataclass(frozen=True)
class Conflict:
    """A single detected conflict for a candidate placement."""

    kind: ConflictKind
    session_ids: tuple[str, ...]
    date: date
    start: int
    end: int
    message: str
    resource_id: str | None = None

    @property
    def severity(self) -> Severity:
        return SEVERITY_BY_KIND[self.kind]

    @property
    def is_blocking(self) -> bool:
        return self.severity == Severity.BLOCKING

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "session_ids": list(self.session_ids),
            "resource_id": self.resource_id,
            "date": self.date.isoformat(),
            "start_time": format_time(self.start),
            "end_time": format_time(self.end),
            "message": self.message,
        }


@dataclass
class ConflictReport:
    """Conflicts found for one candidate placement plus suggested alternatives."""

    session_id: str
    conflicts: list[Conflict] = field(default_factory=list)
    alternatives: list[Placement] = field(default_factory=list)

    @property
    def blocking(self) -> list[Conflict]:
        return [c for c in self.conflicts if c.is_blocking]

    @property
    def advisory(self) -> list[Conflict]:
        return [c for c in self.conflicts if not c.is_blocking]

    @property
    def has_blocking(self) -> bool:
        return any(c.is_blocking for c in self.conflicts)

    @property
    def kinds(self) -> set[ConflictKind]:
        return {c.kind for c in self.conflicts}

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "has_blocking_conflicts": self.has_blocking,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "alternatives": [a.to_dict() for a in self.alternatives],
        }


@dataclass
class ProposedAssignment:
    """Optimizer proposal for one session."""

    session_id: str
    original: Placement
    proposed: Placement

    @property
    def changed(self) -> bool:
        return self.original != self.proposed

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "changed": self.changed,
            "original": self.original.to_dict(),
            "proposed": self.proposed.to_dict(),
        }


@dataclass
class UnresolvedSession:
    """A session the optimizer could not place without blocking conflicts."""

    session_id: str
    reasons: list[Conflict] = field(default_factory=list)
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "message": self.message,
            "reasons": [r.to_dict() for r in self.reasons],
        }


@dataclass
class OptimizationMetadata:
    """How an optimization run went."""

    algorithm: Algorithm
    performance_mode: PerformanceMode = PerformanceMode.STANDARD
    iterations: int = 0
    generations: int = 0
    backtracks: int = 0
    converged: bool = False
    deadline_reached: bool = False
    degradation_applied: bool = False
    elapsed_seconds: float = 0.0
    final_temperature: float | None = None
    seed: int | None = None
    cp_sat_status: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "algorithm": self.algorithm.value,
            "performance_mode": self.performance_mode.value,
            "iterations": self.iterations,
            "generations": self.generations,
            "backtracks": self.backtracks,
            "converged": self.converged,
            "deadline_reached": self.deadline_reached,
            "degradation_applied": self.degradation_applied,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
            "final_temperature": self.final_temperature,
            "seed": self.seed,
            "cp_sat_status": self.cp_sat_status,
        }


@dataclass
class OptimizationResult:
    """A proposed schedule. Nothing is applied until the caller commits it."""

    success: bool
    assignments: list[ProposedAssignment]
    unresolved: list[UnresolvedSession]
    quality_score: float
    metadata: OptimizationMetadata
    objective_breakdown: dict[str, float] = field(default_factory=dict)
    metrics_before: dict[str, Any] = field(default_factory=dict)
    metrics_after: dict[str, Any] = field(default_factory=dict)

    @property
    def changed_assignments(self) -> list[ProposedAssignment]:
        return [a for a in self.assignments if a.changed]

    @property
    def unresolved_fraction(self) -> float:
        total = len(self.assignments) + len(self.unresolved)
        return len(self.unresolved) / total if total else 0.0

    def apply(self, sessions: list[Session]) -> list[Session]:
        """Return ``sessions`` with every changed proposal applied."""
        proposals = {a.session_id: a for a in self.changed_assignments}
        result = []
        for session in sessions:
            proposal = proposals.get(session.id)
            result.append(session.moved_to(proposal.proposed) if proposal else session)
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "quality_score": round(self.quality_score, 6),
            "objective_breakdown": {k: round(v, 6) for k, v in self.objective_breakdown.items()},
            "assignments": [a.to_dict() for a in self.assignments],
            "unresolved": [u.to_dict() for u in self.unresolved],
            "metadata": self.metadata.to_dict(),
            "metrics_before": self.metrics_before,
            "metrics_after": self.metrics_after,
        }


@dataclass
class BulkParameters:
    """Operation-specific parameters of a bulk change."""

    source_start: date | None = None
    source_end: date | None = None
    target_start: date | None = None
    target_end: date | None = None
    to_therapist_id: str | None = None
    to_room_id: str | None = None
    shift_minutes: int = 0
    max_day_offset: int | None = None
    blocked_dates: frozenset[date] = frozenset()
    reason: str = ""

    @property
    def day_delta(self) -> int:
        if self.source_start is None or self.target_start is None:
            return 0
        return (self.target_start - self.source_start).days

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BulkParameters":
        def optional_date(key: str) -> date | None:
            return parse_date(data[key], key) if data.get(key) else None

        return cls(
            source_start=optional_date("source_start"),
            source_end=optional_date("source_end"),
            target_start=optional_date("target_start"),
            target_end=optional_date("target_end"),
            to_therapist_id=data.get("to_therapist_id"),
            to_room_id=data.get("to_room_id"),
            shift_minutes=_int(data, "shift_minutes", 0),
            max_day_offset=_int(data, "max_day_offset"),
            blocked_dates=frozenset(
                parse_date(d, "blocked_dates") for d in data.get("blocked_dates", [])
            ),
            reason=str(data.get("reason", "")),
        )

    def to_dict(self) -> dict[str, Any]:
        def iso(value: date | None) -> str | None:
            return value.isoformat() if value else None

        return {
            "source_start": iso(self.source_start),
            "source_end": iso(self.source_end),
            "target_start": iso(self.target_start),
            "target_end": iso(self.target_end),
            "to_therapist_id": self.to_therapist_id,
            "to_room_id": self.to_room_id,
            "shift_minutes": self.shift_minutes,
            "max_day_offset": self.max_day_offset,
            "blocked_dates": sorted(d.isoformat() for d in self.blocked_dates),
            "reason": self.reason,
        }


@dataclass
class BulkProgress:
    """Incremental counters of a bulk operation."""

    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
        }


@dataclass
class BulkReschedulingOperation:
    """A batch change across many sessions."""

    id: str
    operation_type: BulkOperationType
    session_ids: list[str]
    parameters: BulkParameters = field(default_factory=BulkParameters)
    status: BulkOperationStatus = BulkOperationStatus.PENDING
    progress: BulkProgress = field(default_factory=BulkProgress)
    conflicts: list[Conflict] = field(default_factory=list)
    time_budget_seconds: float | None = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            BulkOperationStatus.COMPLETED,
            BulkOperationStatus.FAILED,
            BulkOperationStatus.CANCELLED,
            BulkOperationStatus.ROLLED_BACK,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BulkReschedulingOperation":
        session_ids = _require(data, "session_ids")
        if not isinstance(session_ids, list):
            raise InvalidSchedulingData("must be a list of session ids", "session_ids")
        return cls(
            id=str(_require(data, "id")),
            operation_type=_enum(BulkOperationType, _require(data, "operation_type"), "operation_type"),
            session_ids=[str(s) for s in session_ids],
            parameters=BulkParameters.from_dict(data.get("parameters", {})),
            time_budget_seconds=_float(data, "time_budget_seconds"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation_type": self.operation_type.value,
            "session_ids": list(self.session_ids),
            "parameters": self.parameters.to_dict(),
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "time_budget_seconds": self.time_budget_seconds,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class BulkItemResult:
    """Outcome for one session of a bulk operation."""

    session_id: str
    success: bool
    original: Placement | None = None
    new: Placement | None = None
    conflicts: list[Conflict] = field(default_factory=list)
    message: str = ""
    used_alternative: bool = False
    # Session record before the change, restored by rollback
    previous: Session | None = None
    reverted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "success": self.success,
            "reverted": self.reverted,
            "original": self.original.to_dict() if self.original else None,
            "new": self.new.to_dict() if self.new else None,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "message": self.message,
            "used_alternative": self.used_alternative,
        }


@dataclass
class BulkOperationResult:
    """Result of processing a bulk operation."""

    operation_id: str
    success: bool
    status: BulkOperationStatus
    progress: BulkProgress
    items: list[BulkItemResult] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    degraded: bool = False

    @property
    def successful_session_ids(self) -> list[str]:
        return [i.session_id for i in self.items if i.success and not i.reverted]

    @property
    def failed_session_ids(self) -> list[str]:
        return [i.session_id for i in self.items if not i.success]

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "success": self.success,
            "status": self.status.value,
            "progress": self.progress.to_dict(),
            "items": [i.to_dict() for i in self.items],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "degraded": self.degraded,
        }


@dataclass
class RollbackResult:
    """Which sessions an explicit rollback restored."""

    operation_id: str
    success: bool
    status: BulkOperationStatus
    reverted_session_ids: list[str] = field(default_factory=list)
    not_reverted: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "success": self.success,
            "status": self.status.value,
            "reverted_session_ids": list(self.reverted_session_ids),
            "not_reverted": list(self.not_reverted),
        }


@dataclass
class Subscription:
    """A student's enrollment in a therapy program."""

    id: str
    student_id: str
    program_id: str
    start_date: date
    end_date: date
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    freeze_days_allowed: int = 30
    freeze_days_used: int = 0
    exclude_weekends: bool = False

    @property
    def remaining_freeze_days(self) -> int:
        return max(0, self.freeze_days_allowed - self.freeze_days_used)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Subscription":
        return cls(
            id=str(_require(data, "id")),
            student_id=str(_require(data, "student_id")),
            program_id=str(data.get("program_id", "")),
            start_date=parse_date(_require(data, "start_date"), "start_date"),
            end_date=parse_date(_require(data, "end_date"), "end_date"),
            status=_enum(SubscriptionStatus, data.get("status", "active"), "status"),
            freeze_days_allowed=_int(data, "freeze_days_allowed", 30),
            freeze_days_used=_int(data, "freeze_days_used", 0),
            exclude_weekends=bool(data.get("exclude_weekends", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "student_id": self.student_id,
            "program_id": self.program_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "status": self.status.value,
            "freeze_days_allowed": self.freeze_days_allowed,
            "freeze_days_used": self.freeze_days_used,
            "remaining_freeze_days": self.remaining_freeze_days,
            "exclude_weekends": self.exclude_weekends,
        }


@dataclass
class FreezeRequest:
    """Request to pause a subscription over the half-open window [start_date, end_date)."""

    subscription_id: str
    start_date: date
    end_date: date
    reason: str
    strategy: FreezeStrategy = FreezeStrategy.EXTEND_PROGRAM
    preview_only: bool = False
    session_rate: float = 0.0

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FreezeRequest":
        return cls(
            subscription_id=str(_require(data, "subscription_id")),
            start_date=parse_date(_require(data, "start_date"), "start_date"),
            end_date=parse_date(_require(data, "end_date"), "end_date"),
            reason=str(data.get("reason", "")),
            strategy=_enum(FreezeStrategy, data.get("strategy", "extend_program"), "strategy"),
            preview_only=bool(data.get("preview_only", False)),
            session_rate=_float(data, "session_rate", 0.0),
        )


@dataclass
class ImpactAnalysis:
    """What a freeze would change."""

    subscription_id: str
    student_id: str
    strategy: FreezeStrategy
    freeze_days: int
    affected_sessions: list[Session]
    original_end_date: date
    new_end_date: date
    adjustment_days: int
    calculation_method: str
    therapist_workload_delta: dict[str, int] = field(default_factory=dict)
    cost_adjustment: float = 0.0

    @property
    def affected_session_ids(self) -> list[str]:
        return [s.id for s in self.affected_sessions]

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "student_id": self.student_id,
            "strategy": self.strategy.value,
            "freeze_days": self.freeze_days,
            "affected_session_count": len(self.affected_sessions),
            "affected_session_ids": self.affected_session_ids,
            "original_end_date": self.original_end_date.isoformat(),
            "new_end_date": self.new_end_date.isoformat(),
            "adjustment_days": self.adjustment_days,
            "calculation_method": self.calculation_method,
            "therapist_workload_delta": dict(self.therapist_workload_delta),
            "cost_adjustment": round(self.cost_adjustment, 2),
        }


@dataclass
class SubscriptionFreeze:
    """A stored freeze period."""

    id: str
    subscription_id: str
    student_id: str
    start_date: date
    end_date: date
    reason: str
    strategy: FreezeStrategy
    status: FreezeStatus = FreezeStatus.PENDING
    impact: ImpactAnalysis | None = None
    bulk_operation_id: str | None = None
    rescheduling_complete: bool = False
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days

    def overlaps(self, start: date, end: date) -> bool:
        return self.start_date < end and start < self.end_date

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "student_id": self.student_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "reason": self.reason,
            "strategy": self.strategy.value,
            "status": self.status.value,
            "impact": self.impact.to_dict() if self.impact else None,
            "bulk_operation_id": self.bulk_operation_id,
            "rescheduling_complete": self.rescheduling_complete,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class FreezeResult:
    """Outcome of a freeze request."""

    success: bool
    message: str
    impact: ImpactAnalysis
    freeze: SubscriptionFreeze | None = None
    bulk_result: BulkOperationResult | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "impact": self.impact.to_dict(),
            "freeze": self.freeze.to_dict() if self.freeze else None,
            "bulk_result": self.bulk_result.to_dict() if self.bulk_result else None,
        }


@dataclass
class CollaboratorResult:
    """``{success, data, conflicts, warnings}`` shaped answer of a sub-check."""

    success: bool
    data: Any = None
    conflicts: list[Conflict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "warnings": list(self.warnings),
            "error": self.error,
        }


@dataclass
class ValidationResult:
    """Aggregated result of every integration sub-check."""

    success: bool
    error: str | None = None
    warnings: list[str] = field(default_factory=list)
    conflicts: list[Conflict] = field(default_factory=list)
    checks: dict[str, CollaboratorResult] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "warnings": list(self.warnings),
            "conflicts": [c.to_dict() for c in self.conflicts],
            "checks": {name: r.to_dict() for name, r in self.checks.items()},
        }


@dataclass
class SessionChangeEvent:
    """Notification-worthy record emitted after a session change is committed."""

    type: ChangeType
    session: Session
    affected_user_ids: list[str]
    previous: Placement | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "session": self.session.to_dict(),
            "affected_user_ids": list(self.affected_user_ids),
            "previous": self.previous.to_dict() if self.previous else None,
        }
