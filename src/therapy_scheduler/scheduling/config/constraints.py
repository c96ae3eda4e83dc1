"""Optimization constraints configuration.

Every section is a frozen dataclass. ``from_dict`` rejects unknown and
missing keys so a typo in a config file fails loudly instead of silently
falling back to a default.
"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any

from ...exceptions import ConfigurationError, InvalidSchedulingData
from ..constants import (
    DEFAULT_BREAK_DURATION_MINUTES,
    DEFAULT_MAX_SESSIONS_PER_DAY,
    WEIGHT_SUM_TOLERANCE,
)
from ..utils import format_time, intervals_overlap, parse_time


def check_keys(data: Any, cls: type, section: str) -> dict[str, Any]:
    """Validate that ``data`` has exactly the fields of dataclass ``cls``.

    Args:
        data: Raw mapping read from JSON.
        cls: Dataclass whose field names are the recognized options.
        section: Dotted path used in error messages.

    Returns:
        The mapping, unchanged.
    """
    if not isinstance(data, dict):
        raise ConfigurationError("expected an object", section)
    expected = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - expected)
    if unknown:
        raise ConfigurationError("unknown key", f"{section}.{unknown[0]}")
    missing = sorted(expected - set(data))
    if missing:
        raise ConfigurationError("missing key", f"{section}.{missing[0]}")
    return data


@dataclass(frozen=True)
class TimeWindow:
    """A daily time-of-day window in minutes."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ConfigurationError("window start must be before end", "time_window")

    def contains(self, start: int, end: int) -> bool:
        return self.start <= start and end <= self.end

    def overlaps(self, start: int, end: int) -> bool:
        return intervals_overlap(self.start, self.end, start, end)

    @classmethod
    def from_dict(cls, data: dict[str, Any], section: str) -> "TimeWindow":
        data = check_keys(data, _WindowKeys, section)
        try:
            return cls(parse_time(data["start_time"]), parse_time(data["end_time"]))
        except InvalidSchedulingData as e:
            raise ConfigurationError(e.message, section) from e

    def to_dict(self) -> dict[str, str]:
        return {"start_time": format_time(self.start), "end_time": format_time(self.end)}


@dataclass
class _WindowKeys:
    start_time: str
    end_time: str


@dataclass(frozen=True)
class TherapistConstraints:
    max_sessions_per_day: int = DEFAULT_MAX_SESSIONS_PER_DAY
    break_duration_minutes: int = DEFAULT_BREAK_DURATION_MINUTES
    avoid_back_to_back: bool = False

    def __post_init__(self) -> None:
        if self.max_sessions_per_day < 1:
            raise ConfigurationError("must be at least 1", "therapist.max_sessions_per_day")
        if self.break_duration_minutes < 0:
            raise ConfigurationError("must not be negative", "therapist.break_duration_minutes")


@dataclass(frozen=True)
class StudentPreference:
    """Scheduling preferences of one student."""

    preferred_windows: tuple[TimeWindow, ...] = ()
    avoid_windows: tuple[TimeWindow, ...] = ()
    min_gap_minutes: int | None = None

    def in_preferred_window(self, start: int, end: int) -> bool:
        if not self.preferred_windows:
            return True
        return any(w.contains(start, end) for w in self.preferred_windows)

    def in_avoid_window(self, start: int, end: int) -> bool:
        return any(w.overlaps(start, end) for w in self.avoid_windows)

    def satisfied_by(self, start: int, end: int) -> bool:
        return self.in_preferred_window(start, end) and not self.in_avoid_window(start, end)

    @classmethod
    def from_dict(cls, data: dict[str, Any], section: str) -> "StudentPreference":
        data = check_keys(data, cls, section)
        gap = data["min_gap_minutes"]
        return cls(
            preferred_windows=tuple(
                TimeWindow.from_dict(w, f"{section}.preferred_windows")
                for w in data["preferred_windows"]
            ),
            avoid_windows=tuple(
                TimeWindow.from_dict(w, f"{section}.avoid_windows") for w in data["avoid_windows"]
            ),
            min_gap_minutes=int(gap) if gap is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "preferred_windows": [w.to_dict() for w in self.preferred_windows],
            "avoid_windows": [w.to_dict() for w in self.avoid_windows],
            "min_gap_minutes": self.min_gap_minutes,
        }


@dataclass(frozen=True)
class StudentConstraints:
    default_min_gap_minutes: int = 0
    preferences: dict[str, StudentPreference] = field(default_factory=dict)

    def preference_for(self, student_id: str) -> StudentPreference | None:
        return self.preferences.get(student_id)

    def min_gap_for(self, student_id: str) -> int:
        pref = self.preferences.get(student_id)
        if pref is not None and pref.min_gap_minutes is not None:
            return pref.min_gap_minutes
        return self.default_min_gap_minutes

    def satisfied_by(self, student_id: str, start: int, end: int) -> bool:
        pref = self.preferences.get(student_id)
        return pref is None or pref.satisfied_by(start, end)


@dataclass(frozen=True)
class FacilityConstraints:
    allow_room_reassignment: bool = True
    allow_therapist_reassignment: bool = False
    enforce_equipment: bool = True


@dataclass(frozen=True)
class ObjectiveWeights:
    """Priority weights of the objective; they must sum to 1.0."""

    therapist_preference: float = 0.25
    student_preference: float = 0.35
    efficiency: float = 0.25
    cost: float = 0.15

    def __post_init__(self) -> None:
        values = asdict(self)
        for name, value in values.items():
            if value < 0:
                raise ConfigurationError("weight must not be negative", f"weights.{name}")
        total = sum(values.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ConfigurationError(f"weights must sum to 1.0, got {total:.6f}", "weights")


@dataclass(frozen=True)
class OptimizationConstraints:
    """Constraint bundle for one optimization run."""

    therapist: TherapistConstraints = field(default_factory=TherapistConstraints)
    student: StudentConstraints = field(default_factory=StudentConstraints)
    facility: FacilityConstraints = field(default_factory=FacilityConstraints)
    weights: ObjectiveWeights = field(default_factory=ObjectiveWeights)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OptimizationConstraints":
        """Build constraints from a mapping, rejecting unknown or missing keys."""
        data = check_keys(data, cls, "constraints")

        student_data = check_keys(data["student"], StudentConstraints, "student")
        preferences_data = student_data["preferences"]
        if not isinstance(preferences_data, dict):
            raise ConfigurationError("expected an object keyed by student id", "student.preferences")
        student = StudentConstraints(
            default_min_gap_minutes=int(student_data["default_min_gap_minutes"]),
            preferences={
                str(student_id): StudentPreference.from_dict(pref, f"student.preferences.{student_id}")
                for student_id, pref in preferences_data.items()
            },
        )

        return cls(
            therapist=TherapistConstraints(
                **check_keys(data["therapist"], TherapistConstraints, "therapist")
            ),
            student=student,
            facility=FacilityConstraints(
                **check_keys(data["facility"], FacilityConstraints, "facility")
            ),
            weights=ObjectiveWeights(
                **{
                    k: float(v)
                    for k, v in check_keys(data["weights"], ObjectiveWeights, "weights").items()
                }
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "therapist": asdict(self.therapist),
            "student": {
                "default_min_gap_minutes": self.student.default_min_gap_minutes,
                "preferences": {k: v.to_dict() for k, v in self.student.preferences.items()},
            },
            "facility": asdict(self.facility),
            "weights": asdict(self.weights),
        }
