"""Hard constraint implementations for the CP-SAT model.

Hard constraints are mandatory requirements that must never be violated.
Availability windows, breaks, qualifications, room type support and
equipment presence are handled in domain reduction: only placements that
pass those checks become variables.
"""

from collections import defaultdict
from datetime import date
from typing import TYPE_CHECKING

from ortools.sat.python import cp_model

from .base import ConstraintBase

if TYPE_CHECKING:
    from ..objective import ScheduleEvaluator

# (variable, start, end) of a candidate placement
_Interval = tuple[cp_model.IntVar, int, int]


def _covering(intervals, point: int) -> list:
    return [item for item in intervals if item[1] <= point < item[2]]


class HardConstraints(ConstraintBase):
    """
    Implementation of all hard constraints.

    Overlap limits are posted at every start point of a candidate or fixed
    session: two intervals overlap exactly when one starts inside the other,
    so bounding the load at those points bounds it everywhere.

    - Therapist single allocation
    - Student single allocation
    - Room capacity
    - Equipment exclusivity within a room
    - Therapist daily session limit
    """

    def __init__(self, model: cp_model.CpModel, evaluator: "ScheduleEvaluator"):
        super().__init__(model, evaluator)
        self._fixed = evaluator.fixed

    def apply(self, variables: dict) -> None:
        """Apply all hard constraints to the model."""
        by_therapist: dict[tuple[str, date], list[_Interval]] = defaultdict(list)
        by_student: dict[tuple[str, date], list[_Interval]] = defaultdict(list)
        by_room: dict[tuple[str, date], list[tuple[_Interval, frozenset[str]]]] = defaultdict(list)

        for (index, gene), var in variables["x"].items():
            p = self.evaluator.placement(index, gene)
            session = self.evaluator.sessions[index]
            interval = (var, p.start, p.end)
            by_therapist[(p.therapist_id, p.date)].append(interval)
            by_student[(session.student_id, p.date)].append(interval)
            by_room[(p.room_id, p.date)].append((interval, session.required_equipment))

        self._apply_therapist_single_allocation(by_therapist)
        self._apply_student_single_allocation(by_student)
        self._apply_room_capacity(by_room)
        if self.evaluator.constraints.facility.enforce_equipment:
            self._apply_equipment_exclusivity(by_room)
        self._apply_daily_load(by_therapist)

    def _limit_overlaps(
        self,
        intervals: list[_Interval],
        fixed: list[tuple[int, int]],
        capacity: int,
    ) -> None:
        """At every start point, candidates covering it fit in what fixed sessions leave."""
        if not intervals:
            return
        fixed_intervals = [(None, start, end) for start, end in fixed]
        points = {start for _, start, _ in intervals} | {start for start, _ in fixed}
        for point in sorted(points):
            active = [var for var, _, _ in _covering(intervals, point)]
            if not active:
                continue
            room_left = max(0, capacity - len(_covering(fixed_intervals, point)))
            if room_left == 0:
                for var in active:
                    self.model.Add(var == 0)
            elif len(active) > room_left:
                if room_left == 1:
                    self.model.AddAtMostOne(active)
                else:
                    self.model.Add(sum(active) <= room_left)

    def _apply_therapist_single_allocation(
        self, by_therapist: dict[tuple[str, date], list[_Interval]]
    ) -> None:
        """A therapist runs one session at a time."""
        for (therapist_id, day), intervals in by_therapist.items():
            fixed = [(s.start, s.end) for s in self._fixed.therapist_sessions(therapist_id, day)]
            self._limit_overlaps(intervals, fixed, 1)

    def _apply_student_single_allocation(
        self, by_student: dict[tuple[str, date], list[_Interval]]
    ) -> None:
        """A student attends one session at a time."""
        for (student_id, day), intervals in by_student.items():
            fixed = [(s.start, s.end) for s in self._fixed.student_sessions(student_id, day)]
            self._limit_overlaps(intervals, fixed, 1)

    def _apply_room_capacity(self, by_room: dict) -> None:
        """Concurrent sessions in a room never exceed its capacity."""
        for (room_id, day), entries in by_room.items():
            intervals = [interval for interval, _ in entries]
            fixed = [(s.start, s.end) for s in self._fixed.room_sessions(room_id, day)]
            self._limit_overlaps(intervals, fixed, self._fixed.rooms[room_id].capacity)

    def _apply_equipment_exclusivity(self, by_room: dict) -> None:
        """One session at a time per equipment item in a room."""
        for (room_id, day), entries in by_room.items():
            by_item: dict[str, list[_Interval]] = defaultdict(list)
            for interval, equipment in entries:
                for item in equipment:
                    by_item[item].append(interval)
            fixed_sessions = self._fixed.room_sessions(room_id, day)
            for item, intervals in by_item.items():
                fixed = [(s.start, s.end) for s in fixed_sessions if item in s.required_equipment]
                self._limit_overlaps(intervals, fixed, 1)

    def _apply_daily_load(self, by_therapist: dict[tuple[str, date], list[_Interval]]) -> None:
        """Sessions per therapist and day stay within the daily limit."""
        for (therapist_id, day), intervals in by_therapist.items():
            fixed_count = len(self._fixed.therapist_sessions(therapist_id, day))
            allowed = max(0, self.evaluator.daily_limit(therapist_id, day) - fixed_count)
            if len(intervals) > allowed:
                self.model.Add(sum(var for var, _, _ in intervals) <= allowed)
