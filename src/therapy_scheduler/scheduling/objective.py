"""Objective scoring and conflict counting for candidate schedules.

A candidate schedule is a list of genes, one per session in scope: the
index of the chosen placement in that session's domain, or ``UNASSIGNED``.
"""

from collections import defaultdict
from datetime import date
from statistics import mean, pstdev
from typing import NamedTuple

from .config import OptimizationConstraints
from .conflicts import ScheduleSnapshot, peak_concurrency
from .constants import CONFLICT_PENALTY, UNASSIGNED_PENALTY
from .domains import SessionDomain
from .models import Placement
from .utils import intervals_overlap

UNASSIGNED = -1

# Fitness results kept per evaluator
_CACHE_LIMIT = 50_000


class _Slot(NamedTuple):
    index: int
    start: int
    end: int
    equipment: frozenset[str]


def _compactness(intervals: list[tuple[int, int]]) -> float:
    """Busy time divided by first-start-to-last-end span."""
    if len(intervals) < 2:
        return 1.0
    span = max(e for _, e in intervals) - min(s for s, _ in intervals)
    busy = sum(e - s for s, e in intervals)
    return min(1.0, busy / span) if span > 0 else 1.0


class ScheduleEvaluator:
    """Scores gene vectors against the weighted objective."""

    def __init__(
        self,
        domains: list[SessionDomain],
        fixed: ScheduleSnapshot,
        constraints: OptimizationConstraints,
    ):
        self.domains = domains
        self.fixed = fixed
        self.constraints = constraints
        self.sessions = [d.session for d in domains]
        self._cache: dict[tuple[int, ...], float] = {}
        self._limits: dict[tuple[str, date], int] = {}

    @property
    def size(self) -> int:
        return len(self.domains)

    def placement(self, index: int, gene: int) -> Placement | None:
        if gene == UNASSIGNED:
            return None
        return self.domains[index].placements[gene]

    def initial_genes(self) -> list[int]:
        """Original placements where still valid, unassigned otherwise."""
        return [
            d.original_index if d.original_index is not None else UNASSIGNED for d in self.domains
        ]

    def daily_limit(self, therapist_id: str, day: date) -> int:
        key = (therapist_id, day)
        if key not in self._limits:
            windows = [w for w in self.fixed.windows_for(therapist_id, day) if w.is_available]
            window_limit = min((w.max_sessions_per_day for w in windows), default=0)
            self._limits[key] = min(window_limit, self.constraints.therapist.max_sessions_per_day)
        return self._limits[key]

    def conflicted(self, genes: list[int]) -> set[int]:
        """Indices of sessions involved in a blocking conflict among the scope."""
        by_therapist: dict[tuple[str, date], list[_Slot]] = defaultdict(list)
        by_student: dict[tuple[str, date], list[_Slot]] = defaultdict(list)
        by_room: dict[tuple[str, date], list[_Slot]] = defaultdict(list)
        for i, gene in enumerate(genes):
            p = self.placement(i, gene)
            if p is None:
                continue
            slot = _Slot(i, p.start, p.end, self.sessions[i].required_equipment)
            by_therapist[(p.therapist_id, p.date)].append(slot)
            by_student[(self.sessions[i].student_id, p.date)].append(slot)
            by_room[(p.room_id, p.date)].append(slot)

        bad: set[int] = set()
        for (therapist_id, day), slots in by_therapist.items():
            bad |= self._pairwise_overlaps(slots)
            fixed_count = len(self.fixed.therapist_sessions(therapist_id, day))
            allowed = self.daily_limit(therapist_id, day) - fixed_count
            if len(slots) > allowed:
                ordered = sorted(slots, key=lambda s: (s.start, s.index))
                bad |= {s.index for s in ordered[max(0, allowed):]}
        for slots in by_student.values():
            bad |= self._pairwise_overlaps(slots)
        enforce_equipment = self.constraints.facility.enforce_equipment
        for (room_id, day), slots in by_room.items():
            room = self.fixed.rooms[room_id]
            fixed_slots = [
                _Slot(UNASSIGNED, s.start, s.end, s.required_equipment)
                for s in self.fixed.room_sessions(room_id, day)
            ]
            everyone = slots + fixed_slots
            for slot in slots:
                others = [
                    o
                    for o in everyone
                    if o is not slot and intervals_overlap(o.start, o.end, slot.start, slot.end)
                ]
                if not others:
                    continue
                if peak_concurrency(others, slot.start, slot.end) >= room.capacity:
                    bad.add(slot.index)
                elif enforce_equipment and any(o.equipment & slot.equipment for o in others):
                    bad.add(slot.index)
        return bad

    @staticmethod
    def _pairwise_overlaps(slots: list[_Slot]) -> set[int]:
        bad: set[int] = set()
        ordered = sorted(slots, key=lambda s: s.start)
        for a_pos, a in enumerate(ordered):
            for b in ordered[a_pos + 1:]:
                if b.start >= a.end:
                    break
                bad.add(a.index)
                bad.add(b.index)
        return bad

    def breakdown(self, genes: list[int]) -> dict[str, float]:
        """Per-component scores in [0, 1] over the assigned sessions."""
        assigned = [(i, self.placement(i, g)) for i, g in enumerate(genes) if g != UNASSIGNED]
        if not assigned:
            return {
                "therapist_preference": 0.0,
                "student_preference": 0.0,
                "efficiency": 0.0,
                "cost": 0.0,
            }

        therapist_days: dict[tuple[str, date], list[tuple[int, int]]] = defaultdict(list)
        student_days: dict[tuple[str, date], list[tuple[int, int]]] = defaultdict(list)
        workload: dict[str, int] = defaultdict(int)
        preference_hits = 0
        unchanged = 0
        for i, p in assigned:
            session = self.sessions[i]
            therapist_days[(p.therapist_id, p.date)].append((p.start, p.end))
            student_days[(session.student_id, p.date)].append((p.start, p.end))
            workload[p.therapist_id] += 1
            if self.constraints.student.satisfied_by(session.student_id, p.start, p.end):
                preference_hits += 1
            if p == session.placement:
                unchanged += 1

        for (therapist_id, day), intervals in therapist_days.items():
            intervals.extend((s.start, s.end) for s in self.fixed.therapist_sessions(therapist_id, day))

        counts = list(workload.values())
        for therapist_id in {d.session.therapist_id for d in self.domains} - set(workload):
            counts.append(0)
        balance = 1.0
        if len(counts) > 1 and mean(counts) > 0:
            balance = max(0.0, 1.0 - pstdev(counts) / mean(counts))

        therapist_score = balance
        therapist = self.constraints.therapist
        if therapist.avoid_back_to_back:
            rested = 0
            total = 0
            for intervals in therapist_days.values():
                ordered = sorted(intervals)
                for prev, nxt in zip(ordered, ordered[1:]):
                    total += 1
                    if nxt[0] - prev[1] >= therapist.break_duration_minutes:
                        rested += 1
            therapist_score = (balance + (rested / total if total else 1.0)) / 2

        student_score = (
            preference_hits / len(assigned)
            + mean(_compactness(v) for v in student_days.values())
        ) / 2

        return {
            "therapist_preference": therapist_score,
            "student_preference": student_score,
            "efficiency": mean(_compactness(v) for v in therapist_days.values()),
            "cost": unchanged / len(assigned),
        }

    def quality(self, genes: list[int]) -> float:
        """Weighted objective scaled by the share of sessions placed; always in [0, 1]."""
        if not genes:
            return 1.0
        weights = self.constraints.weights
        parts = self.breakdown(genes)
        score = (
            weights.therapist_preference * parts["therapist_preference"]
            + weights.student_preference * parts["student_preference"]
            + weights.efficiency * parts["efficiency"]
            + weights.cost * parts["cost"]
        )
        assigned = sum(1 for g in genes if g != UNASSIGNED)
        return max(0.0, min(1.0, score * assigned / len(genes)))

    def fitness(self, genes: list[int]) -> float:
        """Quality minus penalties for conflicted and unassigned sessions."""
        key = tuple(genes)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        n = max(1, len(genes))
        unassigned = sum(1 for g in genes if g == UNASSIGNED)
        value = (
            self.quality(genes)
            - CONFLICT_PENALTY * len(self.conflicted(genes)) / n
            - UNASSIGNED_PENALTY * unassigned / n
        )
        if len(self._cache) < _CACHE_LIMIT:
            self._cache[key] = value
        return value


class Occupancy:
    """Incremental index of placed scope sessions for fast feasibility checks."""

    def __init__(self, evaluator: ScheduleEvaluator):
        self.evaluator = evaluator
        self.genes = [UNASSIGNED] * evaluator.size
        self._therapist: dict[tuple[str, date], list[_Slot]] = defaultdict(list)
        self._student: dict[tuple[str, date], list[_Slot]] = defaultdict(list)
        self._room: dict[tuple[str, date], list[_Slot]] = defaultdict(list)

    def _keys(self, index: int, p: Placement) -> tuple:
        student_id = self.evaluator.sessions[index].student_id
        return (p.therapist_id, p.date), (student_id, p.date), (p.room_id, p.date)

    def add(self, index: int, gene: int) -> None:
        p = self.evaluator.placement(index, gene)
        slot = _Slot(index, p.start, p.end, self.evaluator.sessions[index].required_equipment)
        therapist_key, student_key, room_key = self._keys(index, p)
        self._therapist[therapist_key].append(slot)
        self._student[student_key].append(slot)
        self._room[room_key].append(slot)
        self.genes[index] = gene

    def remove(self, index: int) -> None:
        gene = self.genes[index]
        if gene == UNASSIGNED:
            return
        p = self.evaluator.placement(index, gene)
        for bucket, key in zip((self._therapist, self._student, self._room), self._keys(index, p)):
            bucket[key] = [s for s in bucket[key] if s.index != index]
        self.genes[index] = UNASSIGNED

    def fits(self, index: int, gene: int) -> bool:
        """Whether placing session ``index`` at ``gene`` keeps the scope conflict-free."""
        ev = self.evaluator
        p = ev.placement(index, gene)
        therapist_key, student_key, room_key = self._keys(index, p)

        therapist_slots = [s for s in self._therapist[therapist_key] if s.index != index]
        if any(intervals_overlap(s.start, s.end, p.start, p.end) for s in therapist_slots):
            return False
        fixed_count = len(ev.fixed.therapist_sessions(p.therapist_id, p.date))
        if fixed_count + len(therapist_slots) + 1 > ev.daily_limit(p.therapist_id, p.date):
            return False

        if any(
            s.index != index and intervals_overlap(s.start, s.end, p.start, p.end)
            for s in self._student[student_key]
        ):
            return False

        equipment = ev.sessions[index].required_equipment
        others = [
            s
            for s in self._room[room_key]
            if s.index != index and intervals_overlap(s.start, s.end, p.start, p.end)
        ]
        others.extend(
            _Slot(UNASSIGNED, s.start, s.end, s.required_equipment)
            for s in ev.fixed.room_sessions(p.room_id, p.date)
            if intervals_overlap(s.start, s.end, p.start, p.end)
        )
        if not others:
            return True
        if peak_concurrency(others, p.start, p.end) >= ev.fixed.rooms[p.room_id].capacity:
            return False
        if ev.constraints.facility.enforce_equipment and any(o.equipment & equipment for o in others):
            return False
        return True
