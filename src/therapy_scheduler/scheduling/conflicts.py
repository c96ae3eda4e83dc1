"""Conflict detection for therapy session placements."""

from collections import defaultdict
from dataclasses import replace
from datetime import date
from typing import Iterable

from .config import OptimizationConstraints
from .constants import (
    DEFAULT_ALTERNATIVE_SEARCH_DAYS,
    DEFAULT_MAX_ALTERNATIVES,
    SLOT_STEP_MINUTES,
)
from .models import (
    Conflict,
    ConflictKind,
    ConflictReport,
    Placement,
    Session,
    TherapistAvailability,
    TherapyRoom,
)
from .utils import adjacent_dates, format_time, intervals_overlap


def place_session(session: Session, placement: Placement) -> Session:
    """Copy of ``session`` at ``placement`` with status and counters untouched."""
    return replace(
        session,
        therapist_id=placement.therapist_id,
        room_id=placement.room_id,
        date=placement.date,
        start=placement.start,
        end=placement.end,
    )


class ScheduleSnapshot:
    """Indexed view of sessions, availability windows and rooms.

    Only sessions that occupy resources (anything not cancelled) are indexed.
    Verification passes update it with ``add``/``remove`` as placements change.
    """

    def __init__(
        self,
        sessions: Iterable[Session],
        availabilities: Iterable[TherapistAvailability],
        rooms: Iterable[TherapyRoom],
    ):
        # (therapist_id, date) -> sessions
        self._by_therapist: dict[tuple[str, date], list[Session]] = defaultdict(list)
        # (room_id, date) -> sessions
        self._by_room: dict[tuple[str, date], list[Session]] = defaultdict(list)
        # (student_id, date) -> sessions
        self._by_student: dict[tuple[str, date], list[Session]] = defaultdict(list)
        self._sessions: dict[str, Session] = {}
        # (therapist_id, date) -> availability windows
        self._windows: dict[tuple[str, date], list[TherapistAvailability]] = defaultdict(list)
        self.availabilities = list(availabilities)
        self.rooms: dict[str, TherapyRoom] = {r.id: r for r in rooms}

        for window in self.availabilities:
            self._windows[(window.therapist_id, window.date)].append(window)
        for session in sessions:
            self.add(session)

    def add(self, session: Session) -> None:
        if not session.is_occupying:
            return
        if session.id in self._sessions:
            self.remove(session.id)
        self._sessions[session.id] = session
        self._by_therapist[(session.therapist_id, session.date)].append(session)
        self._by_room[(session.room_id, session.date)].append(session)
        self._by_student[(session.student_id, session.date)].append(session)

    def remove(self, session_id: str) -> Session | None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        self._by_therapist[(session.therapist_id, session.date)].remove(session)
        self._by_room[(session.room_id, session.date)].remove(session)
        self._by_student[(session.student_id, session.date)].remove(session)
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    @property
    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def therapist_sessions(self, therapist_id: str, day: date) -> list[Session]:
        return self._by_therapist.get((therapist_id, day), [])

    def room_sessions(self, room_id: str, day: date) -> list[Session]:
        return self._by_room.get((room_id, day), [])

    def student_sessions(self, student_id: str, day: date) -> list[Session]:
        return self._by_student.get((student_id, day), [])

    def windows_for(self, therapist_id: str, day: date) -> list[TherapistAvailability]:
        return self._windows.get((therapist_id, day), [])

    def therapist_ids(self) -> set[str]:
        return {w.therapist_id for w in self.availabilities}


def _overlapping(sessions: list[Session], candidate: Session) -> list[Session]:
    return [
        s
        for s in sessions
        if s.id != candidate.id and intervals_overlap(s.start, s.end, candidate.start, candidate.end)
    ]


def peak_concurrency(sessions: list[Session], start: int, end: int) -> int:
    """Largest number of ``sessions`` running at the same moment inside [start, end)."""
    points = {start} | {s.start for s in sessions if start < s.start < end}
    peak = 0
    for t in points:
        peak = max(peak, sum(1 for s in sessions if s.start <= t < s.end))
    return peak


class ConflictDetector:
    """Checks candidate placements against the current schedule.

    Checks run in a fixed order and every conflict is collected:
    therapist double-booking, therapist availability, room, student
    double-booking, equipment. Advisory checks (student preferences,
    minimum gaps, back-to-back sessions) follow. The detector keeps no state
    between calls.
    """

    def __init__(
        self,
        constraints: OptimizationConstraints | None = None,
        slot_step: int = SLOT_STEP_MINUTES,
        max_alternatives: int = DEFAULT_MAX_ALTERNATIVES,
        search_days: int = DEFAULT_ALTERNATIVE_SEARCH_DAYS,
    ):
        self.constraints = constraints or OptimizationConstraints()
        self.slot_step = slot_step
        self.max_alternatives = max_alternatives
        self.search_days = search_days

    def detect_conflicts(
        self,
        candidate: Session,
        sessions: Iterable[Session],
        availabilities: Iterable[TherapistAvailability],
        rooms: Iterable[TherapyRoom],
        suggest_alternatives: bool = True,
    ) -> ConflictReport:
        """
        Detect every conflict of a candidate session placement.

        Args:
            candidate: Session to place. A session with the same id in
                ``sessions`` is ignored, so an existing session can be re-checked.
            sessions: Currently scheduled sessions in the relevant date window.
            availabilities: Therapist availability records.
            rooms: Room definitions.
            suggest_alternatives: Search for alternative slots when blocked.

        Returns:
            ConflictReport with conflicts and, if blocked, alternative placements.
        """
        snapshot = ScheduleSnapshot(sessions, availabilities, rooms)
        return self.check(candidate, snapshot, suggest_alternatives)

    def detect_batch_conflicts(
        self,
        sessions: Iterable[Session],
        availabilities: Iterable[TherapistAvailability],
        rooms: Iterable[TherapyRoom],
    ) -> list[ConflictReport]:
        """Check every session of an existing schedule against the others."""
        sessions = [s for s in sessions if s.is_occupying]
        snapshot = ScheduleSnapshot(sessions, availabilities, rooms)
        reports = []
        for session in sorted(sessions, key=lambda s: (s.date, s.start, s.id)):
            report = self.check(session, snapshot, suggest_alternatives=False)
            if report.conflicts:
                reports.append(report)
        return reports

    def check(
        self,
        candidate: Session,
        snapshot: ScheduleSnapshot,
        suggest_alternatives: bool = True,
    ) -> ConflictReport:
        """Run all checks against a prepared snapshot."""
        conflicts = self.blocking_conflicts(candidate, snapshot)
        conflicts.extend(self.advisory_conflicts(candidate, snapshot))
        report = ConflictReport(session_id=candidate.id, conflicts=conflicts)
        if suggest_alternatives and report.has_blocking:
            report.alternatives = self.find_alternatives(candidate, snapshot)
        return report

    def blocking_conflicts(self, candidate: Session, snapshot: ScheduleSnapshot) -> list[Conflict]:
        conflicts: list[Conflict] = []
        conflicts.extend(self._check_therapist_double_booking(candidate, snapshot))
        conflicts.extend(self._check_therapist_availability(candidate, snapshot))
        conflicts.extend(self._check_room(candidate, snapshot))
        conflicts.extend(self._check_student_double_booking(candidate, snapshot))
        conflicts.extend(self._check_equipment(candidate, snapshot))
        return conflicts

    def is_feasible(self, candidate: Session, snapshot: ScheduleSnapshot) -> bool:
        return not self.blocking_conflicts(candidate, snapshot)

    def advisory_conflicts(self, candidate: Session, snapshot: ScheduleSnapshot) -> list[Conflict]:
        conflicts: list[Conflict] = []
        conflicts.extend(self._check_student_preferences(candidate))
        conflicts.extend(self._check_student_gap(candidate, snapshot))
        conflicts.extend(self._check_back_to_back(candidate, snapshot))
        return conflicts

    def find_alternatives(
        self,
        candidate: Session,
        snapshot: ScheduleSnapshot,
        limit: int | None = None,
        dates: list[date] | None = None,
    ) -> list[Placement]:
        """
        Scan the therapist's availability for conflict-free slots.

        Same day first, then adjacent days. The therapist and room stay fixed.

        Args:
            candidate: The blocked session.
            snapshot: Schedule to check against.
            limit: Maximum number of alternatives (defaults to max_alternatives).
            dates: Dates to scan, in order. Defaults to the candidate's date and
                ``search_days`` days either side.

        Returns:
            Up to ``limit`` placements with no blocking conflict.
        """
        limit = self.max_alternatives if limit is None else limit
        if dates is None:
            dates = adjacent_dates(candidate.date, self.search_days)
        length = candidate.end - candidate.start
        alternatives: list[Placement] = []
        if limit <= 0:
            return alternatives

        for day in dates:
            for window in snapshot.windows_for(candidate.therapist_id, day):
                if not window.is_available:
                    continue
                for start in window.bookable_starts(length, self.slot_step):
                    placement = Placement(
                        candidate.therapist_id, candidate.room_id, day, start, start + length
                    )
                    if placement == candidate.placement:
                        continue
                    if self.is_feasible(place_session(candidate, placement), snapshot):
                        alternatives.append(placement)
                        if len(alternatives) >= limit:
                            return alternatives
        return alternatives

    def _conflict(
        self,
        kind: ConflictKind,
        candidate: Session,
        message: str,
        others: Iterable[Session] = (),
        resource_id: str | None = None,
    ) -> Conflict:
        return Conflict(
            kind=kind,
            session_ids=(candidate.id, *sorted(s.id for s in others)),
            date=candidate.date,
            start=candidate.start,
            end=candidate.end,
            message=message,
            resource_id=resource_id,
        )

    def _check_therapist_double_booking(
        self, candidate: Session, snapshot: ScheduleSnapshot
    ) -> list[Conflict]:
        clashes = _overlapping(
            snapshot.therapist_sessions(candidate.therapist_id, candidate.date), candidate
        )
        if not clashes:
            return []
        return [
            self._conflict(
                ConflictKind.THERAPIST_DOUBLE_BOOKING,
                candidate,
                f"Therapist {candidate.therapist_id} already has "
                f"{len(clashes)} session(s) overlapping "
                f"{format_time(candidate.start)}-{format_time(candidate.end)}",
                clashes,
                candidate.therapist_id,
            )
        ]

    def _check_therapist_availability(
        self, candidate: Session, snapshot: ScheduleSnapshot
    ) -> list[Conflict]:
        conflicts: list[Conflict] = []
        therapist_id = candidate.therapist_id
        windows = [w for w in snapshot.windows_for(therapist_id, candidate.date) if w.is_available]
        containing = next((w for w in windows if w.contains(candidate.start, candidate.end)), None)

        if containing is None:
            conflicts.append(
                self._conflict(
                    ConflictKind.THERAPIST_UNAVAILABLE,
                    candidate,
                    f"Therapist {therapist_id} is not available "
                    f"{format_time(candidate.start)}-{format_time(candidate.end)} "
                    f"on {candidate.date.isoformat()}",
                    resource_id=therapist_id,
                )
            )
        else:
            brk = containing.break_overlapping(candidate.start, candidate.end)
            if brk is not None:
                conflicts.append(
                    self._conflict(
                        ConflictKind.BREAK_OVERLAP,
                        candidate,
                        f"Overlaps break {format_time(brk.start)}-{format_time(brk.end)}",
                        resource_id=therapist_id,
                    )
                )
            if not containing.qualifies(candidate.session_type):
                conflicts.append(
                    self._conflict(
                        ConflictKind.THERAPIST_NOT_QUALIFIED,
                        candidate,
                        f"Therapist {therapist_id} does not deliver "
                        f"{candidate.session_type.value} sessions",
                        resource_id=therapist_id,
                    )
                )

        if windows:
            limit = min(
                (containing or windows[0]).max_sessions_per_day,
                self.constraints.therapist.max_sessions_per_day,
            )
            booked = [
                s
                for s in snapshot.therapist_sessions(therapist_id, candidate.date)
                if s.id != candidate.id
            ]
            if len(booked) >= limit:
                conflicts.append(
                    self._conflict(
                        ConflictKind.MAX_SESSIONS_EXCEEDED,
                        candidate,
                        f"Therapist {therapist_id} already has {len(booked)} of "
                        f"{limit} sessions on {candidate.date.isoformat()}",
                        resource_id=therapist_id,
                    )
                )
        return conflicts

    def _check_room(self, candidate: Session, snapshot: ScheduleSnapshot) -> list[Conflict]:
        room = snapshot.rooms.get(candidate.room_id)
        if room is None or not room.active:
            return [
                self._conflict(
                    ConflictKind.ROOM_UNAVAILABLE,
                    candidate,
                    f"Room {candidate.room_id} is unknown or inactive",
                    resource_id=candidate.room_id,
                )
            ]

        conflicts: list[Conflict] = []
        if not room.supports(candidate.session_type):
            conflicts.append(
                self._conflict(
                    ConflictKind.ROOM_UNSUPPORTED_TYPE,
                    candidate,
                    f"Room {room.id} does not support {candidate.session_type.value} sessions",
                    resource_id=room.id,
                )
            )

        concurrent = _overlapping(snapshot.room_sessions(room.id, candidate.date), candidate)
        if concurrent and peak_concurrency(concurrent, candidate.start, candidate.end) >= room.capacity:
            conflicts.append(
                self._conflict(
                    ConflictKind.ROOM_CAPACITY,
                    candidate,
                    f"Room {room.id} is at capacity ({room.capacity}) at this time",
                    concurrent,
                    room.id,
                )
            )
        return conflicts

    def _check_student_double_booking(
        self, candidate: Session, snapshot: ScheduleSnapshot
    ) -> list[Conflict]:
        clashes = _overlapping(
            snapshot.student_sessions(candidate.student_id, candidate.date), candidate
        )
        if not clashes:
            return []
        return [
            self._conflict(
                ConflictKind.STUDENT_DOUBLE_BOOKING,
                candidate,
                f"Student {candidate.student_id} already has a session at this time",
                clashes,
                candidate.student_id,
            )
        ]

    def _check_equipment(self, candidate: Session, snapshot: ScheduleSnapshot) -> list[Conflict]:
        if not candidate.required_equipment or not self.constraints.facility.enforce_equipment:
            return []
        room = snapshot.rooms.get(candidate.room_id)
        if room is None:
            return []

        conflicts: list[Conflict] = []
        for item in sorted(candidate.required_equipment - room.equipment):
            conflicts.append(
                self._conflict(
                    ConflictKind.EQUIPMENT_UNAVAILABLE,
                    candidate,
                    f"Room {room.id} has no {item}",
                    resource_id=item,
                )
            )

        concurrent = _overlapping(snapshot.room_sessions(room.id, candidate.date), candidate)
        for item in sorted(candidate.required_equipment & room.equipment):
            users = [s for s in concurrent if item in s.required_equipment]
            if users:
                conflicts.append(
                    self._conflict(
                        ConflictKind.EQUIPMENT_IN_USE,
                        candidate,
                        f"{item} in room {room.id} is used by a concurrent session",
                        users,
                        item,
                    )
                )
        return conflicts

    def _check_student_preferences(self, candidate: Session) -> list[Conflict]:
        pref = self.constraints.student.preference_for(candidate.student_id)
        if pref is None or pref.satisfied_by(candidate.start, candidate.end):
            return []
        reason = (
            "falls in an avoided window"
            if pref.in_avoid_window(candidate.start, candidate.end)
            else "is outside the preferred windows"
        )
        return [
            self._conflict(
                ConflictKind.PREFERENCE_VIOLATION,
                candidate,
                f"Session for student {candidate.student_id} {reason}",
                resource_id=candidate.student_id,
            )
        ]

    def _check_student_gap(self, candidate: Session, snapshot: ScheduleSnapshot) -> list[Conflict]:
        min_gap = self.constraints.student.min_gap_for(candidate.student_id)
        if min_gap <= 0:
            return []
        close = [
            s
            for s in snapshot.student_sessions(candidate.student_id, candidate.date)
            if s.id != candidate.id
            and 0 <= max(s.start - candidate.end, candidate.start - s.end) < min_gap
        ]
        if not close:
            return []
        return [
            self._conflict(
                ConflictKind.STUDENT_MIN_GAP,
                candidate,
                f"Less than {min_gap} minutes between sessions of student {candidate.student_id}",
                close,
                candidate.student_id,
            )
        ]

    def _check_back_to_back(self, candidate: Session, snapshot: ScheduleSnapshot) -> list[Conflict]:
        therapist = self.constraints.therapist
        if not therapist.avoid_back_to_back:
            return []
        close = [
            s
            for s in snapshot.therapist_sessions(candidate.therapist_id, candidate.date)
            if s.id != candidate.id
            and 0 <= max(s.start - candidate.end, candidate.start - s.end)
            < therapist.break_duration_minutes
        ]
        if not close:
            return []
        return [
            self._conflict(
                ConflictKind.BACK_TO_BACK,
                candidate,
                f"Therapist {candidate.therapist_id} gets less than "
                f"{therapist.break_duration_minutes} minutes between sessions",
                close,
                candidate.therapist_id,
            )
        ]
