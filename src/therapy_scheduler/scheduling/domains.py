"""Candidate placement domains for optimization.

A session's domain is every placement the optimizer may give it: allowed
therapists and rooms, allowed dates, and start times stepped through the
therapist's availability. Placements that already clash with sessions
outside the optimization scope are dropped here, so no strategy can
produce a blocking conflict against fixed sessions.
"""

import logging
from dataclasses import dataclass, field
from datetime import date

from .config import OptimizationConstraints
from .conflicts import ConflictDetector, ScheduleSnapshot, place_session
from .constants import MAX_CANDIDATES_PER_SESSION, SLOT_STEP_MINUTES
from .models import Conflict, Placement, Session

logger = logging.getLogger(__name__)


@dataclass
class SessionDomain:
    """Feasible placements of one session, best candidates first."""

    session: Session
    placements: list[Placement] = field(default_factory=list)
    original_index: int | None = None
    # Blocking conflicts of the original placement against fixed sessions
    original_conflicts: list[Conflict] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.placements)


class DomainBuilder:
    """Builds candidate domains for the sessions in an optimization scope."""

    def __init__(
        self,
        constraints: OptimizationConstraints,
        detector: ConflictDetector | None = None,
        slot_step: int = SLOT_STEP_MINUTES,
        max_candidates: int = MAX_CANDIDATES_PER_SESSION,
    ):
        self.constraints = constraints
        self.detector = detector or ConflictDetector(constraints)
        self.slot_step = slot_step
        self.max_candidates = max_candidates

    def build(
        self,
        sessions: list[Session],
        fixed: ScheduleSnapshot,
        dates: list[date] | None = None,
    ) -> list[SessionDomain]:
        """
        Build one domain per session.

        Args:
            sessions: Sessions to optimize.
            fixed: Snapshot holding only sessions outside the scope, plus all
                availability windows and rooms.
            dates: Dates a session may move to. Defaults to its own date.

        Returns:
            Domains in the same order as ``sessions``.
        """
        domains = [self._build_one(session, fixed, dates) for session in sessions]
        empty = sum(1 for d in domains if not d.placements)
        logger.debug(
            f"Built domains for {len(domains)} sessions "
            f"(avg size {sum(len(d) for d in domains) / max(1, len(domains)):.1f}, {empty} empty)"
        )
        return domains

    def _candidate_therapists(self, session: Session, fixed: ScheduleSnapshot) -> list[str]:
        therapists = [session.therapist_id]
        if self.constraints.facility.allow_therapist_reassignment:
            therapists.extend(sorted(fixed.therapist_ids() - {session.therapist_id}))
        return therapists

    def _candidate_rooms(self, session: Session, fixed: ScheduleSnapshot) -> list[str]:
        rooms = [session.room_id]
        if self.constraints.facility.allow_room_reassignment:
            for room in sorted(fixed.rooms.values(), key=lambda r: r.id):
                if room.id == session.room_id or not room.active:
                    continue
                if not room.supports(session.session_type):
                    continue
                if not session.required_equipment <= room.equipment:
                    continue
                rooms.append(room.id)
        return rooms

    def _build_one(
        self,
        session: Session,
        fixed: ScheduleSnapshot,
        dates: list[date] | None,
    ) -> SessionDomain:
        domain = SessionDomain(session=session)
        original = session.placement
        domain.original_conflicts = self.detector.blocking_conflicts(session, fixed)

        length = session.end - session.start
        candidates: set[Placement] = set()
        for therapist_id in self._candidate_therapists(session, fixed):
            for day in dates or [session.date]:
                for window in fixed.windows_for(therapist_id, day):
                    if not window.is_available or not window.qualifies(session.session_type):
                        continue
                    for start in window.bookable_starts(length, self.slot_step):
                        for room_id in self._candidate_rooms(session, fixed):
                            candidates.add(
                                Placement(therapist_id, room_id, day, start, start + length)
                            )
        if not domain.original_conflicts:
            candidates.add(original)

        def closeness(p: Placement) -> tuple:
            return (
                p != original,
                abs((p.date - original.date).days),
                abs(p.start - original.start),
                p.therapist_id != original.therapist_id,
                p.room_id != original.room_id,
                p.therapist_id,
                p.room_id,
                p.date,
                p.start,
            )

        for placement in sorted(candidates, key=closeness):
            if len(domain.placements) >= self.max_candidates:
                break
            if placement != original and not self.detector.is_feasible(
                place_session(session, placement), fixed
            ):
                continue
            domain.placements.append(placement)

        if domain.placements and domain.placements[0] == original:
            domain.original_index = 0
        return domain
