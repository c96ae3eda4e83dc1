"""Optimization engine: schedule generation and single-session slot search."""

import logging
import random
from datetime import date
from typing import Iterable

from ..exceptions import InvalidSchedulingData
from .analytics import analyze_schedule, compare_metrics
from .config import AlgorithmSettings, OptimizationConstraints
from .conflicts import ConflictDetector, ScheduleSnapshot, place_session
from .domains import DomainBuilder, SessionDomain
from .models import (
    Algorithm,
    OptimizationMetadata,
    OptimizationResult,
    PerformanceMode,
    Placement,
    ProposedAssignment,
    Session,
    TherapistAvailability,
    TherapyRoom,
    UnresolvedSession,
)
from .objective import UNASSIGNED, ScheduleEvaluator
from .strategies import STRATEGIES, SearchOutcome
from .utils import Deadline

logger = logging.getLogger(__name__)


def coerce_algorithm(value: Algorithm | str) -> Algorithm:
    try:
        return Algorithm(value)
    except ValueError:
        choices = ", ".join(a.value for a in Algorithm)
        raise InvalidSchedulingData(
            f"unknown algorithm '{value}', expected one of: {choices}", "algorithm"
        ) from None


def coerce_mode(value: PerformanceMode | str) -> PerformanceMode:
    try:
        return PerformanceMode(value)
    except ValueError:
        choices = ", ".join(m.value for m in PerformanceMode)
        raise InvalidSchedulingData(
            f"unknown performance mode '{value}', expected one of: {choices}", "mode"
        ) from None


def _check_unique_ids(sessions: list[Session]) -> None:
    seen: set[str] = set()
    for session in sessions:
        if session.id in seen:
            raise InvalidSchedulingData(f"duplicate session id '{session.id}'", "sessions")
        seen.add(session.id)


class OptimizationEngine:
    """
    Generates conflict-free schedules with a selectable search strategy.

    The engine is stateless between calls: every run works on the snapshot
    passed in and returns a proposal. Nothing is written back; callers commit
    a result with ``OptimizationResult.apply``.
    """

    def __init__(
        self,
        constraints: OptimizationConstraints | None = None,
        settings: AlgorithmSettings | None = None,
        detector: ConflictDetector | None = None,
        seed: int | None = None,
    ):
        """
        Initialize the engine.

        Args:
            constraints: Default constraints for runs that do not pass their own.
            settings: Strategy tunables.
            detector: Conflict detector used for domains and verification.
            seed: Default random seed.
        """
        self.constraints = constraints or OptimizationConstraints()
        self.settings = settings or AlgorithmSettings()
        self.detector = detector
        self.seed = seed

    def _detector_for(self, constraints: OptimizationConstraints) -> ConflictDetector:
        if self.detector is not None and self.detector.constraints is constraints:
            return self.detector
        if self.detector is not None:
            return ConflictDetector(
                constraints,
                slot_step=self.detector.slot_step,
                max_alternatives=self.detector.max_alternatives,
                search_days=self.detector.search_days,
            )
        return ConflictDetector(constraints)

    def generate_optimal_schedule(
        self,
        sessions: Iterable[Session],
        availabilities: Iterable[TherapistAvailability],
        rooms: Iterable[TherapyRoom],
        constraints: OptimizationConstraints | None = None,
        algorithm: Algorithm | str = Algorithm.HYBRID,
        mode: PerformanceMode | str = PerformanceMode.STANDARD,
        *,
        fixed_sessions: Iterable[Session] = (),
        dates: list[date] | None = None,
        time_budget_seconds: float | None = None,
        unresolved_tolerance: float | None = None,
        seed: int | None = None,
    ) -> OptimizationResult:
        """
        Place every session in scope without blocking conflicts.

        Sessions that are not scheduled or rescheduled, and everything in
        ``fixed_sessions``, stay where they are and act as constraints.

        Args:
            sessions: Sessions to optimize.
            availabilities: Therapist availability windows.
            rooms: Room definitions.
            constraints: Constraints for this run (engine default otherwise).
            algorithm: Search strategy.
            mode: ``peak_load`` trades quality for speed in the hybrid strategy.
            fixed_sessions: Sessions outside the optimization scope.
            dates: Dates sessions may move to; each session keeps its date if omitted.
            time_budget_seconds: Deadline for the search.
            unresolved_tolerance: Largest unresolved fraction still reported
                as success. No limit when omitted.
            seed: Random seed for reproducible runs.

        Returns:
            OptimizationResult with proposed placements and unresolved sessions.

        Raises:
            InvalidSchedulingData: If the request is malformed.
        """
        algorithm = coerce_algorithm(algorithm)
        mode = coerce_mode(mode)
        if unresolved_tolerance is not None and not 0.0 <= unresolved_tolerance <= 1.0:
            raise InvalidSchedulingData("must be within [0, 1]", "unresolved_tolerance")
        if time_budget_seconds is not None and time_budget_seconds < 0:
            raise InvalidSchedulingData("must not be negative", "time_budget_seconds")

        constraints = constraints or self.constraints
        seed = self.seed if seed is None else seed
        sessions = list(sessions)
        availabilities = list(availabilities)
        rooms = list(rooms)
        fixed = [s for s in sessions if not s.is_movable] + list(fixed_sessions)
        _check_unique_ids(sessions + list(fixed_sessions))
        scope = [s for s in sessions if s.is_movable]

        deadline = Deadline(time_budget_seconds)
        detector = self._detector_for(constraints)
        fixed_snapshot = ScheduleSnapshot(fixed, availabilities, rooms)

        logger.info(
            f"Optimizing {len(scope)} sessions with {algorithm.value} "
            f"({mode.value}, {len(fixed)} fixed, seed={seed})"
        )
        domains = DomainBuilder(constraints, detector).build(scope, fixed_snapshot, dates)
        evaluator = ScheduleEvaluator(domains, fixed_snapshot, constraints)
        strategy = STRATEGIES[algorithm](
            evaluator, self.settings, random.Random(seed), deadline, mode
        )
        outcome = strategy.search()

        genes = strategy.build_feasible(outcome.genes)
        genes = self._verify(genes, domains, fixed, availabilities, rooms, detector)

        assignments: list[ProposedAssignment] = []
        unresolved: list[UnresolvedSession] = []
        proposed_sessions: list[Session] = []
        for index, gene in enumerate(genes):
            session = scope[index]
            if gene == UNASSIGNED:
                continue
            placement = evaluator.placement(index, gene)
            assignments.append(ProposedAssignment(session.id, session.placement, placement))
            proposed_sessions.append(place_session(session, placement))

        final_snapshot = ScheduleSnapshot(fixed + proposed_sessions, availabilities, rooms)
        for index, gene in enumerate(genes):
            if gene == UNASSIGNED:
                unresolved.append(self._explain(domains[index], final_snapshot, detector, outcome))

        quality = evaluator.quality(genes)
        metrics_before = analyze_schedule(scope + fixed)
        metrics_after = analyze_schedule(proposed_sessions + fixed)
        metrics_after["comparison"] = compare_metrics(metrics_before, metrics_after)

        result = OptimizationResult(
            success=True,
            assignments=assignments,
            unresolved=unresolved,
            quality_score=quality,
            metadata=OptimizationMetadata(
                algorithm=algorithm,
                performance_mode=mode,
                iterations=outcome.iterations,
                generations=outcome.generations,
                backtracks=outcome.backtracks,
                converged=outcome.converged and not outcome.deadline_reached,
                deadline_reached=outcome.deadline_reached,
                degradation_applied=outcome.degradation_applied,
                elapsed_seconds=deadline.elapsed,
                final_temperature=outcome.final_temperature,
                seed=seed,
                cp_sat_status=outcome.cp_sat_status,
            ),
            objective_breakdown=evaluator.breakdown(genes),
            metrics_before=metrics_before,
            metrics_after=metrics_after,
        )
        if unresolved_tolerance is not None and result.unresolved_fraction > unresolved_tolerance:
            result.success = False

        logger.info(
            f"Optimization finished: {len(assignments)} placed "
            f"({len(result.changed_assignments)} moved), {len(unresolved)} unresolved, "
            f"quality {quality:.4f}, {deadline.elapsed:.2f}s"
        )
        return result

    def _verify(
        self,
        genes: list[int],
        domains: list[SessionDomain],
        fixed: list[Session],
        availabilities: list[TherapistAvailability],
        rooms: list[TherapyRoom],
        detector: ConflictDetector,
    ) -> list[int]:
        """Re-check every placement with the detector, unassigning any that still conflict."""
        genes = list(genes)
        placed = {
            index: place_session(domains[index].session, domains[index].placements[gene])
            for index, gene in enumerate(genes)
            if gene != UNASSIGNED
        }
        snapshot = ScheduleSnapshot(list(fixed) + list(placed.values()), availabilities, rooms)

        changed = True
        while changed:
            changed = False
            for index in sorted(placed, key=lambda i: len(domains[i]), reverse=True):
                session = placed[index]
                if detector.is_feasible(session, snapshot):
                    continue
                logger.warning(f"Session {session.id} failed verification; leaving it unresolved")
                snapshot.remove(session.id)
                del placed[index]
                genes[index] = UNASSIGNED
                changed = True
                break
        return genes

    def _explain(
        self,
        domain: SessionDomain,
        snapshot: ScheduleSnapshot,
        detector: ConflictDetector,
        outcome: SearchOutcome,
    ) -> UnresolvedSession:
        session = domain.session
        if not domain.placements:
            reasons = domain.original_conflicts or detector.blocking_conflicts(session, snapshot)
            message = "No conflict-free placement exists in the search scope"
        else:
            reasons = detector.blocking_conflicts(session, snapshot)
            message = "Every candidate placement conflicts with other placed sessions"
        if not reasons and outcome.deadline_reached:
            message = "Search stopped at the deadline before the session was placed"
        return UnresolvedSession(session_id=session.id, reasons=reasons, message=message)

    def find_alternative_slots(
        self,
        session: Session,
        context_sessions: Iterable[Session],
        availabilities: Iterable[TherapistAvailability],
        rooms: Iterable[TherapyRoom],
        dates: list[date] | None = None,
        limit: int = 1,
        prefer_quality: bool = True,
        constraints: OptimizationConstraints | None = None,
    ) -> list[Placement]:
        """
        Search conflict-free placements for one session.

        Candidates come from the same domain generation as full optimization,
        so reassignment rules apply. The session's own entry in
        ``context_sessions`` is ignored.

        Args:
            session: The session to place, at its requested placement.
            context_sessions: Sessions it must not conflict with.
            availabilities: Therapist availability windows.
            rooms: Room definitions.
            dates: Dates to search; the session's date if omitted.
            limit: Maximum number of placements returned.
            prefer_quality: Rank by advisory conflicts before closeness. When
                False the closest feasible placements are returned as found.
            constraints: Constraints for this search (engine default otherwise).

        Returns:
            Up to ``limit`` placements, best first.
        """
        constraints = constraints or self.constraints
        detector = self._detector_for(constraints)
        context = [s for s in context_sessions if s.id != session.id]
        snapshot = ScheduleSnapshot(context, availabilities, rooms)
        domain = DomainBuilder(constraints, detector).build([session], snapshot, dates)[0]
        placements = [p for p in domain.placements if p != session.placement]

        if prefer_quality:
            def advisory_count(p: Placement) -> int:
                return len(detector.advisory_conflicts(place_session(session, p), snapshot))

            placements = sorted(placements, key=advisory_count)
        return placements[:limit]
