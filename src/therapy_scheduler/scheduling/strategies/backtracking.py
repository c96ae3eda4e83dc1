"""Constraint-satisfaction search with forward checking."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from ..models import Algorithm
from ..objective import UNASSIGNED, Occupancy
from ..solver import CpSatSolver
from .base import OptimizerStrategy, SearchOutcome

logger = logging.getLogger(__name__)


@dataclass
class _Frame:
    """One level of the search: a session and the values left to try."""

    var: int
    values: list[int]
    pos: int = 0
    mark: int = 0
    assigned: bool = False


@dataclass
class _SearchState:
    occupancy: Occupancy
    live: list[list[int]]
    skipped: set[int]
    trail: list[tuple[int, list[int]]] = field(default_factory=list)


class ConstraintSatisfaction(OptimizerStrategy):
    """
    Backtracking search, most constrained session first.

    After each assignment the candidate lists of dependent sessions (sharing
    a student, or a therapist or room on the same day) are filtered to what
    still fits; an emptied list triggers a backtrack. When the backtrack
    budget runs out the partial assignment is completed greedily, and if
    sessions remain unplaced an OR-Tools CP-SAT model is tried.
    """

    algorithm = Algorithm.CONSTRAINT_SATISFACTION

    def search(self) -> SearchOutcome:
        settings = self.settings.constraint_satisfaction
        ev = self.evaluator
        if ev.size == 0:
            return SearchOutcome(genes=[])

        self._neighbors = self._build_neighbors()
        live = [list(range(len(d))) for d in ev.domains]
        state = _SearchState(
            occupancy=Occupancy(ev),
            live=live,
            skipped={i for i, values in enumerate(live) if not values},
        )

        frames: list[_Frame] = []
        backtracks = 0
        iterations = 0
        complete = False
        deadline_reached = False

        while True:
            if self.deadline.expired():
                deadline_reached = True
                break
            if not frames or frames[-1].assigned:
                var = self._select_variable(state)
                if var is None:
                    complete = True
                    break
                frames.append(_Frame(var, self._order_values(var, state.live[var])))

            frame = frames[-1]
            iterations += 1
            if self._try_next_value(frame, state):
                continue

            frames.pop()
            backtracks += 1
            if not frames or backtracks >= settings.max_backtracks:
                break
            self._unassign(frames[-1], state)

        genes = list(state.occupancy.genes)
        if not complete:
            logger.info(
                f"Backtracking stopped after {backtracks} backtracks; completing greedily"
            )
            genes = self.build_feasible(genes)

        cp_sat_status = None
        unassigned = sum(1 for g in genes if g == UNASSIGNED)
        if unassigned and settings.use_cp_sat_fallback and len(state.skipped) < unassigned:
            if self.deadline.expired():
                deadline_reached = True
            else:
                genes, cp_sat_status = self._cp_sat_fallback(genes)

        logger.info(
            f"Constraint satisfaction: {iterations} steps, {backtracks} backtracks, "
            f"{sum(1 for g in genes if g == UNASSIGNED)} sessions unassigned"
        )
        return SearchOutcome(
            genes=genes,
            iterations=iterations,
            backtracks=backtracks,
            converged=not deadline_reached,
            deadline_reached=deadline_reached,
            cp_sat_status=cp_sat_status,
        )

    def _cp_sat_fallback(self, genes: list[int]) -> tuple[list[int], str]:
        limit = self.settings.constraint_satisfaction.cp_sat_time_limit_seconds
        remaining = self.deadline.remaining()
        if remaining is not None:
            limit = min(limit, remaining)
        solver = CpSatSolver(
            self.evaluator,
            time_limit=limit,
            seed=self.random.randrange(2**31),
            hint=genes,
        )
        solved, status = solver.solve()
        placed_before = sum(1 for g in genes if g != UNASSIGNED)
        if solved is not None and sum(1 for g in solved if g != UNASSIGNED) > placed_before:
            logger.info(f"CP-SAT fallback ({status}) placed more sessions")
            return solved, status
        return genes, status

    def _build_neighbors(self) -> list[set[int]]:
        """Sessions that can interact: same student, or same therapist or room on a day."""
        groups: dict[tuple, set[int]] = defaultdict(set)
        for index, domain in enumerate(self.evaluator.domains):
            student_id = domain.session.student_id
            for p in domain.placements:
                groups[("therapist", p.therapist_id, p.date)].add(index)
                groups[("room", p.room_id, p.date)].add(index)
                groups[("student", student_id, p.date)].add(index)
        neighbors: list[set[int]] = [set() for _ in range(self.evaluator.size)]
        for members in groups.values():
            for index in members:
                neighbors[index] |= members
        for index, linked in enumerate(neighbors):
            linked.discard(index)
        return neighbors

    def _select_variable(self, state: _SearchState) -> int | None:
        best = None
        best_key = None
        for index, gene in enumerate(state.occupancy.genes):
            if gene != UNASSIGNED or index in state.skipped:
                continue
            key = (len(state.live[index]), -len(self._neighbors[index]), index)
            if best_key is None or key < best_key:
                best, best_key = index, key
        return best

    def _order_values(self, var: int, values: list[int]) -> list[int]:
        """Candidates honoring the student's preferences first, then domain order."""
        ev = self.evaluator
        student_id = ev.sessions[var].student_id
        placements = ev.domains[var].placements

        def preference_miss(gene: int) -> bool:
            p = placements[gene]
            return not ev.constraints.student.satisfied_by(student_id, p.start, p.end)

        return sorted(values, key=lambda g: (preference_miss(g), g))

    def _try_next_value(self, frame: _Frame, state: _SearchState) -> bool:
        while frame.pos < len(frame.values):
            gene = frame.values[frame.pos]
            frame.pos += 1
            if not state.occupancy.fits(frame.var, gene):
                continue
            mark = len(state.trail)
            state.occupancy.add(frame.var, gene)
            if self._propagate(frame.var, state):
                frame.mark = mark
                frame.assigned = True
                return True
            self._undo(state, mark)
            state.occupancy.remove(frame.var)
        return False

    def _unassign(self, frame: _Frame, state: _SearchState) -> None:
        self._undo(state, frame.mark)
        state.occupancy.remove(frame.var)
        frame.assigned = False

    def _propagate(self, var: int, state: _SearchState) -> bool:
        """Filter dependent candidate lists; False if one becomes empty."""
        for other in self._neighbors[var]:
            if state.occupancy.genes[other] != UNASSIGNED or other in state.skipped:
                continue
            current = state.live[other]
            remaining = [g for g in current if state.occupancy.fits(other, g)]
            if len(remaining) < len(current):
                state.trail.append((other, current))
                state.live[other] = remaining
                if not remaining:
                    return False
        return True

    @staticmethod
    def _undo(state: _SearchState, mark: int) -> None:
        while len(state.trail) > mark:
            index, values = state.trail.pop()
            state.live[index] = values
