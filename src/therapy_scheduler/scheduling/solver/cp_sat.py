"""Exact placement search with OR-Tools CP-SAT."""

import logging

from ortools.sat.python import cp_model

from ..objective import ScheduleEvaluator
from .builder import ModelBuilder
from .extractor import SolutionExtractor

logger = logging.getLogger(__name__)


class CpSatSolver:
    """
    Maximizes the number of placed sessions over the reduced domains.

    Used as the fallback of the constraint-satisfaction strategy when
    backtracking leaves sessions unplaced.
    """

    def __init__(
        self,
        evaluator: ScheduleEvaluator,
        time_limit: float,
        seed: int = 0,
        hint: list[int] | None = None,
    ):
        """
        Initialize the solver.

        Args:
            evaluator: Evaluator holding domains, fixed sessions and constraints.
            time_limit: Maximum solving time in seconds.
            seed: Random seed for the CP-SAT search.
            hint: Optional gene vector used as the starting point.
        """
        self.evaluator = evaluator
        self.time_limit = time_limit
        self.seed = seed
        self.hint = hint

    def solve(self) -> tuple[list[int] | None, str]:
        """
        Build and solve the model.

        Returns:
            Tuple of (genes or None when no solution was found, status name).
        """
        builder = ModelBuilder(self.evaluator)
        model = builder.build()
        if self.hint is not None:
            builder.add_hint(self.hint)

        solver = cp_model.CpSolver()
        solver.parameters.max_time_in_seconds = max(0.01, self.time_limit)
        solver.parameters.num_workers = 1
        solver.parameters.random_seed = self.seed
        solver.parameters.log_search_progress = False

        logger.info(
            f"Starting CP-SAT on {self.evaluator.size} sessions, "
            f"{len(builder.get_variables()['x'])} variables, {self.time_limit:.1f}s limit"
        )
        status = solver.Solve(model)
        status_name = solver.StatusName(status)

        if status == cp_model.OPTIMAL:
            logger.info("Found optimal solution")
        elif status == cp_model.FEASIBLE:
            logger.info("Found feasible solution (may not be optimal)")
        else:
            logger.warning(f"Solver returned status: {status_name}")
            return None, status_name

        genes = SolutionExtractor(solver, builder.get_variables(), self.evaluator.size).extract()
        return genes, status_name
