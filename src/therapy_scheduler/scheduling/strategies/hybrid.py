"""Greedy construction followed by time-boxed neighbor search."""

import logging

from ..models import Algorithm, PerformanceMode
from ..objective import UNASSIGNED, Occupancy
from ..utils import Deadline
from .base import OptimizerStrategy, SearchOutcome

logger = logging.getLogger(__name__)

# Fitting candidates scored per session in one neighbor-search pass
CANDIDATES_PER_SESSION = 20


class Hybrid(OptimizerStrategy):
    """
    Adaptive strategy for heavy load.

    Always starts with a greedy first-fit pass. In standard mode it then
    runs hill-climbing passes that move one session at a time to a better
    fitting candidate. Under ``peak_load`` the neighbor search is skipped,
    and in either mode it stops when the time budget runs out; both cases
    are reported as ``degradation_applied``.
    """

    algorithm = Algorithm.HYBRID

    def search(self) -> SearchOutcome:
        settings = self.settings.hybrid
        ev = self.evaluator
        if ev.size == 0:
            return SearchOutcome(genes=[], degradation_applied=self.mode == PerformanceMode.PEAK_LOAD)

        budget_seconds = settings.time_budget_seconds
        remaining = self.deadline.remaining()
        if remaining is not None:
            budget_seconds = min(budget_seconds, remaining)
        budget = Deadline(budget_seconds)

        genes = self.build_feasible(ev.initial_genes())
        iterations = ev.size
        degradation = self.mode == PerformanceMode.PEAK_LOAD
        if degradation:
            logger.warning(
                f"Peak load: greedy placement only for {ev.size} sessions, neighbor search skipped"
            )

        passes = 0
        if not degradation:
            current_fitness = ev.fitness(genes)
            while passes < settings.neighbor_search_passes:
                passes += 1
                improved = False
                for index in self.most_constrained_order():
                    if budget.expired():
                        degradation = True
                        break
                    best_gene, best_fitness, tried = self._best_move(genes, index, current_fitness)
                    iterations += tried
                    if best_gene is not None:
                        genes[index] = best_gene
                        current_fitness = best_fitness
                        improved = True
                if degradation or not improved:
                    break
            if degradation:
                logger.warning(f"Neighbor search stopped by the {budget_seconds:.2f}s time budget")

        deadline_reached = self.deadline.expired()
        return SearchOutcome(
            genes=genes,
            iterations=iterations,
            generations=passes,
            converged=not degradation and not deadline_reached,
            deadline_reached=deadline_reached,
            degradation_applied=degradation,
        )

    def _best_move(
        self, genes: list[int], index: int, current_fitness: float
    ) -> tuple[int | None, float, int]:
        """Best fitting replacement gene for one session, if it improves fitness."""
        occupancy = Occupancy(self.evaluator)
        for other, gene in enumerate(genes):
            if other != index and gene != UNASSIGNED:
                occupancy.add(other, gene)

        best_gene = None
        best_fitness = current_fitness
        tried = 0
        for gene in range(len(self.evaluator.domains[index])):
            if gene == genes[index] or not occupancy.fits(index, gene):
                continue
            candidate = list(genes)
            candidate[index] = gene
            fitness = self.evaluator.fitness(candidate)
            tried += 1
            if fitness > best_fitness:
                best_gene, best_fitness = gene, fitness
            if tried >= CANDIDATES_PER_SESSION:
                break
        return best_gene, best_fitness, tried
