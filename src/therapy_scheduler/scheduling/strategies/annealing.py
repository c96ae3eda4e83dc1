"""Simulated annealing over a single schedule."""

import logging
import math
from collections import defaultdict
from datetime import date

from ..constants import SA_ENERGY_SCALE
from ..models import Algorithm
from ..objective import UNASSIGNED
from .base import OptimizerStrategy, SearchOutcome

logger = logging.getLogger(__name__)

# Probability of a swap move (otherwise a single-session move)
SWAP_PROBABILITY = 0.3

# Largest step through a domain for a neighboring-slot move
NEIGHBOR_RADIUS = 3


class SimulatedAnnealing(OptimizerStrategy):
    """
    Local search that accepts worse schedules with probability exp(-delta/T).

    Moves either swap the time slots of two sessions or shift one session to a
    neighboring candidate. The temperature decays geometrically every
    ``iterations_per_temperature`` proposals.
    """

    algorithm = Algorithm.SIMULATED_ANNEALING

    def search(self) -> SearchOutcome:
        settings = self.settings.annealing
        ev = self.evaluator
        if ev.size == 0:
            return SearchOutcome(genes=[], final_temperature=settings.initial_temperature)

        self._slot_index = self._build_slot_index()
        movable = [i for i, d in enumerate(ev.domains) if len(d)]

        current = self.build_feasible(ev.initial_genes())
        current_energy = self._energy(current)
        best = list(current)
        best_energy = current_energy

        temperature = settings.initial_temperature
        iterations = 0
        accepted = 0
        deadline_reached = False

        while (
            movable
            and temperature > settings.min_temperature
            and iterations < settings.max_iterations
        ):
            for _ in range(settings.iterations_per_temperature):
                if iterations >= settings.max_iterations:
                    break
                if self.deadline.expired():
                    deadline_reached = True
                    break
                iterations += 1
                candidate = self._perturb(current, movable)
                if candidate is None:
                    continue
                energy = self._energy(candidate)
                delta = energy - current_energy
                if delta <= 0 or self.random.random() < math.exp(-delta / temperature):
                    current = candidate
                    current_energy = energy
                    accepted += 1
                    if energy < best_energy:
                        best = list(candidate)
                        best_energy = energy
            if deadline_reached:
                break
            temperature *= settings.cooling_rate

        logger.info(
            f"Simulated annealing ran {iterations} iterations, accepted {accepted}, "
            f"final temperature {temperature:.3f}, best fitness {-best_energy / SA_ENERGY_SCALE:.4f}"
        )
        return SearchOutcome(
            genes=best,
            iterations=iterations,
            converged=not deadline_reached,
            deadline_reached=deadline_reached,
            final_temperature=temperature,
        )

    def _energy(self, genes: list[int]) -> float:
        return -self.evaluator.fitness(genes) * SA_ENERGY_SCALE

    def _build_slot_index(self) -> list[dict[tuple[date, int], list[int]]]:
        """Per session: (date, start) -> candidate indices, for swap moves."""
        index = []
        for domain in self.evaluator.domains:
            by_slot: dict[tuple[date, int], list[int]] = defaultdict(list)
            for gene, p in enumerate(domain.placements):
                by_slot[(p.date, p.start)].append(gene)
            index.append(by_slot)
        return index

    def _perturb(self, genes: list[int], movable: list[int]) -> list[int] | None:
        if len(movable) > 1 and self.random.random() < SWAP_PROBABILITY:
            return self._swap(genes, movable)
        return self._move(genes, movable)

    def _move(self, genes: list[int], movable: list[int]) -> list[int]:
        index = self.random.choice(movable)
        size = len(self.evaluator.domains[index])
        current = genes[index]
        if current == UNASSIGNED or size == 1:
            new_gene = self.random.randrange(size)
        else:
            step = self.random.randint(1, NEIGHBOR_RADIUS) * self.random.choice((-1, 1))
            new_gene = min(size - 1, max(0, current + step))
        candidate = list(genes)
        candidate[index] = new_gene
        return candidate

    def _swap(self, genes: list[int], movable: list[int]) -> list[int] | None:
        a, b = self.random.sample(movable, 2)
        if genes[a] == UNASSIGNED or genes[b] == UNASSIGNED:
            return None
        slot_a = self.evaluator.placement(a, genes[a])
        slot_b = self.evaluator.placement(b, genes[b])
        options_a = self._slot_index[a].get((slot_b.date, slot_b.start))
        options_b = self._slot_index[b].get((slot_a.date, slot_a.start))
        if not options_a or not options_b:
            return None
        candidate = list(genes)
        candidate[a] = self._closest(a, options_a, slot_a)
        candidate[b] = self._closest(b, options_b, slot_b)
        return candidate

    def _closest(self, index: int, options: list[int], keep) -> int:
        """Prefer the option that keeps the session's therapist and room."""
        domain = self.evaluator.domains[index]
        for gene in options:
            p = domain.placements[gene]
            if p.therapist_id == keep.therapist_id and p.room_id == keep.room_id:
                return gene
        return options[0]
