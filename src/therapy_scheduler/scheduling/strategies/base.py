"""Common interface and shared helpers of the optimization strategies."""

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..config import AlgorithmSettings
from ..models import Algorithm, PerformanceMode
from ..objective import UNASSIGNED, Occupancy, ScheduleEvaluator
from ..utils import Deadline

logger = logging.getLogger(__name__)

# Candidates considered per session by randomized constructive passes
RANDOM_CANDIDATE_LIST_SIZE = 3


@dataclass
class SearchOutcome:
    """Raw result of a strategy run, before repair and verification."""

    genes: list[int]
    iterations: int = 0
    generations: int = 0
    backtracks: int = 0
    converged: bool = True
    deadline_reached: bool = False
    degradation_applied: bool = False
    final_temperature: float | None = None
    cp_sat_status: str | None = None


class OptimizerStrategy(ABC):
    """Abstract base class for optimization strategies.

    Every strategy works on the same gene encoding (see ``objective``) and
    must stop exploring once ``deadline`` expires, returning its best
    solution so far with ``deadline_reached`` set.
    """

    algorithm: Algorithm

    def __init__(
        self,
        evaluator: ScheduleEvaluator,
        settings: AlgorithmSettings,
        rng: random.Random,
        deadline: Deadline,
        mode: PerformanceMode = PerformanceMode.STANDARD,
    ):
        self.evaluator = evaluator
        self.settings = settings
        self.random = rng
        self.deadline = deadline
        self.mode = mode

    @abstractmethod
    def search(self) -> SearchOutcome:
        """Run the search and return the best gene vector found."""
        pass

    def most_constrained_order(self, shuffle: bool = False) -> list[int]:
        """Session indices ordered by domain size, smallest first."""
        indices = list(range(self.evaluator.size))
        if shuffle:
            self.random.shuffle(indices)
        return sorted(indices, key=lambda i: len(self.evaluator.domains[i]))

    def build_feasible(
        self,
        genes: list[int] | None = None,
        randomized: bool = False,
    ) -> list[int]:
        """
        Turn a gene vector into a conflict-free one.

        Sessions are visited most-constrained first. A session keeps its gene
        when it still fits, otherwise it takes the first fitting candidate
        (or a random one of the first few when ``randomized``), otherwise it
        is left unassigned. A vector without conflicts comes back unchanged.

        Args:
            genes: Preferred genes; all unassigned when omitted.
            randomized: Break ties randomly for population seeding.

        Returns:
            A gene vector with no blocking conflicts.
        """
        occupancy = Occupancy(self.evaluator)
        preferred = genes if genes is not None else [UNASSIGNED] * self.evaluator.size
        for index in self.most_constrained_order(shuffle=randomized):
            gene = preferred[index]
            if gene != UNASSIGNED and occupancy.fits(index, gene):
                occupancy.add(index, gene)
                continue
            choice = self.first_fit(occupancy, index, randomized)
            if choice is not None:
                occupancy.add(index, choice)
        return list(occupancy.genes)

    def first_fit(
        self,
        occupancy: Occupancy,
        index: int,
        randomized: bool = False,
        candidates: list[int] | None = None,
    ) -> int | None:
        """First candidate of session ``index`` that fits, or None."""
        if candidates is None:
            candidates = range(len(self.evaluator.domains[index]))
        limit = RANDOM_CANDIDATE_LIST_SIZE if randomized else 1
        fitting: list[int] = []
        for gene in candidates:
            if occupancy.fits(index, gene):
                fitting.append(gene)
                if len(fitting) >= limit:
                    break
        if not fitting:
            return None
        return self.random.choice(fitting) if randomized else fitting[0]

    def random_genes(self) -> list[int]:
        """Uniformly random candidate for every session with a non-empty domain."""
        return [
            self.random.randrange(len(d)) if len(d) else UNASSIGNED for d in self.evaluator.domains
        ]
