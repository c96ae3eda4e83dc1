"""Optimization strategies sharing the OptimizerStrategy interface."""

from ..models import Algorithm
from .annealing import SimulatedAnnealing
from .backtracking import ConstraintSatisfaction
from .base import OptimizerStrategy, SearchOutcome
from .genetic import GeneticAlgorithm
from .hybrid import Hybrid

STRATEGIES: dict[Algorithm, type[OptimizerStrategy]] = {
    Algorithm.GENETIC_ALGORITHM: GeneticAlgorithm,
    Algorithm.SIMULATED_ANNEALING: SimulatedAnnealing,
    Algorithm.CONSTRAINT_SATISFACTION: ConstraintSatisfaction,
    Algorithm.HYBRID: Hybrid,
}

__all__ = [
    "ConstraintSatisfaction",
    "GeneticAlgorithm",
    "Hybrid",
    "OptimizerStrategy",
    "STRATEGIES",
    "SearchOutcome",
    "SimulatedAnnealing",
]
