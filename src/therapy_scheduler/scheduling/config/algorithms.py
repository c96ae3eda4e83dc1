"""Tunables of the optimization strategies."""

from dataclasses import asdict, dataclass, field
from typing import Any

from ...exceptions import ConfigurationError
from ..constants import (
    CSP_CP_SAT_TIME_LIMIT,
    CSP_MAX_BACKTRACKS,
    GA_CONVERGENCE_THRESHOLD,
    GA_CROSSOVER_RATE,
    GA_ELITE_PERCENTAGE,
    GA_GENERATIONS,
    GA_MUTATION_RATE,
    GA_POPULATION_SIZE,
    GA_STAGNATION_GENERATIONS,
    GA_TOURNAMENT_SIZE,
    HYBRID_NEIGHBOR_SEARCH_PASSES,
    HYBRID_TIME_BUDGET_SECONDS,
    SA_COOLING_RATE,
    SA_INITIAL_TEMPERATURE,
    SA_ITERATIONS_PER_TEMPERATURE,
    SA_MAX_ITERATIONS,
    SA_MIN_TEMPERATURE,
)
from .constraints import check_keys


def _check_rate(value: float, key: str) -> None:
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"must be within [0, 1], got {value}", key)


@dataclass(frozen=True)
class GeneticSettings:
    population_size: int = GA_POPULATION_SIZE
    generations: int = GA_GENERATIONS
    mutation_rate: float = GA_MUTATION_RATE
    crossover_rate: float = GA_CROSSOVER_RATE
    elite_percentage: float = GA_ELITE_PERCENTAGE
    convergence_threshold: float = GA_CONVERGENCE_THRESHOLD
    stagnation_generations: int = GA_STAGNATION_GENERATIONS
    tournament_size: int = GA_TOURNAMENT_SIZE

    def __post_init__(self) -> None:
        if self.population_size < 2:
            raise ConfigurationError("must be at least 2", "genetic.population_size")
        if self.generations < 1:
            raise ConfigurationError("must be at least 1", "genetic.generations")
        if self.tournament_size < 1:
            raise ConfigurationError("must be at least 1", "genetic.tournament_size")
        _check_rate(self.mutation_rate, "genetic.mutation_rate")
        _check_rate(self.crossover_rate, "genetic.crossover_rate")
        _check_rate(self.elite_percentage, "genetic.elite_percentage")

    @property
    def elite_count(self) -> int:
        return max(1, int(self.population_size * self.elite_percentage))


@dataclass(frozen=True)
class AnnealingSettings:
    initial_temperature: float = SA_INITIAL_TEMPERATURE
    cooling_rate: float = SA_COOLING_RATE
    min_temperature: float = SA_MIN_TEMPERATURE
    iterations_per_temperature: int = SA_ITERATIONS_PER_TEMPERATURE
    max_iterations: int = SA_MAX_ITERATIONS

    def __post_init__(self) -> None:
        if not 0.0 < self.cooling_rate < 1.0:
            raise ConfigurationError("must be within (0, 1)", "annealing.cooling_rate")
        if self.min_temperature <= 0 or self.initial_temperature <= self.min_temperature:
            raise ConfigurationError(
                "initial temperature must exceed a positive minimum", "annealing.min_temperature"
            )
        if self.iterations_per_temperature < 1 or self.max_iterations < 1:
            raise ConfigurationError("iteration counts must be positive", "annealing.max_iterations")


@dataclass(frozen=True)
class ConstraintSatisfactionSettings:
    max_backtracks: int = CSP_MAX_BACKTRACKS
    use_cp_sat_fallback: bool = True
    cp_sat_time_limit_seconds: float = CSP_CP_SAT_TIME_LIMIT

    def __post_init__(self) -> None:
        if self.max_backtracks < 0:
            raise ConfigurationError("must not be negative", "constraint_satisfaction.max_backtracks")


@dataclass(frozen=True)
class HybridSettings:
    time_budget_seconds: float = HYBRID_TIME_BUDGET_SECONDS
    neighbor_search_passes: int = HYBRID_NEIGHBOR_SEARCH_PASSES

    def __post_init__(self) -> None:
        if self.time_budget_seconds <= 0:
            raise ConfigurationError("must be positive", "hybrid.time_budget_seconds")


@dataclass(frozen=True)
class AlgorithmSettings:
    """Per-strategy settings bundle."""

    genetic: GeneticSettings = field(default_factory=GeneticSettings)
    annealing: AnnealingSettings = field(default_factory=AnnealingSettings)
    constraint_satisfaction: ConstraintSatisfactionSettings = field(
        default_factory=ConstraintSatisfactionSettings
    )
    hybrid: HybridSettings = field(default_factory=HybridSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AlgorithmSettings":
        data = check_keys(data, cls, "algorithms")
        return cls(
            genetic=GeneticSettings(**check_keys(data["genetic"], GeneticSettings, "genetic")),
            annealing=AnnealingSettings(
                **check_keys(data["annealing"], AnnealingSettings, "annealing")
            ),
            constraint_satisfaction=ConstraintSatisfactionSettings(
                **check_keys(
                    data["constraint_satisfaction"],
                    ConstraintSatisfactionSettings,
                    "constraint_satisfaction",
                )
            ),
            hybrid=HybridSettings(**check_keys(data["hybrid"], HybridSettings, "hybrid")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
