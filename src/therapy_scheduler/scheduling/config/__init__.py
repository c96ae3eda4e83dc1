"""Configuration loading for therapy scheduling."""

from .algorithms import (
    AlgorithmSettings,
    AnnealingSettings,
    ConstraintSatisfactionSettings,
    GeneticSettings,
    HybridSettings,
)
from .availability import AvailabilityConfig
from .constraints import (
    FacilityConstraints,
    ObjectiveWeights,
    OptimizationConstraints,
    StudentConstraints,
    StudentPreference,
    TherapistConstraints,
    TimeWindow,
)
from .loader import ConfigLoader
from .rooms import RoomConfig

__all__ = [
    "AlgorithmSettings",
    "AnnealingSettings",
    "AvailabilityConfig",
    "ConfigLoader",
    "ConstraintSatisfactionSettings",
    "FacilityConstraints",
    "GeneticSettings",
    "HybridSettings",
    "ObjectiveWeights",
    "OptimizationConstraints",
    "RoomConfig",
    "StudentConstraints",
    "StudentPreference",
    "TherapistConstraints",
    "TimeWindow",
]
