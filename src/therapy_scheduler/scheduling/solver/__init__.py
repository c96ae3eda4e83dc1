"""CP-SAT solver components."""

from .builder import ModelBuilder
from .cp_sat import CpSatSolver
from .extractor import SolutionExtractor
from .variables import VariableManager

__all__ = [
    "CpSatSolver",
    "ModelBuilder",
    "SolutionExtractor",
    "VariableManager",
]
