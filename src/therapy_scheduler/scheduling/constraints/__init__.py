"""CP-SAT constraint sets for the exact fallback solver."""

from .base import ConstraintBase
from .hard import HardConstraints
from .soft import SoftConstraints

__all__ = [
    "ConstraintBase",
    "HardConstraints",
    "SoftConstraints",
]
