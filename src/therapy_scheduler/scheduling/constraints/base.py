"""Base class for constraint implementations."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ortools.sat.python import cp_model

    from ..objective import ScheduleEvaluator


class ConstraintBase(ABC):
    """Abstract base class for constraint implementations."""

    def __init__(self, model: "cp_model.CpModel", evaluator: "ScheduleEvaluator"):
        """
        Initialize constraint handler.

        Args:
            model: The CP-SAT model to add constraints to.
            evaluator: Evaluator holding the session domains, the fixed
                sessions and the optimization constraints.
        """
        self.model = model
        self.evaluator = evaluator

    @abstractmethod
    def apply(self, variables: dict) -> None:
        """
        Apply the constraints to the model.

        Args:
            variables: Dictionary containing the CP-SAT decision variables.
        """
        pass
