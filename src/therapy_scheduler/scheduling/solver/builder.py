"""CP-SAT model construction."""

from ortools.sat.python import cp_model

from ..constraints.hard import HardConstraints
from ..constraints.soft import SoftConstraints
from ..objective import UNASSIGNED, ScheduleEvaluator
from .variables import VariableManager


class ModelBuilder:
    """Orchestrates CP-SAT model construction."""

    def __init__(self, evaluator: ScheduleEvaluator):
        self.evaluator = evaluator

        self.model = cp_model.CpModel()
        self.variables: dict = {}
        self.hard_constraints: HardConstraints | None = None
        self.soft_constraints: SoftConstraints | None = None

    def build(self) -> cp_model.CpModel:
        """
        Build the complete CP-SAT model.

        Returns the configured CpModel ready for solving.
        """
        self.variables = VariableManager(self.model, self.evaluator).create_variables()

        self.hard_constraints = HardConstraints(self.model, self.evaluator)
        self.hard_constraints.apply(self.variables)

        # Soft constraints set the objective
        self.soft_constraints = SoftConstraints(self.model, self.evaluator)
        self.soft_constraints.apply(self.variables)

        self._add_single_assignment_constraint()
        return self.model

    def _add_single_assignment_constraint(self) -> None:
        """Each session takes at most one placement."""
        for session_vars in self.variables["by_session"].values():
            if len(session_vars) > 1:
                self.model.AddAtMostOne(session_vars)

    def add_hint(self, genes: list[int]) -> None:
        """Use a gene vector as the solver's starting point."""
        for (index, gene), var in self.variables["x"].items():
            self.model.AddHint(var, int(genes[index] == gene and gene != UNASSIGNED))

    def get_variables(self) -> dict:
        """Get the variables dictionary."""
        return self.variables

    def get_model(self) -> cp_model.CpModel:
        """Get the CP-SAT model."""
        return self.model
