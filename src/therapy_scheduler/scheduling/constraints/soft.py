"""Soft constraint implementations for the CP-SAT model.

Soft constraints are preferences that should be satisfied when possible.
They contribute weighted rewards to the objective but never make a
placement invalid.
"""

from ortools.sat.python import cp_model

from .base import ConstraintBase

# Objective weights per placed session
PLACEMENT_REWARD = 100
PREFERENCE_REWARD = 10
UNCHANGED_REWARD = 5


class SoftConstraints(ConstraintBase):
    """
    Weighted rewards, maximized as the model objective.

    - Place as many sessions as possible
    - Honor student time-window preferences
    - Keep sessions at their current placement
    """

    def __init__(self, model: cp_model.CpModel, evaluator):
        super().__init__(model, evaluator)
        self._rewards: list[tuple[cp_model.IntVar, int]] = []

    def apply(self, variables: dict) -> None:
        """Apply all soft constraints and set the objective."""
        student = self.evaluator.constraints.student
        for (index, gene), var in variables["x"].items():
            session = self.evaluator.sessions[index]
            p = self.evaluator.placement(index, gene)
            weight = PLACEMENT_REWARD
            if student.satisfied_by(session.student_id, p.start, p.end):
                weight += PREFERENCE_REWARD
            if p == session.placement:
                weight += UNCHANGED_REWARD
            self._add_reward(var, weight)
        self._add_objective()

    def get_rewards(self) -> list[tuple[cp_model.IntVar, int]]:
        """Get all reward variables and their weights."""
        return self._rewards

    def _add_reward(self, var: cp_model.IntVar, weight: int) -> None:
        self._rewards.append((var, weight))

    def _add_objective(self) -> None:
        if self._rewards:
            self.model.Maximize(sum(var * weight for var, weight in self._rewards))
