"""CP-SAT variable creation."""

from ortools.sat.python import cp_model

from ..objective import ScheduleEvaluator


class VariableManager:
    """Creates one boolean per (session, candidate placement)."""

    def __init__(self, model: cp_model.CpModel, evaluator: ScheduleEvaluator):
        self.model = model
        self.evaluator = evaluator

        # x[(session_index, gene)] = BoolVar
        self.x: dict[tuple[int, int], cp_model.IntVar] = {}

    def create_variables(self) -> dict:
        """
        Create decision variables.

        Domains were already reduced to feasible placements, so every
        candidate becomes a variable.

        Returns a dictionary containing:
        - 'x': Assignment indicators keyed by (session index, gene)
        - 'by_session': Variables of each session, in domain order
        """
        by_session: dict[int, list[cp_model.IntVar]] = {}
        for index, domain in enumerate(self.evaluator.domains):
            session_vars = []
            for gene in range(len(domain)):
                var = self.model.NewBoolVar(f"x_{index}_{gene}")
                self.x[(index, gene)] = var
                session_vars.append(var)
            by_session[index] = session_vars
        return {"x": self.x, "by_session": by_session}
