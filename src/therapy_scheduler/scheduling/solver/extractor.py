"""Solution extraction from CP-SAT solver."""

from ortools.sat.python import cp_model

from ..objective import UNASSIGNED


class SolutionExtractor:
    """Turns a solved model back into a gene vector."""

    def __init__(self, solver: cp_model.CpSolver, variables: dict, size: int):
        self.solver = solver
        self.variables = variables
        self.size = size

    def extract(self) -> list[int]:
        """Chosen candidate per session, ``UNASSIGNED`` where none was selected."""
        genes = [UNASSIGNED] * self.size
        for (index, gene), var in self.variables["x"].items():
            if self.solver.Value(var) == 1:
                genes[index] = gene
        return genes
