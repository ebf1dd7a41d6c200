"""Solvers proposing steps from the gradient and the Hessian approximation."""

from .base import AccumulationFunction, SolverBase
from .factory import create_solver
from .gd import SolverGD
from .gn import SolverGN, is_pos_def, solve_ldlt, solve_sparse
from .lm import SolverLM

__all__ = [
    "AccumulationFunction",
    "SolverBase",
    "SolverGD",
    "SolverGN",
    "SolverLM",
    "create_solver",
    "is_pos_def",
    "solve_ldlt",
    "solve_sparse",
]
