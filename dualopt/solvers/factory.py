"""Factory for creating solvers by name."""

from __future__ import annotations

from typing import Dict, Optional, Type

from ..core import SolverOptions
from .base import SolverBase
from .gd import SolverGD
from .gn import SolverGN
from .lm import SolverLM

_SOLVERS: Dict[str, Type[SolverBase]] = {
    "gd": SolverGD,
    "gn": SolverGN,
    "lm": SolverLM,
}


def create_solver(name: str, options: Optional[SolverOptions] = None) -> SolverBase:
    """
    Create a solver from its name.

    Args:
        name: Solver name. Supported values: "gn", "lm", "gd".
        options: Solver options. Plain ``SolverOptions`` are upgraded to the
            solver's own options class with default extra fields.

    Returns:
        A fresh solver instance.

    Raises:
        ValueError: If the solver name is not supported.
    """
    name_lower = name.lower()
    if name_lower not in _SOLVERS:
        supported = sorted(_SOLVERS)
        raise ValueError(f"Unsupported solver name '{name}'. Supported names: {supported}")
    return _SOLVERS[name_lower](options)


__all__ = ["create_solver"]
