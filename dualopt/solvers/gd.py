"""Gradient descent: the first-order solver, ``dx = -lr * grad``."""

from __future__ import annotations

from typing import Optional

import numpy as np

from ..core import GDSolverOptions
from .base import SolverBase


class SolverGD(SolverBase):
    """Fixed learning-rate gradient descent. No Hessian is built."""

    name = "gd"
    FIRST_ORDER = True
    options_class = GDSolverOptions

    def __init__(self, options: Optional[GDSolverOptions] = None) -> None:
        super().__init__(options)
        if self.options.lr <= 0:
            raise ValueError("Learning rate must be positive.")

    def init_with(self, grad: np.ndarray) -> None:
        self.grad = np.array(grad, dtype=float)

    def solve(self) -> Optional[np.ndarray]:
        if self.grad is None or self.cost.num_residuals == 0:
            return None
        return -self.options.lr * self.grad


__all__ = ["SolverGD"]
