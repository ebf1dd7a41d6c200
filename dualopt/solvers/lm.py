"""Levenberg-Marquardt solver: Gauss-Newton with a diagonal damping ``H + lambda*I``."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np
from scipy import sparse

from ..core import LMSolverOptions
from .gn import SolverGN


class SolverLM(SolverGN):
    """Gauss-Newton with an adaptive damping factor.

    The damping shrinks by ``good_factor`` after an accepted step and grows by
    ``bad_factor`` after a rejected step or a failed factorization, always
    clamped to ``damping_range``.
    """

    name = "lm"
    RETRY_ON_SOLVER_FAILURE = True
    options_class = LMSolverOptions

    def __init__(self, options: Optional[LMSolverOptions] = None) -> None:
        super().__init__(options)
        opts = self.options
        low, high = opts.damping_range
        if opts.damping_init < 0:
            raise ValueError("damping_init must be non-negative")
        if low < 0 or low > high:
            raise ValueError(f"Invalid damping_range {opts.damping_range}")
        if opts.good_factor <= 0 or opts.bad_factor <= 0:
            raise ValueError("good_factor and bad_factor must be positive")
        self.damping = float(opts.damping_init)

    def reset(self) -> None:
        super().reset()
        self.damping = float(self.options.damping_init)

    def set_damping(self, value: float) -> None:
        low, high = self.options.damping_range
        self.damping = min(max(float(value), low), high)

    def damped_hessian(self) -> Any:
        if self.H is None:
            return None
        if sparse.issparse(self.H):
            return sparse.csc_matrix(self.H + self.damping * sparse.identity(self.H.shape[0], format="csc"))
        return self.H + self.damping * np.eye(self.H.shape[0])

    def good_step(self, quality: float = 0.0) -> None:
        del quality
        self.set_damping(self.damping * self.options.good_factor)

    def bad_step(self, quality: float = 0.0) -> None:
        del quality
        self.set_damping(self.damping * self.options.bad_factor)

    def failed_step(self) -> None:
        self.set_damping(self.damping * self.options.bad_factor)

    def state_as_string(self) -> str:
        return f"λ:{self.damping:.2e}"


__all__ = ["SolverLM"]
