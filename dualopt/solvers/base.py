"""Shared machinery of the solvers: buffers, cost normalization and rollback."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import fields
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np
from scipy import sparse

from ..core import Cost, SolverOptions
from ..logging import get_logger
from ..traits import DYNAMIC, ParamTrait

_logger = get_logger(__name__)

AccumulationFunction = Callable[[Any, Optional[np.ndarray], Optional[np.ndarray]], Cost]


class SolverBase(ABC):
    """Owner of the gradient buffer and of the last evaluated cost.

    A solver is driven through ``resize_if_needed`` once, then alternately
    ``build`` (evaluate the system at ``x``) and ``solve`` (propose a step).
    ``build`` keeps the previous system so that ``rollback`` can restore it
    after a rejected step.
    """

    FIRST_ORDER = False
    RETRY_ON_SOLVER_FAILURE = False
    options_class = SolverOptions
    _STATE: Tuple[str, ...] = ("grad", "cost", "err")

    def __init__(self, options: Optional[SolverOptions] = None) -> None:
        self.options = self._coerce_options(options)
        self.grad: Optional[np.ndarray] = None
        self.cost = Cost()
        self.err = float("inf")
        self._saved: Optional[Dict[str, Any]] = None

    @classmethod
    def _coerce_options(cls, options: Optional[SolverOptions]) -> SolverOptions:
        if options is None:
            return cls.options_class()
        if isinstance(options, cls.options_class):
            return options
        if not isinstance(options, SolverOptions):
            raise TypeError(f"Expected {cls.options_class.__name__}, got {type(options).__name__}.")
        shared = {f.name: getattr(options, f.name) for f in fields(SolverOptions)}
        return cls.options_class(**shared)

    @property
    def logger(self):
        return self.options.log.logger or _logger

    @property
    def dims(self) -> int:
        return 0 if self.grad is None else int(self.grad.size)

    # ---------------------------------------------------------------- buffers
    def resize_if_needed(self, x: Any, trait: ParamTrait) -> bool:
        """Size the system for ``x``. Returns True if buffers were (re)allocated."""
        dims = trait.dims(x)
        if trait.DIMS is not DYNAMIC and int(trait.DIMS) != dims:
            raise ValueError(
                f"Static dimension {trait.DIMS} does not match the runtime dimension {dims}."
            )
        if self.grad is not None and self.grad.size == dims:
            return False
        if self.grad is not None and self.options.log.enable:
            self.logger.debug("Need to resize the system")
        self._allocate(dims)
        return True

    def _allocate(self, dims: int) -> None:
        self.grad = np.zeros(dims, dtype=float)

    def _new_hessian(self, dims: int) -> Any:
        return None

    def _hessian_buffer(self) -> Any:
        return None

    def clear(self) -> None:
        """Set all buffers to zero."""
        for name in self._STATE:
            value = getattr(self, name)
            if isinstance(value, np.ndarray):
                value[...] = 0.0

    def reset(self) -> None:
        self.clear()
        self.cost = Cost()
        self.err = float("inf")
        self._saved = None

    # ------------------------------------------------------------------ cost
    def normalize_cost(self, cost: Cost) -> float:
        opts = self.options.cost
        value = float(cost.cost)
        if not opts.use_squared_norm:
            value = math.sqrt(value) if value >= 0 else float("nan")
        if opts.downscale_by_2:
            value *= 0.5
        if opts.normalize and cost.num_residuals > 0:
            value /= cost.num_residuals
        return value

    @staticmethod
    def clamp(g: np.ndarray, minmax: float) -> bool:
        """Clamp ``g`` in place to ``[-minmax, minmax]``. No-op when ``minmax`` is 0."""
        if minmax == 0:
            return False
        np.clip(g, -minmax, minmax, out=g)
        return True

    # ----------------------------------------------------------------- build
    def build(self, x: Any, acc: AccumulationFunction) -> bool:
        """Evaluate the system at ``x``. Returns False when it is unusable."""
        self._saved = {name: getattr(self, name) for name in self._STATE}
        self._allocate(self.dims)
        self.cost = acc(x, self.grad, self._hessian_buffer())
        self.err = self.normalize_cost(self.cost)
        if self.cost.num_residuals == 0:
            return False
        self.clamp(self.grad, self.options.grad_clipping)
        return self._finish_build()

    def _finish_build(self) -> bool:
        return True

    def rollback(self) -> None:
        """Restore the system that was current before the last ``build``."""
        if self._saved is not None:
            for name, value in self._saved.items():
                setattr(self, name, value)
            self._saved = None

    def evaluate(self, x: Any, acc: AccumulationFunction, skip_derivatives: bool = True) -> float:
        """Normalized cost at ``x``; the solver state is left untouched."""
        if skip_derivatives:
            cost = acc(x, None, None)
        else:
            grad = np.zeros(self.dims)
            cost = acc(x, grad, self._new_hessian(self.dims))
        return self.normalize_cost(cost)

    def is_finite(self) -> bool:
        """Whether the cost and all buffers only hold finite values."""
        if not math.isfinite(self.err):
            return False
        for name in self._STATE:
            value = getattr(self, name)
            if sparse.issparse(value):
                value = value.tocsr().data
            if isinstance(value, np.ndarray) and not np.all(np.isfinite(value)):
                return False
        return True

    def gradient(self) -> Optional[np.ndarray]:
        return self.grad

    def gradient_squared_norm(self) -> float:
        if self.grad is None:
            return float("inf")
        return float(self.grad @ self.grad)

    def hessian(self) -> Optional[np.ndarray]:
        return None

    def damped_hessian(self) -> Optional[np.ndarray]:
        return None

    # ------------------------------------------------------------------ steps
    @abstractmethod
    def solve(self) -> Optional[np.ndarray]:
        """Return the step ``dx`` or None when the system cannot be solved."""

    def good_step(self, quality: float = 0.0) -> None:
        del quality

    def bad_step(self, quality: float = 0.0) -> None:
        del quality

    def failed_step(self) -> None:
        pass

    def state_as_string(self) -> str:
        return ""


__all__ = ["AccumulationFunction", "SolverBase"]
