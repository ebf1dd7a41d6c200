"""Adapters giving every evaluator the accumulation signature.

Solvers only know one kind of callable, ``acc(x, grad, H) -> Cost``: it adds
its contribution to the gradient and the Hessian buffers in place (either of
which may be ``None`` when derivatives are not wanted) and returns the cost and
the number of residuals. Users may instead hand in

* a residual function ``f(x) -> r`` (scalar, vector or ``(vector, count)``),
* a cost function ``f(x) -> scalar`` (first-order solvers only),
* an accumulation function ``f(x, grad, H)`` returning a scalar, an array
  or a ``(cost, count)`` pair,
* a gradient accumulation function ``f(x, grad)`` (first-order solvers only).

:func:`make_accumulator` picks the adapter once, from an explicit kind or from
the number of positional parameters of the callable.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional, Union

import numpy as np
from scipy import sparse

from .autodiff import residual_jet, seed_jets
from .core import Cost, split_count
from .jet import as_jet, value_of
from .num_diff import numerical_gradient, numerical_jacobian, residual_vector
from .traits import ParamTrait, params_trait


class EvaluatorKind(Enum):
    """Shape of a user evaluator."""

    COST = "cost"
    RESIDUALS = "residuals"
    ACCUMULATE = "accumulate"
    ACCUMULATE_GRAD = "accumulate_grad"


_POSITIONAL = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


def detect_kind(func: Callable, first_order: bool = False) -> EvaluatorKind:
    """Guess the evaluator kind from the signature of ``func``.

    Three or more positional parameters mean an accumulation function. For
    first-order solvers two parameters mean a gradient accumulation function
    ``f(x, grad)``. A single parameter means a residual function for
    second-order solvers and a cost function for first-order ones.
    """
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        sig = None
    if sig is not None:
        params = [p for p in sig.parameters.values() if p.kind in _POSITIONAL]
        if len(params) >= 3:
            return EvaluatorKind.ACCUMULATE
        if first_order and len(params) == 2:
            return EvaluatorKind.ACCUMULATE_GRAD
    return EvaluatorKind.COST if first_order else EvaluatorKind.RESIDUALS


def add_to_hessian(H: Any, block: np.ndarray) -> None:
    """Add the dense ``block`` to ``H`` in place, ``H`` being dense or a LIL matrix."""
    if not sparse.issparse(H):
        H += block
        return
    coo = sparse.coo_matrix(block)
    coo.sum_duplicates()
    if coo.nnz == 0:
        return
    rows, cols = coo.row, coo.col
    H[rows, cols] = np.asarray(H[rows, cols].toarray()).ravel() + coo.data


def normalize_output(output: Any) -> Cost:
    """Turn the raw return value of an accumulation function into a :class:`Cost`.

    A scalar counts as one residual, a ``(cost, count)`` pair is taken
    verbatim and an array gives its squared Frobenius norm and its size.
    """
    value, count = split_count(output)
    if count is not None:
        return Cost(float(value), count)
    arr = np.asarray(value_of(value), dtype=float)
    if arr.ndim == 0:
        return Cost(float(arr), 1)
    return Cost(float(np.sum(arr * arr)), int(arr.size))


def _residual_cost(output: Any) -> Cost:
    value, count = split_count(output)
    r = residual_vector(value)
    return Cost(float(r @ r), r.size if count is None else count)


def _scalar_cost(output: Any) -> Cost:
    value = np.asarray(value_of(output), dtype=float)
    if value.size != 1:
        raise ValueError(f"Cost functions must return a scalar, got shape {value.shape}.")
    return Cost(float(value.reshape(())), 1)


class Accumulator(ABC):
    """Uniform ``(x, grad, H) -> Cost`` view of an evaluator."""

    kind: EvaluatorKind

    def __init__(self, func: Callable, trait: Optional[ParamTrait] = None) -> None:
        self.func = func
        self.trait = trait

    def _trait_for(self, x: Any) -> ParamTrait:
        if self.trait is None:
            self.trait = params_trait(x)
        return self.trait

    @abstractmethod
    def __call__(self, x: Any, grad: Optional[np.ndarray], H: Optional[np.ndarray]) -> Cost:
        """Accumulate the derivatives of the evaluator at ``x``."""

    def __repr__(self) -> str:
        name = getattr(self.func, "__name__", type(self.func).__name__)
        return f"{type(self).__name__}({name}, kind={self.kind.value})"


class ManualAccumulator(Accumulator):
    """Pass-through for user functions filling the buffers themselves."""

    kind = EvaluatorKind.ACCUMULATE

    def __call__(self, x: Any, grad: Optional[np.ndarray], H: Optional[np.ndarray]) -> Cost:
        return normalize_output(self.func(x, grad, H))


class GradientAccumulator(Accumulator):
    """Pass-through for first-order user functions ``f(x, grad)``; H is ignored."""

    kind = EvaluatorKind.ACCUMULATE_GRAD

    def __call__(self, x: Any, grad: Optional[np.ndarray], H: Optional[np.ndarray]) -> Cost:
        del H
        return normalize_output(self.func(x, grad))


class AutoDiffAccumulator(Accumulator):
    """Differentiate cost or residual functions with jets."""

    def __init__(
        self,
        func: Callable,
        kind: EvaluatorKind = EvaluatorKind.RESIDUALS,
        trait: Optional[ParamTrait] = None,
    ) -> None:
        if kind in (EvaluatorKind.ACCUMULATE, EvaluatorKind.ACCUMULATE_GRAD):
            raise ValueError("Accumulation functions provide their own derivatives.")
        super().__init__(func, trait)
        self.kind = kind

    def __call__(self, x: Any, grad: Optional[np.ndarray], H: Optional[np.ndarray]) -> Cost:
        if grad is None and H is None:
            output = self.func(x)
            if self.kind is EvaluatorKind.COST:
                return _scalar_cost(output)
            return _residual_cost(output)

        x_jet, width = seed_jets(x, self._trait_for(x))
        output = self.func(x_jet)

        if self.kind is EvaluatorKind.COST:
            f = as_jet(output, width)
            if f.size != 1:
                raise ValueError(f"Cost functions must return a scalar, got shape {f.shape}.")
            f = f.reshape(())
            if grad is not None:
                grad += f.d
            return Cost(float(f.v), 1)

        res, count = residual_jet(output, width)
        jac = res.d
        if grad is not None:
            grad += jac.T @ res.v
        if H is not None:
            add_to_hessian(H, jac.T @ jac)
        return Cost(float(res.v @ res.v), res.size if count is None else count)


class NumDiffAccumulator(Accumulator):
    """Differentiate cost or residual functions with central differences."""

    def __init__(
        self,
        func: Callable,
        kind: EvaluatorKind = EvaluatorKind.RESIDUALS,
        eps: float = 1e-6,
        trait: Optional[ParamTrait] = None,
    ) -> None:
        if kind in (EvaluatorKind.ACCUMULATE, EvaluatorKind.ACCUMULATE_GRAD):
            raise ValueError("Accumulation functions provide their own derivatives.")
        if eps <= 0:
            raise ValueError("eps must be positive")
        super().__init__(func, trait)
        self.kind = kind
        self.eps = eps

    def __call__(self, x: Any, grad: Optional[np.ndarray], H: Optional[np.ndarray]) -> Cost:
        if self.kind is EvaluatorKind.COST:
            cost = _scalar_cost(self.func(x))
            if grad is not None:
                grad += numerical_gradient(
                    x, lambda xp: _scalar_cost(self.func(xp)).cost, self.eps, self._trait_for(x)
                )
            return cost

        if grad is None and H is None:
            return _residual_cost(self.func(x))

        values, jac = numerical_jacobian(x, self.func, self.eps, self._trait_for(x))
        _, count = split_count(self.func(x))
        if grad is not None:
            grad += jac.T @ values
        if H is not None:
            add_to_hessian(H, jac.T @ jac)
        return Cost(float(values @ values), values.size if count is None else count)


def make_accumulator(
    func: Callable,
    kind: Union[EvaluatorKind, str, None] = None,
    first_order: bool = False,
    use_autodiff: bool = True,
    eps: float = 1e-6,
    trait: Optional[ParamTrait] = None,
) -> Accumulator:
    """Wrap ``func`` into the accumulator matching its kind.

    Args:
        func: Residual, cost, accumulation or gradient accumulation function.
        kind: Evaluator kind. Detected from the signature when None.
        first_order: Whether the consuming solver only needs the gradient.
        use_autodiff: Use jets for cost and residual functions, otherwise
            central differences with step ``eps``.
        eps: Finite-difference step.
        trait: Parameter trait. Resolved from the first ``x`` when None.

    Raises:
        ValueError: If a cost or gradient accumulation function is combined
            with a second-order solver.
    """
    if isinstance(func, Accumulator):
        return func
    if not callable(func):
        raise TypeError("The evaluator must be callable.")
    if kind is None:
        kind = detect_kind(func, first_order=first_order)
    else:
        kind = EvaluatorKind(kind)

    if kind is EvaluatorKind.ACCUMULATE:
        return ManualAccumulator(func, trait)
    if kind is EvaluatorKind.ACCUMULATE_GRAD:
        if not first_order:
            raise ValueError(
                "Gradient accumulation functions f(x, grad) provide no Hessian; "
                "use f(x, grad, H) or a first-order solver."
            )
        return GradientAccumulator(func, trait)
    if kind is EvaluatorKind.COST and not first_order:
        raise ValueError(
            "Cost functions only provide a gradient; use a residual function "
            "or a first-order solver."
        )
    if use_autodiff:
        return AutoDiffAccumulator(func, kind, trait)
    return NumDiffAccumulator(func, kind, eps, trait)


__all__ = [
    "Accumulator",
    "AutoDiffAccumulator",
    "EvaluatorKind",
    "GradientAccumulator",
    "ManualAccumulator",
    "NumDiffAccumulator",
    "add_to_hessian",
    "detect_kind",
    "make_accumulator",
    "normalize_output",
]
