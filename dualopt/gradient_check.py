"""Check analytic gradients against central differences.

Example
-------
>>> import numpy as np
>>> from dualopt.gradient_check import check_residuals_gradient
>>> J = np.diag([3.0, 2.0])
>>> def residuals(x, grad, H):
...     res = J @ x - 2.0
...     if grad is not None:
...         grad[:] = J.T @ res
...         H[:] = J.T @ J
...     return res
>>> check_residuals_gradient(np.array([1.4, 7.2]), residuals)
True
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import numpy as np
from scipy import sparse

from .accumulation import AutoDiffAccumulator, EvaluatorKind, detect_kind, normalize_output
from .logging import get_logger
from .num_diff import numerical_gradient, numerical_jacobian
from .traits import params_trait

_logger = get_logger(__name__)


def _compare(
    analytic: np.ndarray,
    numeric: np.ndarray,
    tol: float,
    logger: logging.Logger,
    label: str,
) -> bool:
    ok = True
    for i, (a, n) in enumerate(zip(analytic, numeric)):
        if not abs(a - n) <= tol + tol * abs(n):
            logger.warning(
                "%s mismatch at coordinate %d: analytic=%.6e numeric=%.6e", label, i, a, n
            )
            ok = False
    return ok


def _check_args(eps: float, tol: float) -> None:
    if eps <= 0:
        raise ValueError("eps must be positive")
    if tol < 0:
        raise ValueError("tol must be non-negative")


def _hessian_buffer(n: int, sparse_h: bool) -> Any:
    if sparse_h:
        return sparse.lil_matrix((n, n), dtype=float)
    return np.zeros((n, n))


def check_gradient(
    x: Any,
    func: Callable,
    eps: float = 1e-4,
    tol: float = 1e-4,
    logger: Optional[logging.Logger] = None,
    sparse_h: bool = False,
) -> bool:
    """Compare the gradient of the cost of ``func`` with central differences.

    ``func`` is an accumulation function ``f(x, grad, H)`` or ``f(x, grad)``,
    whose gradient must be the gradient of the cost it returns, or a cost
    function ``f(x)`` differentiated with jets. With ``sparse_h`` the
    accumulation function receives a ``scipy.sparse.lil_matrix`` as ``H``.

    Returns
    -------
    bool
        True if every coordinate satisfies ``|a - n| <= tol + tol * |n|``.
    """
    _check_args(eps, tol)
    logger = logger or _logger
    trait = params_trait(x)
    n = trait.dims(x)
    grad = np.zeros(n)

    kind = detect_kind(func, first_order=True)
    if kind is EvaluatorKind.ACCUMULATE:
        func(trait.copy(x), grad, _hessian_buffer(n, sparse_h))

        def cost(xp: Any) -> float:
            return normalize_output(func(xp, None, None)).cost

    elif kind is EvaluatorKind.ACCUMULATE_GRAD:
        func(trait.copy(x), grad)

        def cost(xp: Any) -> float:
            return normalize_output(func(xp, None)).cost

    else:
        acc = AutoDiffAccumulator(func, EvaluatorKind.COST, trait)
        acc(trait.copy(x), grad, None)

        def cost(xp: Any) -> float:
            return acc(xp, None, None).cost

    numeric = numerical_gradient(x, cost, eps=eps, trait=trait)
    return _compare(grad, numeric, tol, logger, "Gradient")


def check_residuals_gradient(
    x: Any,
    func: Callable,
    eps: float = 1e-4,
    tol: float = 1e-4,
    logger: Optional[logging.Logger] = None,
    sparse_h: bool = False,
) -> bool:
    """Compare ``grad = J^T r`` with the one of a central-difference Jacobian.

    ``func`` is either an accumulation function ``f(x, grad, H)`` returning
    the residuals, or a residual function ``f(x)`` differentiated with jets.
    The Hessian approximation ``J^T J`` is not checked; it is written to a
    ``scipy.sparse.lil_matrix`` when ``sparse_h`` is set.
    """
    _check_args(eps, tol)
    logger = logger or _logger
    trait = params_trait(x)
    n = trait.dims(x)
    grad = np.zeros(n)

    if detect_kind(func) is EvaluatorKind.ACCUMULATE:
        func(trait.copy(x), grad, _hessian_buffer(n, sparse_h))

        def residuals(xp: Any) -> Any:
            return func(xp, None, None)

    else:
        AutoDiffAccumulator(func, EvaluatorKind.RESIDUALS, trait)(trait.copy(x), grad, None)
        residuals = func

    values, jac = numerical_jacobian(x, residuals, eps=eps, trait=trait)
    return _compare(grad, jac.T @ values, tol, logger, "Residuals gradient")


__all__ = ["check_gradient", "check_residuals_gradient"]
