"""Central finite differences through the parameter traits.

Perturbations are applied with the trait's ``plus_eq`` on copies of the
parameter, so user types with a manifold update are differentiated in the same
tangent space as with jets.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import numpy as np

from .core import split_count
from .jet import value_of
from .traits import ParamTrait, params_trait

Array = np.ndarray
Objective = Callable[[Array], float]


def approx_grad(
    fun: Objective, x: Array, eps: float = 1e-6, return_evals: bool = False
) -> Array | tuple[Array, int]:
    """Compute a central-difference gradient approximation.

    Parameters
    ----------
    fun:
        Objective function returning a scalar given x.
    x:
        Point where the gradient is approximated.
    eps:
        Perturbation size for finite differences.
    """
    if eps <= 0:
        raise ValueError("eps must be positive")
    x = np.asarray(x, dtype=float).copy()
    grad = np.zeros_like(x, dtype=float)
    evals = 0
    for i in range(x.size):
        ei = np.zeros_like(x)
        ei[i] = eps
        fx_plus = fun(x + ei)
        fx_minus = fun(x - ei)
        evals += 2
        grad[i] = (fx_plus - fx_minus) / (2.0 * eps)
    if return_evals:
        return grad, evals
    return grad


def residual_vector(output: Any) -> Array:
    """Flatten a residual output (possibly a ``(value, count)`` pair) to floats."""
    value, _ = split_count(output)
    return np.atleast_1d(value_of(value)).astype(float).ravel()


def perturb(x: Any, delta: Array, trait: Optional[ParamTrait] = None) -> Any:
    """Return ``x`` moved by ``delta`` without touching ``x``."""
    trait = trait if trait is not None else params_trait(x)
    return trait.plus_eq(trait.copy(x), delta)


def numerical_gradient(
    x: Any,
    func: Callable[[Any], float],
    eps: float = 1e-6,
    trait: Optional[ParamTrait] = None,
) -> Array:
    """Central-difference gradient of the scalar function ``func`` at ``x``."""
    trait = trait if trait is not None else params_trait(x)
    n = trait.dims(x)

    def fun(delta: Array) -> float:
        return float(func(perturb(x, delta, trait)))

    return approx_grad(fun, np.zeros(n), eps=eps)


def numerical_jacobian(
    x: Any,
    func: Callable[[Any], Any],
    eps: float = 1e-6,
    trait: Optional[ParamTrait] = None,
) -> tuple[Array, Array]:
    """Central-difference Jacobian of a residual function.

    Returns
    -------
    tuple
        ``(values, J)``: the residuals at ``x`` with shape ``(m,)`` and the
        Jacobian with shape ``(m, dims(x))``.
    """
    if eps <= 0:
        raise ValueError("eps must be positive")
    trait = trait if trait is not None else params_trait(x)
    n = trait.dims(x)
    values = residual_vector(func(trait.copy(x)))
    jac = np.zeros((values.size, n), dtype=float)
    for i in range(n):
        ei = np.zeros(n)
        ei[i] = eps
        r_plus = residual_vector(func(perturb(x, ei, trait)))
        r_minus = residual_vector(func(perturb(x, -ei, trait)))
        jac[:, i] = (r_plus - r_minus) / (2.0 * eps)
    return values, jac


__all__ = [
    "approx_grad",
    "numerical_gradient",
    "numerical_jacobian",
    "perturb",
    "residual_vector",
]
