"""Jacobians of residual functions with forward-mode jets.

The derivatives are taken with respect to the update ``delta`` applied by the
parameter trait, at ``delta = 0``. For plain scalars and arrays this is the
ordinary Jacobian; for a user type with a custom ``plus_eq`` it is the
Jacobian in the tangent space of that update.
"""

from __future__ import annotations

from functools import partial
from typing import Any, Callable, Optional, Tuple

import numpy as np

from .core import split_count
from .jet import Jet, as_jet
from .traits import ParamTrait, params_trait


def seed_jets(x: Any, trait: Optional[ParamTrait] = None) -> Tuple[Any, int]:
    """Return a copy of ``x`` made of jets seeded on every coordinate.

    Returns the seeded value and the derivative width.
    """
    trait = trait if trait is not None else params_trait(x)
    width = trait.dims(x)
    x_jet = trait.cast(x, partial(Jet.constant, width=width))
    x_jet = trait.plus_eq(x_jet, Jet.variables(np.zeros(width)))
    return x_jet, width


def residual_jet(output: Any, width: int) -> Tuple[Jet, Optional[int]]:
    """Flatten a residual output into a 1-d jet and its explicit count, if any."""
    value, count = split_count(output)
    return as_jet(value, width).ravel(), count


def calculate_jacobian(
    x: Any, func: Callable[[Any], Any], trait: Optional[ParamTrait] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Evaluate ``func`` at ``x`` and return its flattened values and Jacobian.

    Parameters
    ----------
    x:
        Parameter value (scalar, array or user type with a trait).
    func:
        Residual function written against NumPy operations.

    Returns
    -------
    tuple
        ``(values, J)`` with ``values`` of shape ``(m,)`` and ``J`` of shape
        ``(m, dims(x))``.
    """
    x_jet, width = seed_jets(x, trait)
    res, _ = residual_jet(func(x_jet), width)
    return res.v.copy(), res.d.reshape(-1, width).copy()


__all__ = ["calculate_jacobian", "residual_jet", "seed_jets"]
