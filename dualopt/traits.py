"""Parameter traits: a uniform view of any parameter type as a vector.

A trait tells the solvers how many scalars a parameter value holds, how to
apply an update ``delta`` to it (plain addition or a manifold update), how to
copy it and how to render it in log records.

Example
-------
>>> import numpy as np
>>> from dualopt.traits import params_trait
>>> trait = params_trait(np.zeros(3))
>>> trait.dims(np.zeros(3))
3
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from numbers import Number
from typing import Any, Callable, Dict, Type

import numpy as np


class _Dynamic:
    """Marker for a dimension only known at execution time."""

    _instance = None

    def __new__(cls) -> "_Dynamic":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DYNAMIC"

    def __reduce__(self) -> str:
        return "DYNAMIC"


DYNAMIC = _Dynamic()

Converter = Callable[[Any], Any]


class ParamTrait(ABC):
    """Capabilities the optimizers need from a parameter type."""

    DIMS: Any = DYNAMIC

    @abstractmethod
    def dims(self, x: Any) -> int:
        """Number of scalars in ``x``."""

    def scalar_type(self, x: Any) -> np.dtype:
        """Floating point type used for the gradient and the Hessian."""
        del x
        return np.dtype(float)

    def cast(self, x: Any, convert: Converter) -> Any:
        """Return a copy of ``x`` whose numeric content went through ``convert``.

        The default converts the float and array attributes of ``x``.
        """
        out = copy.deepcopy(x)
        if hasattr(out, "__dict__"):
            for name, value in list(vars(out).items()):
                if isinstance(value, (float, np.floating, np.ndarray)):
                    setattr(out, name, convert(value))
        return out

    @abstractmethod
    def plus_eq(self, x: Any, delta: Any) -> Any:
        """Apply the update ``delta`` and return the updated value."""

    def to_string(self, x: Any) -> str:
        return str(x)

    def copy(self, x: Any) -> Any:
        return copy.deepcopy(x)

    def assign(self, dst: Any, src: Any) -> Any:
        """Copy ``src`` into ``dst`` in place when possible and return the result."""
        if dst is src:
            return dst
        if hasattr(dst, "__dict__"):
            vars(dst).update(copy.deepcopy(vars(src)))
            return dst
        return src


class ScalarTrait(ParamTrait):
    """Python and NumPy real scalars."""

    DIMS = 1

    def dims(self, x: Any) -> int:
        return 1

    def scalar_type(self, x: Any) -> np.dtype:
        return np.result_type(np.asarray(x).dtype, np.float32)

    def cast(self, x: Any, convert: Converter) -> Any:
        return convert(x)

    def plus_eq(self, x: Any, delta: Any) -> Any:
        step = delta[0] if getattr(delta, "ndim", 0) > 0 else delta
        return x + step

    def to_string(self, x: Any) -> str:
        return f"{float(x):g}"

    def copy(self, x: Any) -> Any:
        return x

    def assign(self, dst: Any, src: Any) -> Any:
        return src


class ArrayTrait(ParamTrait):
    """NumPy arrays of any shape, flattened in C order."""

    DIMS = DYNAMIC

    def dims(self, x: np.ndarray) -> int:
        return int(x.size)

    def scalar_type(self, x: np.ndarray) -> np.dtype:
        return np.result_type(x.dtype, np.float32)

    def cast(self, x: np.ndarray, convert: Converter) -> Any:
        return convert(np.array(x, copy=True))

    def plus_eq(self, x: Any, delta: Any) -> Any:
        return x + delta.reshape(x.shape)

    def to_string(self, x: np.ndarray) -> str:
        return np.array2string(np.ravel(x), precision=6)

    def copy(self, x: np.ndarray) -> np.ndarray:
        return np.array(x, dtype=self.scalar_type(x), copy=True)

    def assign(self, dst: np.ndarray, src: Any) -> np.ndarray:
        src = np.asarray(src)
        if dst is not src and dst.flags.writeable and np.can_cast(src.dtype, dst.dtype, "same_kind"):
            dst[...] = np.reshape(src, dst.shape)
            return dst
        return src


class MethodTrait(ParamTrait):
    """Trait forwarding to methods defined on a user type.

    The type must define a ``DIMS`` class attribute and a
    ``plus_eq(delta)`` method returning the updated value. ``dims()``,
    ``cast(convert)``, ``assign(src)`` and ``__str__`` are optional, but
    ``dims()`` is required when ``DIMS`` is ``DYNAMIC``.
    """

    def __init__(self, cls: Type) -> None:
        if not callable(getattr(cls, "plus_eq", None)):
            raise TypeError(
                f"{cls.__name__} is not a parameter type: define plus_eq(delta) "
                "or register a trait with register_trait()."
            )
        self.DIMS = getattr(cls, "DIMS", DYNAMIC)
        self._has_dims = callable(getattr(cls, "dims", None))
        if self.DIMS is DYNAMIC and not self._has_dims:
            raise TypeError(
                f"{cls.__name__} has dynamic dimensions but no dims() accessor."
            )

    def dims(self, x: Any) -> int:
        if self._has_dims:
            return int(x.dims())
        return int(self.DIMS)

    def cast(self, x: Any, convert: Converter) -> Any:
        if callable(getattr(x, "cast", None)):
            return x.cast(convert)
        return super().cast(x, convert)

    def plus_eq(self, x: Any, delta: Any) -> Any:
        return x.plus_eq(delta)

    def assign(self, dst: Any, src: Any) -> Any:
        if dst is not src and callable(getattr(dst, "assign", None)):
            dst.assign(src)
            return dst
        return super().assign(dst, src)


_REGISTRY: Dict[type, ParamTrait] = {}


def register_trait(cls: type, trait: ParamTrait) -> None:
    """Register ``trait`` for ``cls`` and its subclasses."""
    if not isinstance(trait, ParamTrait):
        raise TypeError("trait must be a ParamTrait instance.")
    _REGISTRY[cls] = trait


def unregister_trait(cls: type) -> None:
    _REGISTRY.pop(cls, None)


def params_trait(x: Any) -> ParamTrait:
    """Return the trait describing the parameter value ``x``."""
    for klass in type(x).__mro__:
        trait = _REGISTRY.get(klass)
        if trait is not None:
            return trait
    if isinstance(x, (bool, np.bool_)):
        raise TypeError("Booleans cannot be optimized.")
    if isinstance(x, np.ndarray):
        return _ARRAY_TRAIT
    if isinstance(x, Number) and not isinstance(x, complex):
        return _SCALAR_TRAIT
    return MethodTrait(type(x))


_SCALAR_TRAIT = ScalarTrait()
_ARRAY_TRAIT = ArrayTrait()


__all__ = [
    "ArrayTrait",
    "DYNAMIC",
    "MethodTrait",
    "ParamTrait",
    "ScalarTrait",
    "params_trait",
    "register_trait",
    "unregister_trait",
]
