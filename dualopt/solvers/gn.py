"""Gauss-Newton solver on the normal equations ``H dx = -grad``."""

from __future__ import annotations

import math
from typing import Any, Optional

import numpy as np
from scipy import sparse
from scipy.linalg import ldl, solve_triangular
from scipy.sparse.linalg import splu

from ..core import FLOAT_EPS, SolverOptions
from .base import SolverBase


def is_pos_def(mat: np.ndarray, tol: float = 0.0) -> bool:
    """Check if a symmetric matrix is positive definite via eigenvalues."""
    sym = 0.5 * (mat + mat.T)
    eigvals = np.linalg.eigvalsh(sym)
    return bool(np.all(eigvals > tol))


def solve_ldlt(H: np.ndarray, b: np.ndarray) -> Optional[np.ndarray]:
    """Solve ``H x = b`` with a Bunch-Kaufman LDL^T factorization of ``H``.

    Returns None when the factorization fails or ``H`` is not positive
    definite.
    """
    try:
        lu, d, perm = ldl(H, lower=False)
    except (ValueError, np.linalg.LinAlgError):
        return None
    if not np.all(np.isfinite(d)) or not is_pos_def(d):
        return None
    tri = lu[perm]
    y = solve_triangular(tri, b[perm], lower=False, unit_diagonal=True)
    z = np.linalg.solve(d, y)
    x = np.empty_like(z)
    x[perm] = solve_triangular(tri.T, z, lower=True, unit_diagonal=True)
    return x


def solve_sparse(H: sparse.spmatrix, b: np.ndarray) -> Optional[np.ndarray]:
    """Solve ``H x = b`` for a sparse symmetric ``H`` with a SuperLU factorization.

    Returns None when ``H`` is singular or when ``x`` is not a descent
    direction of ``b`` (``b . x <= 0``), i.e. when ``H`` is not positive
    definite along ``b``.
    """
    try:
        lu = splu(sparse.csc_matrix(H))
    except RuntimeError:
        return None
    b = np.asarray(b, dtype=float)
    x = lu.solve(b)
    if not np.any(b):
        return x
    if not np.all(np.isfinite(x)) or not float(b @ x) > 0.0:
        return None
    return x


class SolverGN(SolverBase):
    """Gauss-Newton: ``H = J^T J`` and ``grad = J^T r`` solved without damping.

    With ``sparse_h`` the evaluators fill a ``scipy.sparse.lil_matrix``, which
    is converted to CSC after each build and always factorized.
    """

    name = "gn"
    _STATE = SolverBase._STATE + ("H",)

    def __init__(self, options: Optional[SolverOptions] = None) -> None:
        super().__init__(options)
        self.H: Any = None
        opts = self.options
        if opts.sparse_h and not opts.use_ldlt and opts.log.enable:
            self.logger.warning("LDLT must be used with sparse matrices; ignoring use_ldlt=False")

    @property
    def is_sparse(self) -> bool:
        return self.options.sparse_h

    def _new_hessian(self, dims: int) -> Any:
        if self.is_sparse:
            return sparse.lil_matrix((dims, dims), dtype=float)
        return np.zeros((dims, dims), dtype=float)

    def _allocate(self, dims: int) -> None:
        super()._allocate(dims)
        self.H = self._new_hessian(dims)

    def _hessian_buffer(self) -> Any:
        return self.H

    def clear(self) -> None:
        super().clear()
        if self.is_sparse and self.grad is not None:
            self.H = self._new_hessian(self.dims)

    def init_with(self, grad: np.ndarray, H: Any) -> None:
        """Start from a given gradient and Hessian."""
        self.grad = np.array(grad, dtype=float)
        if self.is_sparse:
            self.H = sparse.csc_matrix(H, dtype=float)
        else:
            self.H = np.array(H.toarray() if sparse.issparse(H) else H, dtype=float)

    def _finish_build(self) -> bool:
        opts = self.options
        if opts.check_min_h_diag > 0 and np.any(np.abs(self.H.diagonal()) < opts.check_min_h_diag):
            if opts.log.enable:
                self.logger.warning("Hessian has very low diagonal coefficients")
            return False
        if self.is_sparse:
            H = sparse.csc_matrix(self.H)
            if not opts.h_is_full:
                H = sparse.triu(H) + sparse.triu(H, 1).T
            self.H = sparse.csc_matrix(H)
        elif not opts.h_is_full:
            self.H = np.triu(self.H) + np.triu(self.H, 1).T
        return True

    def hessian(self) -> Any:
        """Latest Hessian approximation, un-damped."""
        return self.H

    def damped_hessian(self) -> Any:
        return self.H

    def solve(self) -> Optional[np.ndarray]:
        if self.cost.num_residuals == 0 or self.H is None:
            return None
        H = self.damped_hessian()
        if self.is_sparse:
            dx = solve_sparse(H, self.grad)
            return None if dx is None else -dx
        if self.options.use_ldlt:
            dx = solve_ldlt(H, self.grad)
            return None if dx is None else -dx
        if H.shape[0] == 1:
            if H[0, 0] > FLOAT_EPS:
                return -self.grad / H[0, 0]
            return np.zeros_like(self.grad)
        try:
            return -np.linalg.inv(H) @ self.grad
        except np.linalg.LinAlgError:
            return None

    def inv_cov(self, use_damped: bool = True) -> Optional[np.ndarray]:
        """Inverse of the (damped) Hessian as a dense array, or None if it is singular."""
        H = self.damped_hessian() if use_damped else self.hessian()
        if H is None:
            return None
        if sparse.issparse(H):
            H = H.toarray()
        try:
            return np.linalg.inv(H)
        except np.linalg.LinAlgError:
            return None

    def max_std_dev(self, use_damped: bool = True) -> float:
        """Square root of the largest coefficient of the inverse Hessian."""
        cov = self.inv_cov(use_damped)
        if cov is None or cov.size == 0:
            return float("inf")
        return math.sqrt(max(float(np.max(cov)), 0.0))


__all__ = ["SolverGN", "is_pos_def", "solve_ldlt", "solve_sparse"]
