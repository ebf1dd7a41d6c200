"""Core types shared by the solvers and the optimization driver."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

import numpy as np

Array = np.ndarray

FLOAT_EPS = float(np.finfo(float).eps)


class StopReason(Enum):
    """Reason why an optimization stopped."""

    MAX_ITERS = "max_iters"
    MIN_DELTA_NORM = "min_delta_norm"
    MIN_GRAD_NORM = "min_grad_norm"
    MIN_ERROR = "min_error"
    MAX_FAILS = "max_fails"
    MAX_CONSEC_FAILS = "max_consec_fails"
    TIMED_OUT = "timed_out"
    # Failures
    SKIPPED = "skipped"
    SYSTEM_HAS_NAN_OR_INF = "system_has_nan_or_inf"
    SOLVER_FAILED = "solver_failed"
    OUT_OF_MEMORY = "out_of_memory"

    @property
    def is_fatal(self) -> bool:
        return self in _FATAL_REASONS

    @property
    def is_converged(self) -> bool:
        return self in _CONVERGED_REASONS


_FATAL_REASONS = frozenset(
    {
        StopReason.SKIPPED,
        StopReason.SYSTEM_HAS_NAN_OR_INF,
        StopReason.SOLVER_FAILED,
        StopReason.OUT_OF_MEMORY,
    }
)

_CONVERGED_REASONS = frozenset(
    {StopReason.MIN_DELTA_NORM, StopReason.MIN_GRAD_NORM, StopReason.MIN_ERROR}
)


@dataclass
class Cost:
    """Accumulated cost of one evaluation and the number of residuals."""

    cost: float = 0.0
    num_residuals: int = 0


def split_count(output: Any) -> Tuple[Any, Optional[int]]:
    """Split a ``(value, count)`` pair returned by an evaluator.

    Only a 2-tuple whose second item is a plain integer counts as a pair;
    anything else is returned unchanged with a ``None`` count.
    """
    if (
        isinstance(output, tuple)
        and len(output) == 2
        and isinstance(output[1], (int, np.integer))
        and not isinstance(output[1], (bool, np.bool_))
    ):
        return output[0], int(output[1])
    return output, None


@dataclass
class CostOptions:
    """
    Normalization applied to the accumulated cost before it is compared.

    Args:
        use_squared_norm: Keep the accumulated value. If False, take its
            square root.
        downscale_by_2: Multiply the cost by 0.5.
        normalize: Divide the cost by the number of residuals.
    """

    use_squared_norm: bool = True
    downscale_by_2: bool = False
    normalize: bool = False


@dataclass
class LogOptions:
    """
    Logging switches.

    Args:
        enable: Emit per-iteration log records.
        print_x: Include the parameters in the iteration records.
        print_mean_x: Include the mean of the parameters instead.
        logger: Sink for the log records. Defaults to the package logger.
    """

    enable: bool = True
    print_x: bool = False
    print_mean_x: bool = False
    logger: Optional[logging.Logger] = None


@dataclass
class SolverOptions:
    """
    Options shared by all solvers.

    Args:
        use_ldlt: Solve the normal equations with an LDL^T factorization,
            otherwise invert H explicitly.
        h_is_full: Whether evaluators fill the whole H. If False only the upper
            triangle is expected and it is mirrored after each build.
        grad_clipping: Clamp every gradient coefficient to
            [-grad_clipping, grad_clipping]. Disabled when 0.
        check_min_h_diag: Fail the build when any |H_ii| is below this value.
            Disabled when 0.
        sparse_h: Keep H in a ``scipy.sparse`` matrix. Evaluators receive a
            ``lil_matrix`` to fill and the system is always factorized, so
            ``use_ldlt=False`` is ignored with a warning.
        cost: Cost normalization.
        log: Logging switches for the solver.
    """

    use_ldlt: bool = True
    h_is_full: bool = True
    grad_clipping: float = 0.0
    check_min_h_diag: float = 0.0
    sparse_h: bool = False
    cost: CostOptions = field(default_factory=CostOptions)
    log: LogOptions = field(default_factory=LogOptions)


@dataclass
class LMSolverOptions(SolverOptions):
    """
    Levenberg-Marquardt options.

    Args:
        damping_init: Initial damping factor lambda.
        damping_range: Bounds applied to lambda after every update.
        good_factor: Multiplier applied to lambda after an accepted step.
        bad_factor: Multiplier applied to lambda after a rejected step or a
            failed factorization.
    """

    damping_init: float = 1e-4
    damping_range: Tuple[float, float] = (1e-9, 1e9)
    good_factor: float = 1.0 / 3.0
    bad_factor: float = 2.0


@dataclass
class GDSolverOptions(SolverOptions):
    """Gradient descent options. The step is ``-lr * grad``."""

    lr: float = 1.0


@dataclass
class Options:
    """
    Optimization driver options.

    Thresholds set to 0 (or None for the duration) disable their stop test.

    Args:
        max_iters: Maximum number of iterations.
        min_delta_norm2: Stop when the squared step norm drops below it.
        min_grad_norm2: Stop when the squared gradient norm drops below it.
        min_error: Stop when the cost drops below it.
        max_duration_ms: Wall-clock budget, checked once per iteration.
        max_total_failures: Stop after that many rejected steps overall.
        max_consec_failures: Stop after that many consecutive rejected steps.
        export_h: Copy the last (damped) H into the result.
        use_autodiff: Differentiate cost and residual functions with jets.
            If False, central differences are used.
        num_diff_eps: Step of the central differences.
        skip_derivatives_on_evaluate: Pass None instead of scratch buffers
            when an accumulation function is only evaluated.
        log: Driver logging switches.
    """

    max_iters: int = 100
    min_delta_norm2: float = 0.0
    min_grad_norm2: float = 1e-12
    min_error: float = 0.0
    max_duration_ms: Optional[float] = None
    max_total_failures: int = 0
    max_consec_failures: int = 3
    export_h: bool = True
    use_autodiff: bool = True
    num_diff_eps: float = 1e-6
    skip_derivatives_on_evaluate: bool = True
    log: LogOptions = field(default_factory=LogOptions)


@dataclass
class OptimizeResult:
    """Result of one optimization run.

    ``errs``, ``deltas2`` and ``successes`` hold one entry per completed
    iteration: the cost evaluated for the tried step, the squared norm of the
    step and whether it was accepted.
    """

    x: Any = None
    stop_reason: StopReason = StopReason.MAX_ITERS
    num_iters: int = 0
    num_residuals: int = 0
    num_failures: int = 0
    num_consec_failures: int = 0
    start_err: float = float("inf")
    last_err: float = float("inf")
    last_h: Optional[Array] = None
    duration_ms: float = 0.0
    errs: List[float] = field(default_factory=list)
    deltas2: List[float] = field(default_factory=list)
    successes: List[bool] = field(default_factory=list)

    def succeeded(self) -> bool:
        """Return True unless the run stopped on a fatal condition."""
        return not self.stop_reason.is_fatal

    def converged(self) -> bool:
        """Return True if a convergence threshold was reached."""
        return self.stop_reason.is_converged

    def stop_reason_description(self, options: Optional[Options] = None) -> str:
        """Human readable description of the stop reason."""
        opts = options if options is not None else Options()
        reason = self.stop_reason
        if reason is StopReason.MAX_ITERS:
            return f"Reached maximum number of iterations ({opts.max_iters})"
        if reason is StopReason.MIN_DELTA_NORM:
            return f"Reached minimal step squared norm ({opts.min_delta_norm2:.2e})"
        if reason is StopReason.MIN_GRAD_NORM:
            return f"Reached minimal gradient squared norm ({opts.min_grad_norm2:.2e})"
        if reason is StopReason.MIN_ERROR:
            return f"Reached minimal error ({opts.min_error:.2e})"
        if reason is StopReason.MAX_FAILS:
            return f"Failed to decrease the error too many times ({self.num_failures})"
        if reason is StopReason.MAX_CONSEC_FAILS:
            return (
                "Failed to decrease the error consecutively too many times "
                f"({self.num_consec_failures})"
            )
        if reason is StopReason.TIMED_OUT:
            return f"Reached the time budget ({opts.max_duration_ms} ms)"
        if reason is StopReason.SKIPPED:
            return "Nothing to optimize: no parameters or no residuals"
        if reason is StopReason.SYSTEM_HAS_NAN_OR_INF:
            return "The cost, gradient or Hessian has NaN or Inf values"
        if reason is StopReason.SOLVER_FAILED:
            return "Failed to solve the normal equations"
        return "Failed to allocate the linear system"


__all__ = [
    "Array",
    "Cost",
    "CostOptions",
    "FLOAT_EPS",
    "GDSolverOptions",
    "LMSolverOptions",
    "LogOptions",
    "OptimizeResult",
    "Options",
    "SolverOptions",
    "StopReason",
    "split_count",
]
