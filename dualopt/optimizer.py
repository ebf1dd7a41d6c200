"""Optimization driver: the iterate, evaluate, accept or roll back loop.

Example
-------
>>> import numpy as np
>>> from dualopt import optimize_lm
>>> res = optimize_lm(np.array([1.0]), lambda x: x - 2.0)
>>> res.converged()
True
"""

from __future__ import annotations

import math
import time
from typing import Any, Callable, Optional, Union

import numpy as np
from scipy import sparse

from .accumulation import EvaluatorKind, make_accumulator
from .core import (
    GDSolverOptions,
    LMSolverOptions,
    OptimizeResult,
    Options,
    SolverOptions,
    StopReason,
)
from .logging import get_logger
from .solvers import SolverBase, SolverLM, create_solver
from .traits import ParamTrait, params_trait

_logger = get_logger(__name__)

# Consecutive solver failures tolerated when max_consec_failures is disabled
_DEFAULT_SOLVER_FAILURE_BUDGET = 255


class Optimizer:
    """Drive a solver until a stop condition is met.

    Each iteration solves for a step, applies it to a copy of the parameters
    and builds the system at the trial point. The step is accepted on a
    strict decrease of the cost; otherwise the previous parameters and the
    previous system are restored, so a rejected step leaves no trace.

    The parameters passed by the caller are updated with the best value found
    (in place for arrays and user objects), which is also returned as
    ``OptimizeResult.x``.
    """

    def __init__(
        self,
        solver: Union[SolverBase, str, None] = None,
        options: Optional[Options] = None,
    ) -> None:
        if solver is None:
            solver = SolverLM()
        elif isinstance(solver, str):
            solver = create_solver(solver)
        self.solver = solver
        self.options = options if options is not None else Options()
        if self.options.max_iters < 0:
            raise ValueError("max_iters must be non-negative")
        if self.options.num_diff_eps <= 0:
            raise ValueError("num_diff_eps must be positive")

    @property
    def logger(self):
        return self.options.log.logger or _logger

    def __call__(
        self, x: Any, func: Callable, kind: Union[EvaluatorKind, str, None] = None
    ) -> OptimizeResult:
        return self.optimize(x, func, kind=kind)

    def _accumulator(self, func: Callable, kind: Any, trait: ParamTrait):
        opts = self.options
        return make_accumulator(
            func,
            kind=kind,
            first_order=self.solver.FIRST_ORDER,
            use_autodiff=opts.use_autodiff,
            eps=opts.num_diff_eps,
            trait=trait,
        )

    def evaluate(
        self, x: Any, func: Callable, kind: Union[EvaluatorKind, str, None] = None
    ) -> float:
        """Normalized cost of ``func`` at ``x``, without changing the solver state.

        Derivatives are skipped unless ``options.skip_derivatives_on_evaluate``
        is False, in which case they are computed into scratch buffers.
        """
        trait = params_trait(x)
        acc = self._accumulator(func, kind, trait)
        skip = self.options.skip_derivatives_on_evaluate
        if not skip:
            self.solver.resize_if_needed(x, trait)
        return self.solver.evaluate(x, acc, skip_derivatives=skip)

    def _describe_x(self, x: Any, trait: ParamTrait) -> str:
        log = self.options.log
        if log.print_x:
            return f" x:{trait.to_string(x)}"
        if log.print_mean_x and isinstance(x, (np.ndarray, float, int, np.number)):
            return f" ⟨x⟩:{float(np.mean(x)):.4g}"
        return ""

    def _log_iteration(
        self,
        it: int,
        accepted: bool,
        delta2: float,
        err: float,
        prev_err: float,
        x: Any,
        trait: ParamTrait,
    ) -> None:
        if not self.options.log.enable:
            return
        solver = self.solver
        status = "accepted" if accepted else "rejected"
        state = solver.state_as_string()
        self.logger.info(
            "#%d %s |δx|:%.2e ε:%.5e n:%d dε:%.3e |∇|²:%.2e%s%s",
            it,
            status,
            math.sqrt(delta2),
            err,
            solver.cost.num_residuals,
            err - prev_err,
            solver.gradient_squared_norm(),
            self._describe_x(x, trait),
            f" {state}" if state else "",
        )

    def _finish(
        self,
        out: OptimizeResult,
        stop: StopReason,
        x0: Any,
        x: Any,
        trait: ParamTrait,
        start: float,
        built_system: bool = True,
    ) -> OptimizeResult:
        out.stop_reason = stop
        out.x = trait.assign(x0, x)
        out.num_iters = len(out.errs)
        if self.options.export_h and built_system:
            H = self.solver.damped_hessian()
            if H is not None:
                out.last_h = H.copy() if sparse.issparse(H) else np.array(H, copy=True)
        out.duration_ms = (time.perf_counter() - start) * 1e3
        if self.options.log.enable:
            level = "warning" if stop.is_fatal else "info"
            getattr(self.logger, level)(
                "%s: %s after %d iterations",
                stop.name,
                out.stop_reason_description(self.options),
                out.num_iters,
            )
        return out

    def optimize(
        self, x0: Any, func: Callable, kind: Union[EvaluatorKind, str, None] = None
    ) -> OptimizeResult:
        """Minimize the cost of ``func`` starting from ``x0``.

        Parameters
        ----------
        x0:
            Initial parameters. Updated with the best value found.
        func:
            Residual function ``f(x)``, accumulation function
            ``f(x, grad, H)``, or for first-order solvers a cost function
            ``f(x)`` or gradient accumulation function ``f(x, grad)``.
        kind:
            Evaluator kind; detected from the signature of ``func`` when None.
        """
        opts = self.options
        solver = self.solver
        start = time.perf_counter()
        trait = params_trait(x0)
        acc = self._accumulator(func, kind, trait)
        out = OptimizeResult()
        x = trait.copy(x0)

        if trait.dims(x) == 0:
            if opts.log.enable:
                self.logger.warning("Nothing to optimize: the parameters are empty")
            return self._finish(out, StopReason.SKIPPED, x0, x, trait, start, built_system=False)

        try:
            solver.resize_if_needed(x, trait)
        except MemoryError:
            self.logger.error("Failed to allocate a system of dimension %d", trait.dims(x))
            return self._finish(
                out, StopReason.OUT_OF_MEMORY, x0, x, trait, start, built_system=False
            )
        solver.reset()

        built = solver.build(x, acc)
        out.num_residuals = solver.cost.num_residuals
        out.start_err = out.last_err = solver.err
        if not built:
            if opts.log.enable:
                self.logger.warning("Failed to build the system at the initial parameters")
            return self._finish(out, StopReason.SKIPPED, x0, x, trait, start)
        if not solver.is_finite():
            return self._finish(out, StopReason.SYSTEM_HAS_NAN_OR_INF, x0, x, trait, start)
        if opts.min_grad_norm2 > 0 and solver.gradient_squared_norm() < opts.min_grad_norm2:
            return self._finish(out, StopReason.MIN_GRAD_NORM, x0, x, trait, start)

        solver_failure_budget = (
            opts.max_consec_failures if opts.max_consec_failures > 0 else _DEFAULT_SOLVER_FAILURE_BUDGET
        )
        stop = StopReason.MAX_ITERS
        for it in range(opts.max_iters):
            prev_err = solver.err
            dx = solver.solve()

            if dx is None:
                if opts.log.enable:
                    self.logger.warning("#%d Failed to solve the linear system", it)
                if not solver.RETRY_ON_SOLVER_FAILURE:
                    stop = StopReason.SOLVER_FAILED
                    break
                solver.failed_step()
                out.num_failures += 1
                out.num_consec_failures += 1
                out.errs.append(prev_err)
                out.deltas2.append(0.0)
                out.successes.append(False)
                if out.num_consec_failures >= solver_failure_budget:
                    stop = StopReason.SOLVER_FAILED
                    break
                delta2 = None
            else:
                if not np.all(np.isfinite(dx)):
                    stop = StopReason.SYSTEM_HAS_NAN_OR_INF
                    break
                delta2 = float(dx @ dx)
                x_trial = trait.plus_eq(trait.copy(x), dx)
                built = solver.build(x_trial, acc)
                new_err = solver.err

                if built and not solver.is_finite():
                    solver.rollback()
                    out.errs.append(new_err)
                    out.deltas2.append(delta2)
                    out.successes.append(False)
                    stop = StopReason.SYSTEM_HAS_NAN_OR_INF
                    break

                accepted = built and new_err < prev_err
                if accepted:
                    x = x_trial
                    out.last_err = new_err
                    out.num_residuals = solver.cost.num_residuals
                    out.num_consec_failures = 0
                    solver.good_step()
                else:
                    solver.rollback()
                    solver.bad_step()
                    out.num_failures += 1
                    out.num_consec_failures += 1
                out.errs.append(new_err)
                out.deltas2.append(delta2)
                out.successes.append(accepted)
                self._log_iteration(it, accepted, delta2, new_err, prev_err, x, trait)

            elapsed_ms = (time.perf_counter() - start) * 1e3
            if opts.max_duration_ms is not None and elapsed_ms > opts.max_duration_ms:
                stop = StopReason.TIMED_OUT
                break
            if opts.max_consec_failures > 0 and out.num_consec_failures >= opts.max_consec_failures:
                stop = StopReason.MAX_CONSEC_FAILS
                break
            if opts.max_total_failures > 0 and out.num_failures >= opts.max_total_failures:
                stop = StopReason.MAX_FAILS
                break
            if delta2 is None:
                continue
            if opts.min_delta_norm2 > 0 and delta2 < opts.min_delta_norm2:
                stop = StopReason.MIN_DELTA_NORM
                break
            if opts.min_grad_norm2 > 0 and solver.gradient_squared_norm() < opts.min_grad_norm2:
                stop = StopReason.MIN_GRAD_NORM
                break
            if opts.min_error > 0 and solver.err < opts.min_error:
                stop = StopReason.MIN_ERROR
                break

        return self._finish(out, stop, x0, x, trait, start)


def optimize(
    x: Any,
    func: Callable,
    options: Optional[Options] = None,
    solver: Union[SolverBase, str] = "lm",
    solver_options: Optional[SolverOptions] = None,
    kind: Union[EvaluatorKind, str, None] = None,
) -> OptimizeResult:
    """Minimize ``func`` from ``x`` with the named solver ("lm", "gn" or "gd")."""
    if isinstance(solver, str):
        solver = create_solver(solver, solver_options)
    return Optimizer(solver, options)(x, func, kind=kind)


def optimize_lm(
    x: Any,
    func: Callable,
    options: Optional[Options] = None,
    solver_options: Optional[LMSolverOptions] = None,
    kind: Union[EvaluatorKind, str, None] = None,
) -> OptimizeResult:
    """Levenberg-Marquardt minimization of ``func`` from ``x``."""
    return optimize(x, func, options, "lm", solver_options, kind)


def optimize_gn(
    x: Any,
    func: Callable,
    options: Optional[Options] = None,
    solver_options: Optional[SolverOptions] = None,
    kind: Union[EvaluatorKind, str, None] = None,
) -> OptimizeResult:
    """Gauss-Newton minimization of ``func`` from ``x``.

    Without damping a rejected step would be tried again unchanged, so the
    default options stop at the first failure.
    """
    if options is None:
        options = Options(max_total_failures=1, max_consec_failures=1)
    return optimize(x, func, options, "gn", solver_options, kind)


def optimize_gd(
    x: Any,
    func: Callable,
    options: Optional[Options] = None,
    solver_options: Optional[GDSolverOptions] = None,
    kind: Union[EvaluatorKind, str, None] = None,
) -> OptimizeResult:
    """Gradient descent minimization of a cost, residual or accumulation function."""
    return optimize(x, func, options, "gd", solver_options, kind)


__all__ = ["Optimizer", "optimize", "optimize_gd", "optimize_gn", "optimize_lm"]
