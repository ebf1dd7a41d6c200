"""dualopt - nonlinear least-squares optimization with forward-mode autodiff."""

__version__ = "0.1.0"

# Differentiation
from .accumulation import (
    Accumulator,
    AutoDiffAccumulator,
    EvaluatorKind,
    GradientAccumulator,
    ManualAccumulator,
    NumDiffAccumulator,
    detect_kind,
    make_accumulator,
    normalize_output,
)
from .autodiff import calculate_jacobian, seed_jets

# Options and results
from .core import (
    Cost,
    CostOptions,
    GDSolverOptions,
    LMSolverOptions,
    LogOptions,
    OptimizeResult,
    Options,
    SolverOptions,
    StopReason,
)
from .gradient_check import check_gradient, check_residuals_gradient
from .jet import Jet
from .logging import configure_logging, get_logger, set_log_level
from .num_diff import approx_grad, numerical_gradient, numerical_jacobian

# Driver
from .optimizer import Optimizer, optimize, optimize_gd, optimize_gn, optimize_lm

# Solvers
from .solvers import SolverBase, SolverGD, SolverGN, SolverLM, create_solver

# Parameter traits
from .traits import (
    DYNAMIC,
    ArrayTrait,
    MethodTrait,
    ParamTrait,
    ScalarTrait,
    params_trait,
    register_trait,
    unregister_trait,
)

__all__ = [
    "Accumulator",
    "ArrayTrait",
    "AutoDiffAccumulator",
    "Cost",
    "CostOptions",
    "DYNAMIC",
    "EvaluatorKind",
    "GDSolverOptions",
    "GradientAccumulator",
    "Jet",
    "LMSolverOptions",
    "LogOptions",
    "ManualAccumulator",
    "MethodTrait",
    "NumDiffAccumulator",
    "OptimizeResult",
    "Optimizer",
    "Options",
    "ParamTrait",
    "ScalarTrait",
    "SolverBase",
    "SolverGD",
    "SolverGN",
    "SolverLM",
    "SolverOptions",
    "StopReason",
    "__version__",
    "approx_grad",
    "calculate_jacobian",
    "check_gradient",
    "check_residuals_gradient",
    "configure_logging",
    "create_solver",
    "detect_kind",
    "get_logger",
    "make_accumulator",
    "normalize_output",
    "numerical_gradient",
    "numerical_jacobian",
    "optimize",
    "optimize_gd",
    "optimize_gn",
    "optimize_lm",
    "params_trait",
    "register_trait",
    "seed_jets",
    "set_log_level",
    "unregister_trait",
]
