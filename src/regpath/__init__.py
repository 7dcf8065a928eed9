"""Regularized linear regression paths (ridge, lasso, elastic net).

This package provides a coordinate descent path solver, a k-fold
cross-validation driver with min / one-standard-error lambda selection,
and a grid search over the elastic net mixing parameter.
"""

from regpath.config import FitConfig, load_config
from regpath.cross_validation import CVResult, cross_validate
from regpath.design import encode_frame, find_constant_columns
from regpath.errors import (
    DegenerateInputError,
    FoldImbalanceError,
    InvalidHyperparameterError,
    NonConvergenceWarning,
    RegPathError,
    SearchCancelledError,
)
from regpath.grid_search import GridSearchResult, grid_search
from regpath.solver import PathResult, compute_lambda_path, fit_path, soft_threshold

__version__ = "0.1.0"

__all__ = [
    # config
    "FitConfig",
    "load_config",
    # solver
    "PathResult",
    "fit_path",
    "compute_lambda_path",
    "soft_threshold",
    # cross-validation
    "CVResult",
    "cross_validate",
    # grid search
    "GridSearchResult",
    "grid_search",
    # design
    "encode_frame",
    "find_constant_columns",
    # errors
    "RegPathError",
    "InvalidHyperparameterError",
    "DegenerateInputError",
    "FoldImbalanceError",
    "SearchCancelledError",
    "NonConvergenceWarning",
]
