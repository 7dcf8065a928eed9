#!/usr/bin/env python
"""k-fold cross-validation of an elastic net path for one alpha.

The lambda path is derived once on the full data and shared by every fold.
Each fold is fit on the remaining folds and scored on itself across the whole
path; the fold losses are then aggregated and ``lambda_min`` /
``lambda_1se`` selected.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from regpath.config import FitConfig
from regpath.cv_utils import (
    aggregate_fold_losses,
    check_foldid,
    create_cv_splits,
    make_foldid,
    path_losses,
    run_cells,
    select_lambda_indices,
)
from regpath.design import as_design_matrix, as_target, standardize
from regpath.errors import SearchCancelledError
from regpath.solver import (
    PathResult,
    _lambda_path_from_standardized,
    _normalize_path,
    fit_path,
    fit_standardized_subset,
)


@dataclass(frozen=True, eq=False)
class CVResult:
    """Cross-validated loss along a penalty path for one alpha."""

    alpha: float
    lambdas: np.ndarray
    cv_mean: np.ndarray
    cv_se: np.ndarray
    fold_losses: np.ndarray
    foldid: np.ndarray
    measure: str
    index_min: int
    index_1se: int
    path: Optional[PathResult] = None

    @property
    def lambda_min(self) -> float:
        return float(self.lambdas[self.index_min])

    @property
    def lambda_1se(self) -> float:
        return float(self.lambdas[self.index_1se])

    @property
    def best_loss(self) -> float:
        return float(self.cv_mean[self.index_min])

    @property
    def n_folds(self) -> int:
        return int(self.fold_losses.shape[0])

    def lambda_for(self, selection: str = "min") -> float:
        """Selected lambda under the "min" or "1se" rule."""
        if selection == "1se":
            return self.lambda_1se
        if selection == "min":
            return self.lambda_min
        raise ValueError(f"Invalid selection: {selection}. Use 'min' or '1se'.")

    def to_frame(self) -> pd.DataFrame:
        """One row per lambda with mean loss, SE band and (if known) non-zeros."""
        frame = pd.DataFrame(
            {
                "alpha": self.alpha,
                "lambda": self.lambdas,
                "cv_mean": self.cv_mean,
                "cv_se": self.cv_se,
                "cv_lower": self.cv_mean - self.cv_se,
                "cv_upper": self.cv_mean + self.cv_se,
            }
        )
        if self.path is not None:
            frame["nonzero"] = self.path.nonzero_counts()
        return frame


def _fold_cell(
    X: np.ndarray,
    y: np.ndarray,
    train_idx: np.ndarray,
    val_idx: np.ndarray,
    lambdas: np.ndarray,
    alpha: float,
    config: FitConfig,
    feature_names: Sequence[str],
    deadline: Optional[float],
) -> Optional[np.ndarray]:
    """Fit one training fold and return held-out loss per lambda.

    Returns None when the time budget ran out before or during the fit.
    """
    try:
        if deadline is not None and time.monotonic() > deadline:
            raise SearchCancelledError("time budget exhausted")
        fold_path = fit_standardized_subset(
            X[train_idx], y[train_idx], lambdas, alpha, config, feature_names,
            deadline=deadline,
        )
    except SearchCancelledError:
        return None
    preds = fold_path.predict(X[val_idx])
    return path_losses(y[val_idx], preds, config.loss_measure, config.family)


def summarize_folds(
    alpha: float,
    lambdas: np.ndarray,
    fold_losses: np.ndarray,
    foldid: np.ndarray,
    measure: str,
    path: Optional[PathResult] = None,
) -> CVResult:
    """Aggregate per-fold losses into a :class:`CVResult`."""
    fold_sizes = np.bincount(foldid, minlength=fold_losses.shape[0])
    cv_mean, cv_se = aggregate_fold_losses(fold_losses, fold_sizes)
    index_min, index_1se = select_lambda_indices(lambdas, cv_mean, cv_se)
    return CVResult(
        alpha=float(alpha),
        lambdas=lambdas,
        cv_mean=cv_mean,
        cv_se=cv_se,
        fold_losses=np.asarray(fold_losses, dtype=float),
        foldid=foldid,
        measure=measure,
        index_min=index_min,
        index_1se=index_1se,
        path=path,
    )


def prepare_folds(
    y: np.ndarray,
    config: FitConfig,
    foldid: Optional[Sequence[int]] = None,
) -> Tuple[np.ndarray, List[Tuple[np.ndarray, np.ndarray]]]:
    """Return validated fold ids and their train/validation splits."""
    if foldid is None:
        folds = make_foldid(
            y,
            config.nfolds,
            seed=config.seed,
            stratify=config.stratify,
            family=config.family,
            n_strata=config.n_strata,
        )
    else:
        folds = check_foldid(foldid, len(y))
    return folds, create_cv_splits(folds)


def derive_lambdas(
    X: np.ndarray,
    y: np.ndarray,
    alpha: float,
    config: FitConfig,
) -> np.ndarray:
    """Penalty path for ``alpha`` on the full data (or the configured path)."""
    if config.lambda_path is not None:
        return _normalize_path(config.lambda_path)
    std = standardize(
        X, y,
        standardize=config.standardize,
        fit_intercept=config.fit_intercept,
        center_y=config.family == "gaussian",
    )
    return _lambda_path_from_standardized(
        std.Xs, y, alpha,
        n_lambda=config.n_lambda,
        lambda_min_ratio=config.lambda_min_ratio,
        family=config.family,
        fit_intercept=config.fit_intercept,
    )


def cross_validate(
    X: Any,
    y: Any,
    config: FitConfig | None = None,
    *,
    alpha: Optional[float] = None,
    foldid: Optional[Sequence[int]] = None,
    feature_names: Optional[Sequence[str]] = None,
) -> CVResult:
    """Cross-validate the elastic net path for a single alpha.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)
        Pre-encoded numeric design matrix.
    y : array-like of shape (n_samples,)
        Target vector.
    config : FitConfig, optional
        Options (``nfolds``, ``measure``, ``seed``, ``stratify``, ...).
    alpha : float, optional
        Overrides ``config.alpha``.
    foldid : sequence of int, optional
        Explicit fold assignment; overrides the seeded shuffling.
    feature_names : sequence of str, optional
        Column names for reporting.

    Returns
    -------
    CVResult
        Mean/SE loss per lambda, ``lambda_min``, ``lambda_1se`` and the path
        refit on the full data.

    Raises
    ------
    SearchCancelledError
        If ``time_budget`` ran out before every fold finished.
    """
    start = time.monotonic()
    if config is None:
        config = FitConfig()
    config = config.replace(alpha=alpha).validate()
    deadline = start + config.time_budget if config.time_budget is not None else None

    X_arr, names = as_design_matrix(X, feature_names)
    y_arr = as_target(y, X_arr.shape[0], config.family)
    folds, splits = prepare_folds(y_arr, config, foldid)
    lambdas = derive_lambdas(X_arr, y_arr, config.alpha, config)

    if config.verbose:
        print(
            f"[cv] {len(splits)}-fold CV over {len(lambdas)} lambdas "
            f"(alpha={config.alpha:g}, measure={config.loss_measure})"
        )

    cells = [
        (fold_idx, (X_arr, y_arr, train_idx, val_idx, lambdas, config.alpha, config, names, deadline))
        for fold_idx, (train_idx, val_idx) in enumerate(splits)
    ]
    results = run_cells(_fold_cell, cells, n_jobs=config.n_jobs, backend=config.backend)
    if any(results[fold_idx] is None for fold_idx in range(len(splits))):
        raise SearchCancelledError(
            f"time budget of {config.time_budget}s exhausted before all folds completed"
        )
    fold_losses = np.vstack([results[fold_idx] for fold_idx in range(len(splits))])

    full_path = fit_path(X_arr, y_arr, config, lambda_path=lambdas, feature_names=names)
    result = summarize_folds(config.alpha, lambdas, fold_losses, folds, config.loss_measure, full_path)

    if config.verbose:
        print(
            f"[cv] done. lambda_min={result.lambda_min:.6g}, "
            f"lambda_1se={result.lambda_1se:.6g}, best mean {config.loss_measure}={result.best_loss:.6g}"
        )
    return result
