#!/usr/bin/env python
"""Grid search over the mixing parameter alpha.

Every alpha gets its own full-data lambda path; all folds share one fold
assignment. The (alpha, fold) product is a set of independent fits that can
run in parallel. Results are aggregated in alpha order, then lambda order,
whatever order the cells finish in.

Key features:
- "min" or "1se" selection of the final (alpha, lambda)
- Final path refit on the full data at the selected alpha
- Optional wall-clock budget checked between cells and between path steps
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from regpath.config import FitConfig
from regpath.cross_validation import (
    CVResult,
    _fold_cell,
    derive_lambdas,
    prepare_folds,
    summarize_folds,
)
from regpath.cv_utils import run_cells
from regpath.design import as_design_matrix, as_target
from regpath.errors import SearchCancelledError
from regpath.solver import PathResult, fit_path


@dataclass(frozen=True, eq=False)
class GridSearchResult:
    """Outcome of the alpha x lambda search."""

    best_alpha: float
    best_lambda: float
    selection: str
    measure: str
    path: PathResult
    cv_results: Tuple[CVResult, ...]
    truncated: bool = False
    elapsed_sec: float = 0.0

    @property
    def best_cv(self) -> CVResult:
        """CV result of the selected alpha."""
        for result in self.cv_results:
            if result.alpha == self.best_alpha:
                return result
        raise KeyError(self.best_alpha)

    @property
    def alphas(self) -> List[float]:
        return [result.alpha for result in self.cv_results]

    def cv_table(self) -> pd.DataFrame:
        """Long table (alpha, lambda, cv_mean, cv_se, ...) over the whole grid."""
        frames = [result.to_frame() for result in self.cv_results]
        return pd.concat(frames, ignore_index=True)

    def best_coef(self) -> pd.Series:
        """Full-data coefficients at the selected lambda (intercept first)."""
        intercept, _ = self.path.coef_at(self.best_lambda)
        coef = self.path.coef_series(self.best_lambda)
        return pd.concat([pd.Series({"(Intercept)": intercept}), coef])

    def predict(self, X: Any, kind: str = "response") -> np.ndarray:
        """Predictions of the refit model at the selected lambda."""
        return self.path.predict(X, lam=self.best_lambda, kind=kind)


def _select(cv_results: Sequence[CVResult], selection: str) -> Tuple[CVResult, float]:
    """Pick the alpha with the lowest minimum loss (earliest alpha on ties)."""
    best = cv_results[0]
    for result in cv_results[1:]:
        if result.best_loss < best.best_loss:
            best = result
    return best, best.lambda_for(selection)


def grid_search(
    X: Any,
    y: Any,
    config: FitConfig | None = None,
    *,
    alphas: Optional[Sequence[float]] = None,
    foldid: Optional[Sequence[int]] = None,
    feature_names: Optional[Sequence[str]] = None,
) -> GridSearchResult:
    """Cross-validate every alpha in the grid and refit the best pair.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)
        Pre-encoded numeric design matrix.
    y : array-like of shape (n_samples,)
        Target vector.
    config : FitConfig, optional
        Options; ``alphas``, ``selection``, ``n_jobs``, ``backend`` and
        ``time_budget`` drive the search.
    alphas : sequence of float, optional
        Overrides ``config.alphas``.
    foldid : sequence of int, optional
        Explicit fold assignment shared by all alphas.
    feature_names : sequence of str, optional
        Column names for reporting.

    Returns
    -------
    GridSearchResult

    Raises
    ------
    SearchCancelledError
        If ``time_budget`` ran out before any alpha finished all its folds.
    """
    start = time.monotonic()
    if config is None:
        config = FitConfig()
    config = config.replace(alphas=alphas).validate()
    deadline = start + config.time_budget if config.time_budget is not None else None

    X_arr, names = as_design_matrix(X, feature_names)
    y_arr = as_target(y, X_arr.shape[0], config.family)
    folds, splits = prepare_folds(y_arr, config, foldid)

    grid_alphas = list(dict.fromkeys(float(a) for a in config.alphas))
    lambda_paths: Dict[float, np.ndarray] = {
        alpha: derive_lambdas(X_arr, y_arr, alpha, config) for alpha in grid_alphas
    }

    if config.verbose:
        print(
            f"[grid] {len(grid_alphas)} alphas x {len(splits)} folds "
            f"({len(grid_alphas) * len(splits)} cells, n_jobs={config.n_jobs}, backend={config.backend})"
        )

    cells = [
        (
            (alpha_idx, fold_idx),
            (X_arr, y_arr, train_idx, val_idx, lambda_paths[alpha], alpha, config, names, deadline),
        )
        for alpha_idx, alpha in enumerate(grid_alphas)
        for fold_idx, (train_idx, val_idx) in enumerate(splits)
    ]
    results = run_cells(_fold_cell, cells, n_jobs=config.n_jobs, backend=config.backend)

    cv_results: List[CVResult] = []
    truncated = False
    for alpha_idx, alpha in enumerate(grid_alphas):
        fold_losses = [results[(alpha_idx, fold_idx)] for fold_idx in range(len(splits))]
        if any(losses is None for losses in fold_losses):
            truncated = True
            print(f"[warn][grid] alpha={alpha:g} dropped: time budget exhausted")
            continue
        cv_result = summarize_folds(
            alpha, lambda_paths[alpha], np.vstack(fold_losses), folds, config.loss_measure
        )
        cv_results.append(cv_result)
        if config.verbose:
            print(
                f"[grid] alpha={alpha:g} | lambda_min={cv_result.lambda_min:.6g} | "
                f"lambda_1se={cv_result.lambda_1se:.6g} | best {config.loss_measure}={cv_result.best_loss:.6g}"
            )

    if not cv_results:
        raise SearchCancelledError(
            f"time budget of {config.time_budget}s exhausted before any alpha completed"
        )

    best_cv, best_lambda = _select(cv_results, config.selection)
    best_path = fit_path(
        X_arr, y_arr, config,
        alpha=best_cv.alpha,
        lambda_path=best_cv.lambdas,
        feature_names=names,
    )
    elapsed = time.monotonic() - start

    if config.verbose:
        print(
            f"[grid] selected alpha={best_cv.alpha:g}, lambda={best_lambda:.6g} "
            f"(rule={config.selection}) in {elapsed:.2f}s"
        )

    return GridSearchResult(
        best_alpha=best_cv.alpha,
        best_lambda=best_lambda,
        selection=config.selection,
        measure=config.loss_measure,
        path=best_path,
        cv_results=tuple(cv_results),
        truncated=truncated,
        elapsed_sec=elapsed,
    )
