#!/usr/bin/env python
"""Cross-validation utilities shared by the CV and grid search drivers.

This module provides fold assignment, held-out loss evaluation along a
penalty path, fold aggregation, the lambda selection rules, and the executor
helper that runs independent fits in parallel.

Key design decisions:
- Fold ids come from seeded KFold / StratifiedKFold so runs are reproducible
- Continuous targets are stratified by quantile bins, binary targets by class
- Fold losses are aggregated with fold-size weights
- Ties in the selection rules resolve toward the larger (more regularized) lambda
"""

from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Hashable, List, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error
from sklearn.model_selection import KFold, StratifiedKFold

from regpath.errors import DegenerateInputError, FoldImbalanceError

PROB_CLIP = 1e-5


def stratum_labels(
    y: np.ndarray,
    family: str = "gaussian",
    n_strata: int = 4,
) -> Tuple[np.ndarray, List[str]]:
    """Assign each observation to a stratum.

    Returns integer codes and a readable name per code. Continuous targets
    are cut at their quantiles (duplicate edges are merged); binary targets
    use the class label.
    """
    y = np.asarray(y).ravel()
    if family == "binomial":
        classes, codes = np.unique(y, return_inverse=True)
        return codes, [f"class={c:g}" for c in classes]

    binned = pd.qcut(y, q=n_strata, duplicates="drop")
    codes = np.asarray(binned.codes, dtype=int)
    names = [f"y in {interval}" for interval in binned.categories]
    return codes, names


def make_foldid(
    y: np.ndarray,
    nfolds: int = 10,
    *,
    seed: int = 42,
    stratify: bool = False,
    family: str = "gaussian",
    n_strata: int = 4,
) -> np.ndarray:
    """Assign every observation a fold id in ``0..nfolds-1``.

    Raises
    ------
    FoldImbalanceError
        If there are fewer observations than folds, or (when stratifying)
        a stratum has fewer observations than folds.
    """
    y = np.asarray(y).ravel()
    n_samples = len(y)
    if n_samples < nfolds:
        raise FoldImbalanceError(
            f"Only {n_samples} observations for nfolds={nfolds}"
        )

    foldid = np.full(n_samples, -1, dtype=int)
    placeholder = np.zeros((n_samples, 1))

    if stratify:
        codes, names = stratum_labels(y, family, n_strata)
        counts = np.bincount(codes, minlength=len(names))
        for code, count in enumerate(counts):
            if count < nfolds:
                raise FoldImbalanceError(
                    f"Stratum '{names[code]}' has {count} observation(s), "
                    f"fewer than nfolds={nfolds}"
                )
        splitter = StratifiedKFold(n_splits=nfolds, shuffle=True, random_state=seed)
        splits = splitter.split(placeholder, codes)
    else:
        splitter = KFold(n_splits=nfolds, shuffle=True, random_state=seed)
        splits = splitter.split(placeholder)

    for fold_idx, (_, val_idx) in enumerate(splits):
        foldid[val_idx] = fold_idx
    return foldid


def check_foldid(foldid: Sequence[int], n_samples: int) -> np.ndarray:
    """Validate a user-supplied fold assignment and relabel it to 0..k-1."""
    foldid = np.asarray(foldid).ravel()
    if foldid.shape[0] != n_samples:
        raise DegenerateInputError(
            f"foldid has {foldid.shape[0]} entries but there are {n_samples} observations"
        )
    _, codes = np.unique(foldid, return_inverse=True)
    if codes.max() + 1 < 2:
        raise FoldImbalanceError("foldid must contain at least 2 distinct folds")
    return codes.astype(int)


def create_cv_splits(foldid: np.ndarray) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Turn fold ids into ``(train_indices, val_indices)`` pairs."""
    splits: List[Tuple[np.ndarray, np.ndarray]] = []
    for fold_idx in range(int(foldid.max()) + 1):
        val_mask = foldid == fold_idx
        splits.append((np.flatnonzero(~val_mask), np.flatnonzero(val_mask)))
    return splits


def path_losses(
    y_true: np.ndarray,
    predictions: np.ndarray,
    measure: str = "mse",
    family: str = "gaussian",
) -> np.ndarray:
    """Held-out loss for every column of ``predictions`` (one per lambda).

    Parameters
    ----------
    y_true : np.ndarray
        Held-out targets, shape (n_val,).
    predictions : np.ndarray
        Predicted responses, shape (n_val, n_lambda). Probabilities for the
        binomial family.
    measure : str
        "mse", "mae" or "deviance".
    family : str
        "gaussian" or "binomial".

    Returns
    -------
    np.ndarray
        Loss per lambda, shape (n_lambda,).
    """
    y_true = np.asarray(y_true, dtype=float).ravel()
    predictions = np.asarray(predictions, dtype=float)
    if predictions.ndim == 1:
        predictions = predictions.reshape(-1, 1)
    y_mat = np.tile(y_true[:, None], (1, predictions.shape[1]))

    if measure == "mae":
        return np.asarray(mean_absolute_error(y_mat, predictions, multioutput="raw_values"))
    if measure == "deviance" and family == "binomial":
        prob = np.clip(predictions, PROB_CLIP, 1.0 - PROB_CLIP)
        loglik = y_mat * np.log(prob) + (1.0 - y_mat) * np.log(1.0 - prob)
        return -2.0 * loglik.mean(axis=0)
    # gaussian deviance is the mean squared error
    return np.asarray(mean_squared_error(y_mat, predictions, multioutput="raw_values"))


def aggregate_fold_losses(
    fold_losses: np.ndarray,
    fold_sizes: np.ndarray,
) -> Tuple[np.ndarray, np.ndarray]:
    """Weighted mean and standard error of per-fold losses.

    ``fold_losses`` has shape (n_folds, n_lambda). The standard error is
    ``sqrt(weighted variance / (n_folds - 1))`` with fold sizes as weights.
    """
    fold_losses = np.asarray(fold_losses, dtype=float)
    weights = np.asarray(fold_sizes, dtype=float)
    n_folds = fold_losses.shape[0]

    cv_mean = np.average(fold_losses, axis=0, weights=weights)
    variance = np.average((fold_losses - cv_mean) ** 2, axis=0, weights=weights)
    cv_se = np.sqrt(variance / max(n_folds - 1, 1))
    return cv_mean, cv_se


def select_lambda_indices(
    lambdas: np.ndarray,
    cv_mean: np.ndarray,
    cv_se: np.ndarray,
) -> Tuple[int, int]:
    """Apply the minimum and one-standard-error rules.

    Returns ``(index_min, index_1se)``. Among lambdas attaining the minimum
    mean loss the largest one is chosen; ``index_1se`` is the largest lambda
    whose mean loss is within one standard error of that minimum, so
    ``lambdas[index_1se] >= lambdas[index_min]``.
    """
    lambdas = np.asarray(lambdas, dtype=float)
    cv_mean = np.asarray(cv_mean, dtype=float)

    best = np.nanmin(cv_mean)
    tied = np.flatnonzero(cv_mean <= best)
    index_min = int(tied[np.argmax(lambdas[tied])])

    threshold = cv_mean[index_min] + cv_se[index_min]
    within = np.flatnonzero(cv_mean <= threshold)
    index_1se = int(within[np.argmax(lambdas[within])])
    return index_min, index_1se


def run_cells(
    func: Callable[..., Any],
    cells: Sequence[Tuple[Hashable, Tuple[Any, ...]]],
    *,
    n_jobs: int = 1,
    backend: str = "thread",
) -> Dict[Hashable, Any]:
    """Run independent ``func(*args)`` calls and collect results by key.

    Completion order does not matter; callers aggregate by key. When a cell
    raises, the pending cells are cancelled and the error re-raised.
    """
    results: Dict[Hashable, Any] = {}
    if n_jobs <= 1 or len(cells) <= 1:
        for key, args in cells:
            results[key] = func(*args)
        return results

    executor_cls = ProcessPoolExecutor if backend == "process" else ThreadPoolExecutor
    with executor_cls(max_workers=n_jobs) as executor:
        future_map = {executor.submit(func, *args): key for key, args in cells}
        for future in as_completed(future_map):
            key = future_map[future]
            try:
                results[key] = future.result()
            except Exception:
                # cancel remaining futures before re-raising
                for pending in future_map:
                    if pending is not future:
                        pending.cancel()
                raise
    return results
