#!/usr/bin/env python
"""Elastic net path solver (cyclical coordinate descent).

For a fixed mixing parameter ``alpha`` this module computes one coefficient
vector per penalty in a descending lambda path, minimizing

    (1/2n) * ||y - b0 - X beta||^2
        + lambda * (alpha * ||beta||_1 + (1 - alpha) / 2 * ||beta||_2^2)

for the gaussian family, and the penalized negative log-likelihood for the
binomial family (IRLS outer loop around the same coordinate descent).

Key design decisions:
- Features are centered/scaled internally; results are reported on the
  original scale together with an unpenalized intercept
- Each lambda is warm-started from the previous solution
- Coordinate descent alternates a full pass with passes over the active set
  until a full pass changes nothing beyond the tolerance
- Convergence is relative: max_j xx_j * dbeta_j^2 < tol * null_deviance
"""

from __future__ import annotations

import math
import time
import warnings
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from regpath.config import FitConfig
from regpath.design import Standardization, as_design_matrix, as_target, standardize
from regpath.errors import NonConvergenceWarning, SearchCancelledError

# Floor applied to alpha when deriving lambda_max, so pure ridge still gets a finite path.
ALPHA_FLOOR = 1e-3
# Probabilities are clipped away from 0/1 in the IRLS weights.
PROB_EPS = 1e-5
# Maximum number of IRLS (Newton) steps per lambda.
MAX_NEWTON_STEPS = 25
# Relative slack on the all-zero KKT check, so lambda_max * alpha round-off still yields zeros.
ZERO_RTOL = 1e-10


def expit(x: Any) -> Any:
    """Logistic sigmoid, written with tanh so large |x| cannot overflow."""
    return 0.5 * (1.0 + np.tanh(0.5 * np.asarray(x, dtype=float)))


def soft_threshold(z: Any, gamma: float) -> Any:
    """Soft-threshold operator ``sign(z) * max(|z| - gamma, 0)``."""
    return np.sign(z) * np.maximum(np.abs(z) - gamma, 0.0)


@dataclass(frozen=True, eq=False)
class PathResult:
    """Coefficient matrix along a penalty path for one alpha.

    ``coef`` has shape (n_lambda, n_features) on the original feature scale;
    ``intercept`` has shape (n_lambda,).
    """

    lambdas: np.ndarray
    alpha: float
    coef: np.ndarray
    intercept: np.ndarray
    n_iter: np.ndarray
    converged: np.ndarray
    feature_names: Tuple[str, ...]
    family: str = "gaussian"

    @property
    def n_lambda(self) -> int:
        return int(self.lambdas.shape[0])

    def nonzero_counts(self) -> np.ndarray:
        """Number of non-zero coefficients per lambda."""
        return np.count_nonzero(self.coef, axis=1)

    def l1_norms(self) -> np.ndarray:
        return np.abs(self.coef).sum(axis=1)

    def l2_norms(self) -> np.ndarray:
        return np.sqrt((self.coef ** 2).sum(axis=1))

    def lambda_index(self, lam: float) -> int:
        """Index of the path entry closest to ``lam``."""
        return int(np.argmin(np.abs(self.lambdas - lam)))

    def coef_at(self, lam: float) -> Tuple[float, np.ndarray]:
        """Return ``(intercept, coef)`` at ``lam``.

        Values between two path points are linearly interpolated in lambda;
        values outside the path are clamped to its ends.
        """
        lambdas = self.lambdas
        exact = np.flatnonzero(np.isclose(lambdas, lam, rtol=1e-12, atol=0.0))
        if exact.size:
            i = int(exact[0])
            return float(self.intercept[i]), self.coef[i].copy()
        if lam >= lambdas[0]:
            return float(self.intercept[0]), self.coef[0].copy()
        if lam <= lambdas[-1]:
            return float(self.intercept[-1]), self.coef[-1].copy()

        # lambdas are descending: find i with lambdas[i] > lam > lambdas[i + 1]
        i = int(np.flatnonzero(lambdas > lam)[-1])
        left, right = lambdas[i], lambdas[i + 1]
        frac = (lam - right) / (left - right)
        coef = frac * self.coef[i] + (1.0 - frac) * self.coef[i + 1]
        intercept = frac * self.intercept[i] + (1.0 - frac) * self.intercept[i + 1]
        return float(intercept), coef

    def predict(self, X: Any, lam: Optional[float] = None, kind: str = "response") -> np.ndarray:
        """Predict for new rows.

        Returns shape (n_samples, n_lambda) when ``lam`` is None, otherwise
        (n_samples,). For the binomial family ``kind="response"`` gives
        probabilities and ``kind="link"`` the linear predictor.
        """
        if kind not in ("response", "link"):
            raise ValueError(f"Invalid kind: {kind}. Use 'response' or 'link'.")
        X_arr = np.asarray(X, dtype=float)
        if X_arr.ndim == 1:
            X_arr = X_arr.reshape(1, -1)
        if X_arr.shape[1] != self.coef.shape[1]:
            raise ValueError(
                f"X has {X_arr.shape[1]} features, model was fit with {self.coef.shape[1]}"
            )

        if lam is None:
            eta = X_arr @ self.coef.T + self.intercept
        else:
            b0, beta = self.coef_at(lam)
            eta = X_arr @ beta + b0

        if self.family == "binomial" and kind == "response":
            return expit(eta)
        return eta

    def to_frame(self) -> pd.DataFrame:
        """Coefficients as a (features + intercept) x lambda DataFrame."""
        frame = pd.DataFrame(
            self.coef.T,
            index=pd.Index(self.feature_names, name="feature"),
            columns=pd.Index(self.lambdas, name="lambda"),
        )
        intercept_row = pd.DataFrame(
            [self.intercept], index=pd.Index(["(Intercept)"], name="feature"), columns=frame.columns
        )
        return pd.concat([intercept_row, frame])

    def coef_series(self, lam: float) -> pd.Series:
        """Coefficients at ``lam`` as a Series indexed by feature name."""
        _, coef = self.coef_at(lam)
        return pd.Series(coef, index=pd.Index(self.feature_names, name="feature"), name=lam)


def _null_deviance(y: np.ndarray, family: str, fit_intercept: bool) -> float:
    if family == "binomial":
        p = float(np.mean(y)) if fit_intercept else 0.5
        p = min(max(p, PROB_EPS), 1.0 - PROB_EPS)
        return float(-2.0 * np.mean(y * math.log(p) + (1.0 - y) * math.log(1.0 - p)))
    if fit_intercept:
        return float(np.mean((y - np.mean(y)) ** 2))
    return float(np.mean(y ** 2))


def _convergence_threshold(y: np.ndarray, family: str, fit_intercept: bool, tol: float) -> float:
    """tol * null deviance, floored so a constant target (e.g. one CV fold) still converges."""
    floor = np.finfo(float).eps * max(float(np.mean(y ** 2)), 1.0)
    return tol * max(_null_deviance(y, family, fit_intercept), floor)


def _initial_gradient(Xs: np.ndarray, y: np.ndarray, family: str, fit_intercept: bool) -> np.ndarray:
    """|X' r0| / n at beta = 0 (the KKT quantity that defines lambda_max)."""
    n = Xs.shape[0]
    if family == "binomial":
        r0 = y - (np.mean(y) if fit_intercept else 0.5)
    else:
        r0 = y - np.mean(y) if fit_intercept else y
    return np.abs(Xs.T @ r0) / n


def compute_lambda_path(
    X: Any,
    y: Any,
    alpha: float = 1.0,
    *,
    n_lambda: int = 100,
    lambda_min_ratio: Optional[float] = None,
    family: str = "gaussian",
    standardize_x: bool = True,
    fit_intercept: bool = True,
) -> np.ndarray:
    """Derive a descending, log-spaced lambda path from the data.

    The first value is the smallest lambda at which every coefficient is
    exactly zero (for ``alpha > 0``); for ``alpha`` below 1e-3 the value for
    alpha = 1e-3 is used. The last value is ``lambda_max * lambda_min_ratio``.
    """
    X_arr, _ = as_design_matrix(X)
    y_arr = as_target(y, X_arr.shape[0], family)
    std = standardize(X_arr, y_arr, standardize=standardize_x, fit_intercept=fit_intercept)
    return _lambda_path_from_standardized(
        std.Xs, y_arr, alpha, n_lambda=n_lambda, lambda_min_ratio=lambda_min_ratio,
        family=family, fit_intercept=fit_intercept,
    )


def _lambda_path_from_standardized(
    Xs: np.ndarray,
    y: np.ndarray,
    alpha: float,
    *,
    n_lambda: int,
    lambda_min_ratio: Optional[float],
    family: str,
    fit_intercept: bool,
) -> np.ndarray:
    n_samples, n_features = Xs.shape
    grad = _initial_gradient(Xs, y, family, fit_intercept)
    lambda_max = float(np.max(grad)) / max(alpha, ALPHA_FLOOR)
    if not lambda_max > 0:
        lambda_max = float(np.finfo(float).eps)

    if lambda_min_ratio is None:
        lambda_min_ratio = 1e-4 if n_samples > n_features else 1e-2
    if n_lambda == 1:
        return np.array([lambda_max])
    return lambda_max * np.exp(np.linspace(0.0, math.log(lambda_min_ratio), n_lambda))


def _normalize_path(lambda_path: Sequence[float]) -> np.ndarray:
    path = np.sort(np.asarray(lambda_path, dtype=float))[::-1]
    return np.ascontiguousarray(path)


def _check_deadline(deadline: Optional[float]) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise SearchCancelledError("time budget exhausted")


def _cd_gaussian(
    Xf: np.ndarray,
    r: np.ndarray,
    beta: np.ndarray,
    xx: np.ndarray,
    l1: float,
    l2: float,
    thresh: float,
    max_iter: int,
) -> Tuple[int, bool, float]:
    """Coordinate descent for one lambda. Updates ``beta`` and ``r`` in place.

    Returns (passes, converged, last max change).
    """
    n = Xf.shape[0]
    n_features = Xf.shape[1]
    passes = 0
    dlx = math.inf

    while passes < max_iter:
        # full pass over every feature
        dlx = 0.0
        for j in range(n_features):
            xj = Xf[:, j]
            bj = beta[j]
            u = float(xj @ r) / n + xx[j] * bj
            new = math.copysign(max(abs(u) - l1, 0.0), u) / (xx[j] + l2)
            if new != bj:
                d = new - bj
                beta[j] = new
                r -= d * xj
                dlx = max(dlx, xx[j] * d * d)
        passes += 1
        if dlx < thresh:
            return passes, True, dlx

        # iterate on the active set until it settles, then re-check with a full pass
        active = np.flatnonzero(beta)
        while passes < max_iter:
            dlx = 0.0
            for j in active:
                xj = Xf[:, j]
                bj = beta[j]
                u = float(xj @ r) / n + xx[j] * bj
                new = math.copysign(max(abs(u) - l1, 0.0), u) / (xx[j] + l2)
                if new != bj:
                    d = new - bj
                    beta[j] = new
                    r -= d * xj
                    dlx = max(dlx, xx[j] * d * d)
            passes += 1
            if dlx < thresh:
                break

    return passes, False, dlx


def _cd_weighted(
    Xf: np.ndarray,
    r: np.ndarray,
    w: np.ndarray,
    beta: np.ndarray,
    b0: float,
    xwx: np.ndarray,
    l1: float,
    l2: float,
    thresh: float,
    max_passes: int,
    fit_intercept: bool,
) -> Tuple[float, int, bool, float]:
    """Weighted coordinate descent on the IRLS quadratic approximation.

    ``r`` holds w * (z - eta) and is updated in place with ``beta``.
    Returns (b0, passes, converged, last max change).
    """
    n = Xf.shape[0]
    n_features = Xf.shape[1]
    w_mean = float(np.mean(w))
    passes = 0
    dlx = math.inf

    while passes < max_passes:
        dlx = 0.0
        for j in range(n_features):
            xj = Xf[:, j]
            bj = beta[j]
            u = float(xj @ r) / n + xwx[j] * bj
            new = math.copysign(max(abs(u) - l1, 0.0), u) / (xwx[j] + l2)
            if new != bj:
                d = new - bj
                beta[j] = new
                r -= d * w * xj
                dlx = max(dlx, xwx[j] * d * d)
        if fit_intercept:
            d0 = float(np.sum(r)) / float(np.sum(w))
            if d0 != 0.0:
                b0 += d0
                r -= d0 * w
                dlx = max(dlx, w_mean * d0 * d0)
        passes += 1
        if dlx < thresh:
            return b0, passes, True, dlx

    return b0, passes, False, dlx


def _path_gaussian(
    Xs: np.ndarray,
    y: np.ndarray,
    lambdas: np.ndarray,
    alpha: float,
    *,
    fit_intercept: bool,
    max_iter: int,
    tol: float,
    deadline: Optional[float],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, List[float]]:
    n_samples, n_features = Xs.shape
    Xf = np.asfortranarray(Xs)
    xx = np.mean(Xs ** 2, axis=0)
    r = (y - np.mean(y)) if fit_intercept else y.copy()
    r = np.array(r, dtype=float)
    beta = np.zeros(n_features)
    thresh = _convergence_threshold(y, "gaussian", fit_intercept, tol)
    zero_bound = float(np.max(np.abs(Xs.T @ r))) / n_samples

    coefs = np.zeros((len(lambdas), n_features))
    b0s = np.zeros(len(lambdas))
    n_iter = np.zeros(len(lambdas), dtype=int)
    converged = np.ones(len(lambdas), dtype=bool)
    last_change: List[float] = []

    for k, lam in enumerate(lambdas):
        _check_deadline(deadline)
        l1 = lam * alpha
        l2 = lam * (1.0 - alpha)
        if alpha > 0 and l1 >= zero_bound * (1.0 - ZERO_RTOL) and not np.any(beta):
            # KKT conditions hold at beta = 0: nothing to iterate
            coefs[k] = 0.0
            continue
        passes, ok, dlx = _cd_gaussian(Xf, r, beta, xx, l1, l2, thresh, max_iter)
        coefs[k] = beta
        n_iter[k] = passes
        converged[k] = ok
        if not ok:
            last_change.append(dlx)

    return coefs, b0s, n_iter, converged, last_change


def _path_binomial(
    Xs: np.ndarray,
    y: np.ndarray,
    lambdas: np.ndarray,
    alpha: float,
    *,
    fit_intercept: bool,
    max_iter: int,
    tol: float,
    deadline: Optional[float],
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, List[float]]:
    n_samples, n_features = Xs.shape
    Xf = np.asfortranarray(Xs)
    Xs_sq = Xs ** 2
    beta = np.zeros(n_features)
    if fit_intercept:
        p0 = min(max(float(np.mean(y)), PROB_EPS), 1.0 - PROB_EPS)
        b0 = math.log(p0 / (1.0 - p0))
    else:
        b0 = 0.0
    thresh = _convergence_threshold(y, "binomial", fit_intercept, tol)
    zero_bound = float(np.max(_initial_gradient(Xs, y, "binomial", fit_intercept)))

    coefs = np.zeros((len(lambdas), n_features))
    b0s = np.zeros(len(lambdas))
    n_iter = np.zeros(len(lambdas), dtype=int)
    converged = np.ones(len(lambdas), dtype=bool)
    last_change: List[float] = []

    for k, lam in enumerate(lambdas):
        _check_deadline(deadline)
        l1 = lam * alpha
        l2 = lam * (1.0 - alpha)
        if alpha > 0 and l1 >= zero_bound * (1.0 - ZERO_RTOL) and not np.any(beta):
            coefs[k] = 0.0
            b0s[k] = b0
            continue

        passes = 0
        ok = False
        dlx = math.inf
        for _ in range(MAX_NEWTON_STEPS):
            eta = b0 + Xs @ beta
            prob = np.clip(expit(eta), PROB_EPS, 1.0 - PROB_EPS)
            w = prob * (1.0 - prob)
            r = y - prob
            xwx = (w @ Xs_sq) / n_samples

            beta_old = beta.copy()
            b0_old = b0
            b0, inner, _, _ = _cd_weighted(
                Xf, r, w, beta, b0, xwx, l1, l2, thresh, max_iter - passes, fit_intercept
            )
            passes += inner
            d = beta - beta_old
            dlx = float(np.max(xwx * d * d)) if n_features else 0.0
            dlx = max(dlx, float(np.mean(w)) * (b0 - b0_old) ** 2)
            if dlx < thresh:
                ok = True
                break
            if passes >= max_iter:
                break

        coefs[k] = beta
        b0s[k] = b0
        n_iter[k] = passes
        converged[k] = ok
        if not ok:
            last_change.append(dlx)

    return coefs, b0s, n_iter, converged, last_change


def _solve_standardized(
    std: Standardization,
    y: np.ndarray,
    lambdas: np.ndarray,
    alpha: float,
    *,
    family: str,
    fit_intercept: bool,
    max_iter: int,
    tol: float,
    deadline: Optional[float] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, List[float]]:
    """Solve on a standardized design and return original-scale results."""
    solver = _path_binomial if family == "binomial" else _path_gaussian
    coef_std, b0_std, n_iter, converged, last_change = solver(
        std.Xs, y, lambdas, alpha,
        fit_intercept=fit_intercept, max_iter=max_iter, tol=tol, deadline=deadline,
    )
    coef = std.unscale(coef_std)
    if family == "binomial":
        intercept = std.intercept(coef, b0_std)
    else:
        intercept = std.intercept(coef) if fit_intercept else np.zeros(len(lambdas))
    return coef, intercept, n_iter, converged, last_change


def _warn_nonconvergence(
    lambdas: np.ndarray, converged: np.ndarray, last_change: List[float], alpha: float
) -> None:
    if converged.all():
        return
    failed = lambdas[~converged]
    warnings.warn(
        NonConvergenceWarning(
            f"Coordinate descent did not converge for {failed.size} lambda value(s) "
            f"(alpha={alpha:g}, smallest lambda={failed.min():.6g}); "
            f"last max change={max(last_change):.3g}. "
            "Increase max_iter or relax tol."
        ),
        stacklevel=3,
    )


def fit_standardized_subset(
    X: np.ndarray,
    y: np.ndarray,
    lambdas: np.ndarray,
    alpha: float,
    config: FitConfig,
    feature_names: Sequence[str],
    *,
    deadline: Optional[float] = None,
) -> PathResult:
    """Fit a path on already-validated rows (e.g. one CV training fold).

    Columns that are constant within these rows are held at zero instead of
    raising, because a fold may lose all variation of a sparse dummy column.
    """
    n_features = X.shape[1]
    keep = np.ptp(X, axis=0) > 0
    coef = np.zeros((len(lambdas), n_features))
    if keep.any():
        std = standardize(
            X[:, keep], y,
            standardize=config.standardize,
            fit_intercept=config.fit_intercept,
            center_y=config.family == "gaussian",
        )
        coef_kept, intercept, n_iter, converged, last_change = _solve_standardized(
            std, y, lambdas, alpha,
            family=config.family, fit_intercept=config.fit_intercept,
            max_iter=config.max_iter, tol=config.tol, deadline=deadline,
        )
        coef[:, keep] = coef_kept
        _warn_nonconvergence(lambdas, converged, last_change, alpha)
    else:
        if config.family == "binomial":
            p0 = min(max(float(np.mean(y)), PROB_EPS), 1.0 - PROB_EPS)
            intercept = np.full(len(lambdas), math.log(p0 / (1.0 - p0)))
        else:
            intercept = np.full(len(lambdas), float(np.mean(y)))
        n_iter = np.zeros(len(lambdas), dtype=int)
        converged = np.ones(len(lambdas), dtype=bool)

    return PathResult(
        lambdas=lambdas,
        alpha=float(alpha),
        coef=coef,
        intercept=np.asarray(intercept, dtype=float),
        n_iter=n_iter,
        converged=converged,
        feature_names=tuple(feature_names),
        family=config.family,
    )


def fit_path(
    X: Any,
    y: Any,
    config: FitConfig | None = None,
    *,
    alpha: Optional[float] = None,
    lambda_path: Optional[Sequence[float]] = None,
    feature_names: Optional[Sequence[str]] = None,
) -> PathResult:
    """Fit the elastic net along a penalty path.

    Parameters
    ----------
    X : array-like of shape (n_samples, n_features)
        Pre-encoded numeric design matrix (DataFrame column names are kept).
    y : array-like of shape (n_samples,)
        Target vector.
    config : FitConfig, optional
        Solver options. Defaults to :class:`FitConfig()`.
    alpha : float, optional
        Overrides ``config.alpha``.
    lambda_path : sequence of float, optional
        Overrides ``config.lambda_path``. Sorted descending before use.
    feature_names : sequence of str, optional
        Column names for reporting.

    Returns
    -------
    PathResult
        Original-scale coefficients for every lambda.

    Raises
    ------
    InvalidHyperparameterError
        On invalid configuration (checked before the data).
    DegenerateInputError
        On zero-variance columns or unusable targets.
    """
    if config is None:
        config = FitConfig()
    config = config.replace(alpha=alpha, lambda_path=lambda_path).validate()

    X_arr, names = as_design_matrix(X, feature_names)
    y_arr = as_target(y, X_arr.shape[0], config.family)

    std = standardize(
        X_arr, y_arr,
        standardize=config.standardize,
        fit_intercept=config.fit_intercept,
        center_y=config.family == "gaussian",
    )
    if config.lambda_path is not None:
        lambdas = _normalize_path(config.lambda_path)
    else:
        lambdas = _lambda_path_from_standardized(
            std.Xs, y_arr, config.alpha,
            n_lambda=config.n_lambda, lambda_min_ratio=config.lambda_min_ratio,
            family=config.family, fit_intercept=config.fit_intercept,
        )

    if config.verbose:
        print(
            f"[info] fitting {config.family} path: alpha={config.alpha:g}, "
            f"n_lambda={len(lambdas)}, shape={X_arr.shape}"
        )

    coef, intercept, n_iter, converged, last_change = _solve_standardized(
        std, y_arr, lambdas, config.alpha,
        family=config.family, fit_intercept=config.fit_intercept,
        max_iter=config.max_iter, tol=config.tol,
    )
    _warn_nonconvergence(lambdas, converged, last_change, config.alpha)

    return PathResult(
        lambdas=lambdas,
        alpha=float(config.alpha),
        coef=coef,
        intercept=np.asarray(intercept, dtype=float),
        n_iter=n_iter,
        converged=converged,
        feature_names=tuple(names),
        family=config.family,
    )
