"""Design matrix handling: validation, standardization and encoding.

The solvers only consume dense numeric arrays. This module turns user input
(numpy arrays or pandas objects) into read-only float64 arrays, rejects
degenerate input before any fitting starts, and owns the centering/scaling
round trip so coefficients are reported on the original feature scale.

``encode_frame`` is the upstream collaborator that maps raw heterogeneous
records to a numeric design matrix with stable column ordering.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.compose import ColumnTransformer
from sklearn.preprocessing import OneHotEncoder, StandardScaler

from regpath.errors import DegenerateInputError


@dataclass(frozen=True)
class Standardization:
    """Centering/scaling applied to the design matrix for one fit."""

    x_mean: np.ndarray
    x_scale: np.ndarray
    y_mean: float
    Xs: np.ndarray

    def unscale(self, coef_std: np.ndarray) -> np.ndarray:
        """Map standardized coefficients (..., p) back to the original scale."""
        return coef_std / self.x_scale

    def intercept(self, coef: np.ndarray, b0_std: np.ndarray | float | None = None) -> np.ndarray:
        """Recover the original-scale intercept for original-scale ``coef``."""
        base = self.y_mean if b0_std is None else b0_std
        return base - coef @ self.x_mean


def _feature_names(X: Any, n_features: int, feature_names: Sequence[str] | None) -> List[str]:
    if feature_names is not None:
        names = [str(name) for name in feature_names]
    elif isinstance(X, pd.DataFrame):
        names = [str(col) for col in X.columns]
    else:
        names = [f"x{j}" for j in range(n_features)]
    if len(names) != n_features:
        raise DegenerateInputError(
            f"Got {len(names)} feature names for {n_features} columns"
        )
    return names


def find_constant_columns(X: Any) -> List[int]:
    """Return indices of columns whose values are all identical."""
    array = np.asarray(X, dtype=float)
    if array.ndim != 2 or array.shape[0] == 0:
        return []
    return [int(j) for j in np.flatnonzero(np.ptp(array, axis=0) == 0)]


def as_design_matrix(
    X: Any,
    feature_names: Sequence[str] | None = None,
) -> Tuple[np.ndarray, List[str]]:
    """Validate ``X`` and return a read-only float64 copy plus column names.

    Raises
    ------
    DegenerateInputError
        If ``X`` is not 2-D, has no rows/columns, contains non-finite values
        or has a zero-variance column.
    """
    try:
        array = np.array(X, dtype=np.float64, copy=True)
    except (TypeError, ValueError) as exc:
        raise DegenerateInputError(f"Design matrix must be numeric: {exc}") from exc
    if array.ndim != 2:
        raise DegenerateInputError(f"Design matrix must be 2-D, got shape {array.shape}")
    n_samples, n_features = array.shape
    if n_samples < 2 or n_features < 1:
        raise DegenerateInputError(
            f"Design matrix needs at least 2 rows and 1 column, got shape {array.shape}"
        )

    names = _feature_names(X, n_features, feature_names)
    if not np.all(np.isfinite(array)):
        bad = [names[j] for j in np.flatnonzero(~np.isfinite(array).all(axis=0))]
        raise DegenerateInputError(f"Non-finite values in columns: {bad}")

    constant = find_constant_columns(array)
    if constant:
        bad = [names[j] for j in constant]
        raise DegenerateInputError(
            f"Zero-variance feature(s) {bad}: drop them before fitting"
        )

    array.setflags(write=False)
    return array, names


def as_target(y: Any, n_samples: int, family: str = "gaussian") -> np.ndarray:
    """Validate the target and return a read-only float64 vector.

    Binomial targets with two distinct labels are mapped to 0/1 in sorted order.
    """
    values = np.asarray(y).ravel()
    if values.shape[0] != n_samples:
        raise DegenerateInputError(
            f"Target has {values.shape[0]} values but design matrix has {n_samples} rows"
        )

    if family == "binomial":
        labels = np.unique(values)
        if len(labels) < 2:
            raise DegenerateInputError(
                f"Binomial target needs 2 distinct values, got {len(labels)}"
            )
        if len(labels) > 2:
            raise DegenerateInputError(
                f"Binomial target must have exactly 2 classes, got {len(labels)}"
            )
        out = (values == labels[1]).astype(np.float64)
    else:
        try:
            out = values.astype(np.float64)
        except (TypeError, ValueError) as exc:
            raise DegenerateInputError(f"Target must be numeric: {exc}") from exc
        if not np.all(np.isfinite(out)):
            raise DegenerateInputError("Target contains non-finite values")
        if np.ptp(out) == 0:
            raise DegenerateInputError("Target has zero variance")

    out = np.array(out, copy=True)
    out.setflags(write=False)
    return out


def standardize(
    X: np.ndarray,
    y: np.ndarray,
    *,
    standardize: bool = True,
    fit_intercept: bool = True,
    center_y: bool = True,
) -> Standardization:
    """Center and/or scale ``X`` with :class:`StandardScaler`.

    ``y`` is centered only when ``center_y`` and ``fit_intercept`` are set
    (gaussian family); the binomial solver fits its intercept directly.
    """
    scaler = StandardScaler(with_mean=fit_intercept, with_std=standardize)
    Xs = scaler.fit_transform(X)
    n_features = X.shape[1]

    x_mean = scaler.mean_ if fit_intercept else np.zeros(n_features)
    x_scale = scaler.scale_ if standardize else np.ones(n_features)
    y_mean = float(np.mean(y)) if (fit_intercept and center_y) else 0.0

    return Standardization(
        x_mean=np.asarray(x_mean, dtype=float),
        x_scale=np.asarray(x_scale, dtype=float),
        y_mean=y_mean,
        Xs=np.ascontiguousarray(Xs, dtype=float),
    )


def encode_frame(
    df: pd.DataFrame,
    target_col: str,
    *,
    categorical_cols: Sequence[str] | None = None,
) -> Tuple[pd.DataFrame, pd.Series]:
    """One-hot encode categorical columns and pass numeric columns through.

    Returns a numeric design DataFrame (columns ordered as numeric inputs first,
    then the encoded categories in input order) and the target Series.
    Rows with missing values are dropped.
    """
    if target_col not in df.columns:
        raise KeyError(f"Target column '{target_col}' not found")

    frame = df.dropna(axis=0, how="any").reset_index(drop=True)
    y = frame[target_col]
    features = frame.drop(columns=[target_col])

    if categorical_cols is None:
        categorical_cols = [
            col for col in features.columns
            if not pd.api.types.is_numeric_dtype(features[col])
            or pd.api.types.is_bool_dtype(features[col])
        ]
    numeric_cols = [col for col in features.columns if col not in set(categorical_cols)]

    transformer = ColumnTransformer(
        transformers=[
            ("num", "passthrough", numeric_cols),
            (
                "cat",
                OneHotEncoder(handle_unknown="ignore", sparse_output=False),
                list(categorical_cols),
            ),
        ],
        verbose_feature_names_out=False,
    )
    encoded = transformer.fit_transform(features.astype({c: str for c in categorical_cols}))
    columns = [str(name) for name in transformer.get_feature_names_out()]
    X = pd.DataFrame(np.asarray(encoded, dtype=float), columns=columns)
    return X, y
