"""Configuration for path fitting, cross-validation and grid search.

All options live in a single frozen :class:`FitConfig`. Values can be read
from the ``regpath`` section of a YAML file (see ``configs/regpath.yaml``)
and overridden per call with :meth:`FitConfig.replace`.

Validation happens in :meth:`FitConfig.validate`, which every entry point
calls before looking at the data.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

import numpy as np
import yaml

from regpath.errors import InvalidHyperparameterError

FAMILIES = ("gaussian", "binomial")
MEASURES = ("mse", "mae", "deviance")
SELECTIONS = ("min", "1se")
BACKENDS = ("thread", "process")

DEFAULT_ALPHAS: Tuple[float, ...] = tuple(float(a) for a in np.round(np.linspace(0.0, 1.0, 11), 10))


@dataclass(frozen=True)
class FitConfig:
    """Options recognised by :func:`fit_path`, :func:`cross_validate` and :func:`grid_search`.

    Parameters
    ----------
    alpha : float
        Mixing parameter for single-alpha fits. 0 is ridge, 1 is lasso.
    alphas : tuple of float
        Candidate mixing parameters swept by the grid search.
    lambda_path : tuple of float, optional
        Explicit penalty path. Derived from the data when None.
    n_lambda : int
        Length of the derived penalty path.
    lambda_min_ratio : float, optional
        Smallest derived lambda as a fraction of ``lambda_max``.
        None means 1e-4 when n > p, else 1e-2.
    nfolds : int
        Number of cross-validation folds.
    standardize : bool
        Scale features to unit variance before fitting.
    fit_intercept : bool
        Fit an unpenalized intercept (centers the data).
    measure : str, optional
        Held-out loss: "mse", "mae" or "deviance". None picks "deviance" for
        the binomial family and "mse" for the gaussian family.
    family : str
        "gaussian" (least squares) or "binomial" (logistic).
    max_iter : int
        Maximum number of coordinate descent passes per lambda.
    tol : float
        Convergence tolerance relative to the null deviance.
    seed : int
        Seed for the fold shuffling.
    stratify : bool
        Stratify folds by target quantile bins (gaussian) or class (binomial).
    n_strata : int
        Number of quantile bins used when stratifying a continuous target.
    selection : str
        "min" or "1se" rule for picking lambda.
    n_jobs : int
        Workers used for fold and grid cells. 1 runs serially.
    backend : str
        "thread" or "process" executor.
    time_budget : float, optional
        Wall-clock budget in seconds for ``cross_validate`` and ``grid_search``.
    verbose : bool
        Print progress lines.
    """

    alpha: float = 1.0
    alphas: Tuple[float, ...] = DEFAULT_ALPHAS
    lambda_path: Optional[Tuple[float, ...]] = None
    n_lambda: int = 100
    lambda_min_ratio: Optional[float] = None
    nfolds: int = 10
    standardize: bool = True
    fit_intercept: bool = True
    measure: Optional[str] = None
    family: str = "gaussian"
    max_iter: int = 100000
    tol: float = 1e-7
    seed: int = 42
    stratify: bool = False
    n_strata: int = 4
    selection: str = "min"
    n_jobs: int = 1
    backend: str = "thread"
    time_budget: Optional[float] = None
    verbose: bool = False

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "FitConfig":
        """Build a config from a YAML section. Unknown keys are rejected."""
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise InvalidHyperparameterError(f"Unknown config keys: {unknown}")

        kwargs: dict[str, Any] = {}
        for key, value in mapping.items():
            if value is None:
                kwargs[key] = None
            elif key in ("alphas", "lambda_path"):
                kwargs[key] = tuple(float(v) for v in value)
            elif key in ("alpha", "tol", "lambda_min_ratio", "time_budget"):
                kwargs[key] = float(value)
            elif key in ("n_lambda", "nfolds", "max_iter", "seed", "n_strata", "n_jobs"):
                kwargs[key] = int(value)
            elif key in ("standardize", "fit_intercept", "stratify", "verbose"):
                kwargs[key] = bool(value)
            else:
                kwargs[key] = str(value)
        return cls(**kwargs)

    def replace(self, **changes: Any) -> "FitConfig":
        """Return a copy with ``changes`` applied; None values are ignored."""
        updates = {k: v for k, v in changes.items() if v is not None}
        if "alphas" in updates:
            updates["alphas"] = tuple(float(a) for a in updates["alphas"])
        if "lambda_path" in updates:
            updates["lambda_path"] = tuple(float(v) for v in updates["lambda_path"])
        return dataclasses.replace(self, **updates)

    @property
    def loss_measure(self) -> str:
        """Held-out loss in effect: ``measure`` or the family default."""
        if self.measure is not None:
            return self.measure
        return "deviance" if self.family == "binomial" else "mse"

    def validate(self) -> "FitConfig":
        """Raise :class:`InvalidHyperparameterError` on any out-of-range value."""
        _check_alpha(self.alpha, "alpha")
        if len(self.alphas) == 0:
            raise InvalidHyperparameterError("alphas must contain at least one value")
        for a in self.alphas:
            _check_alpha(a, "alphas")

        if self.lambda_path is not None:
            if len(self.lambda_path) == 0:
                raise InvalidHyperparameterError("lambda_path must not be empty")
            for lam in self.lambda_path:
                if not math.isfinite(lam) or lam < 0:
                    raise InvalidHyperparameterError(
                        f"lambda_path values must be finite and non-negative, got {lam}"
                    )
            if len(set(self.lambda_path)) != len(self.lambda_path):
                raise InvalidHyperparameterError("lambda_path values must be unique")
        if self.n_lambda < 1:
            raise InvalidHyperparameterError(f"n_lambda must be >= 1, got {self.n_lambda}")
        if self.lambda_min_ratio is not None and not 0 < self.lambda_min_ratio < 1:
            raise InvalidHyperparameterError(
                f"lambda_min_ratio must be in (0, 1), got {self.lambda_min_ratio}"
            )

        if self.nfolds < 2:
            raise InvalidHyperparameterError(f"nfolds must be >= 2, got {self.nfolds}")
        if self.n_strata < 2:
            raise InvalidHyperparameterError(f"n_strata must be >= 2, got {self.n_strata}")
        if self.max_iter < 1:
            raise InvalidHyperparameterError(f"max_iter must be >= 1, got {self.max_iter}")
        if not self.tol > 0:
            raise InvalidHyperparameterError(f"tol must be > 0, got {self.tol}")
        if self.n_jobs < 1:
            raise InvalidHyperparameterError(f"n_jobs must be >= 1, got {self.n_jobs}")
        if self.time_budget is not None and not self.time_budget > 0:
            raise InvalidHyperparameterError(f"time_budget must be > 0, got {self.time_budget}")

        _check_choice(self.family, FAMILIES, "family")
        if self.measure is not None:
            _check_choice(self.measure, MEASURES, "measure")
        _check_choice(self.selection, SELECTIONS, "selection")
        _check_choice(self.backend, BACKENDS, "backend")
        return self


def _check_alpha(value: float, name: str) -> None:
    if not (math.isfinite(value) and 0.0 <= value <= 1.0):
        raise InvalidHyperparameterError(f"{name} must be within [0, 1], got {value}")


def _check_choice(value: str, choices: Tuple[str, ...], name: str) -> None:
    if value not in choices:
        raise InvalidHyperparameterError(f"Invalid {name}: {value!r}. Use one of {choices}.")


def load_config(config_path: str | Path, section: str = "regpath") -> FitConfig:
    """Read ``section`` of a YAML file into a validated :class:`FitConfig`."""
    path = Path(config_path).resolve()
    if not path.exists():
        raise FileNotFoundError(f"config not found: {path}")
    with path.open("r", encoding="utf-8") as fh:
        full_cfg: Mapping[str, Any] = yaml.safe_load(fh) or {}

    try:
        cfg_section = full_cfg[section]
    except KeyError as exc:
        raise KeyError(f"'{section}' section is required in {path.name}") from exc

    return FitConfig.from_mapping(cfg_section or {}).validate()
