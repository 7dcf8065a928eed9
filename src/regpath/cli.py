#!/usr/bin/env python
"""Elastic net grid search on a tabular dataset.

This script runs the end-to-end workflow: load a CSV/parquet table, one-hot
encode categorical columns, split train/test, cross-validate every alpha in
the grid on the training part, refit the selected (alpha, lambda) and report
the held-out loss.

Outputs (under --out-dir):
- coefficients.csv: full-data coefficients at the selected lambda
- cv_table.csv: mean/SE loss for every (alpha, lambda) cell
- model_meta.json: selected hyperparameters and metrics
- grid_result.pkl: joblib dump of the GridSearchResult
"""

from __future__ import annotations

import argparse
import json
import sys
import warnings
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Sequence

import joblib
import numpy as np
import pandas as pd
from sklearn.model_selection import train_test_split

from regpath.config import FitConfig, load_config
from regpath.cv_utils import path_losses
from regpath.design import encode_frame, find_constant_columns
from regpath.grid_search import grid_search


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    ap = argparse.ArgumentParser(description="Elastic net grid search with k-fold CV.")
    ap.add_argument("--data", type=str, required=False, default=None, help="CSV or parquet file")
    ap.add_argument("--target", type=str, default=None, help="Target column name")
    ap.add_argument(
        "--config-path",
        type=str,
        default=None,
        help="YAML file with a 'regpath' section",
    )
    ap.add_argument("--out-dir", type=str, default="artifacts/regpath")
    ap.add_argument("--test-size", type=float, default=0.3)
    ap.add_argument("--log-target", action="store_true", help="Fit on log(target)")
    # overrides of the YAML / default configuration
    ap.add_argument("--family", type=str, default=None, choices=["gaussian", "binomial"])
    ap.add_argument("--alphas", type=float, nargs="+", default=None)
    ap.add_argument("--n-lambda", type=int, default=None)
    ap.add_argument("--nfolds", type=int, default=None)
    ap.add_argument("--measure", type=str, default=None, choices=["mse", "mae", "deviance"])
    ap.add_argument("--selection", type=str, default=None, choices=["min", "1se"])
    ap.add_argument("--stratify", action="store_true")
    ap.add_argument("--max-iter", type=int, default=None)
    ap.add_argument("--tol", type=float, default=None)
    ap.add_argument("--n-jobs", type=int, default=None)
    ap.add_argument("--backend", type=str, default=None, choices=["thread", "process"])
    ap.add_argument("--time-budget", type=float, default=None)
    ap.add_argument("--seed", type=int, default=None)
    # output control
    ap.add_argument("--no-artifacts", action="store_true")
    return ap.parse_args(argv)


def load_table(path: Path) -> pd.DataFrame:
    if path.suffix.lower() == ".parquet":
        return pd.read_parquet(path)
    if path.suffix.lower() == ".csv":
        return pd.read_csv(path)
    raise ValueError(f"Unsupported extension: {path.suffix}")


def build_config(args: argparse.Namespace) -> FitConfig:
    """Merge the YAML configuration with command-line overrides."""
    base = load_config(args.config_path) if args.config_path else FitConfig()
    config = base.replace(
        family=args.family,
        alphas=args.alphas,
        n_lambda=args.n_lambda,
        nfolds=args.nfolds,
        measure=args.measure,
        selection=args.selection,
        max_iter=args.max_iter,
        tol=args.tol,
        n_jobs=args.n_jobs,
        backend=args.backend,
        time_budget=args.time_budget,
        seed=args.seed,
        stratify=True if args.stratify else None,
        verbose=True,
    )
    return config.validate()


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    if not args.data or not args.target:
        raise SystemExit("--data and --target are required")

    config = build_config(args)
    out_dir = Path(args.out_dir)
    if not args.no_artifacts:
        out_dir.mkdir(parents=True, exist_ok=True)

    data_path = Path(args.data)
    print(f"[info] data file: {data_path}")
    df = load_table(data_path)

    X, y = encode_frame(df, args.target)
    if args.log_target:
        if config.family == "binomial":
            raise SystemExit("--log-target only applies to the gaussian family")
        y = np.log(y.astype(float))
    print(f"[info] encoded design: {X.shape[0]} rows x {X.shape[1]} columns")

    stratify_on = y if config.family == "binomial" else None
    X_train, X_test, y_train, y_test = train_test_split(
        X, y, test_size=args.test_size, random_state=config.seed, stratify=stratify_on
    )

    constant = find_constant_columns(X_train)
    if constant:
        dropped = [X_train.columns[j] for j in constant]
        print(f"[warn] dropping {len(dropped)} zero-variance column(s) in train split: {dropped}")
        X_train = X_train.drop(columns=dropped)
        X_test = X_test.drop(columns=dropped)

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        result = grid_search(X_train, y_train, config)
    if caught:
        print(f"[warn] {len(caught)} warning(s) during the search; first: {caught[0].message}")

    if config.family == "binomial":
        y_test_arr = (y_test.to_numpy() == np.unique(y_train)[1]).astype(float)
    else:
        y_test_arr = y_test.to_numpy(dtype=float)
    test_pred = result.predict(X_test)
    test_loss = float(path_losses(y_test_arr, test_pred, config.loss_measure, config.family)[0])

    coef = result.best_coef()
    n_nonzero = int(np.count_nonzero(coef.iloc[1:].to_numpy()))

    print(f"\n{'=' * 60}")
    print(f"[result] alpha  = {result.best_alpha:g}")
    print(f"[result] lambda = {result.best_lambda:.6g} ({config.selection})")
    print(f"[result] cv {config.loss_measure} = {result.best_cv.best_loss:.6g}")
    print(f"[result] test {config.loss_measure} = {test_loss:.6g}")
    print(f"[result] non-zero coefficients: {n_nonzero} / {len(coef) - 1}")
    print(f"{'=' * 60}\n")

    if args.no_artifacts:
        return 0

    coef_path = out_dir / "coefficients.csv"
    coef.rename("coefficient").rename_axis("feature").reset_index().to_csv(coef_path, index=False)
    print(f"[info] Saved coefficients to {coef_path}")

    cv_table_path = out_dir / "cv_table.csv"
    result.cv_table().to_csv(cv_table_path, index=False)
    print(f"[info] Saved CV table to {cv_table_path}")

    bundle_path = out_dir / "grid_result.pkl"
    joblib.dump(result, bundle_path)
    print(f"[info] Saved grid result to {bundle_path}")

    meta: Dict[str, Any] = {
        "family": config.family,
        "target_col": args.target,
        "log_target": bool(args.log_target),
        "best_alpha": result.best_alpha,
        "best_lambda": result.best_lambda,
        "selection": config.selection,
        "measure": config.loss_measure,
        "cv_loss": result.best_cv.best_loss,
        "test_loss": test_loss,
        "n_train": int(len(y_train)),
        "n_test": int(len(y_test)),
        "n_features": int(X_train.shape[1]),
        "n_nonzero_coefficients": n_nonzero,
        "alphas": result.alphas,
        "nfolds": config.nfolds,
        "truncated": result.truncated,
        "elapsed_sec": result.elapsed_sec,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
    meta_path = out_dir / "model_meta.json"
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump(meta, f, indent=2)
    print(f"[info] Saved metadata to {meta_path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
