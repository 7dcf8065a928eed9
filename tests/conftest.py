"""Pytest setup: put ``src`` on the import path and share synthetic datasets.

Makes ``import regpath`` work whether or not the package is installed.
"""

import os
import sys

import numpy as np
import pytest


def _add_src_to_path() -> None:
    root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    src = os.path.join(root, "src")
    if src not in sys.path:
        sys.path.insert(0, src)


_add_src_to_path()


@pytest.fixture
def sparse_data():
    """100 x 20 design where only the first 5 features carry signal."""
    rng = np.random.default_rng(0)
    n_samples, n_features = 100, 20
    X = rng.standard_normal((n_samples, n_features))
    beta = np.zeros(n_features)
    beta[:5] = [3.0, -2.5, 2.0, -1.5, 1.0]
    y = X @ beta + rng.standard_normal(n_samples)
    return X, y, beta


@pytest.fixture
def ols_data():
    """Small well-conditioned regression problem with an intercept."""
    rng = np.random.default_rng(1)
    n_samples, n_features = 60, 4
    X = rng.standard_normal((n_samples, n_features)) * [1.0, 2.0, 0.5, 3.0] + [0.0, 1.0, -2.0, 5.0]
    beta = np.array([1.5, -0.7, 2.0, 0.3])
    y = 4.0 + X @ beta + 0.5 * rng.standard_normal(n_samples)
    return X, y


@pytest.fixture
def orthogonal_data():
    """Centered design with orthogonal unit-variance columns."""
    rng = np.random.default_rng(2)
    n_samples, n_features = 80, 6
    raw = rng.standard_normal((n_samples, n_features))
    raw -= raw.mean(axis=0)
    q, _ = np.linalg.qr(raw)
    X = q * np.sqrt(n_samples)
    y = X @ np.array([2.0, -1.0, 0.5, 0.0, 0.0, 0.25]) + rng.standard_normal(n_samples)
    return X, y


@pytest.fixture
def binary_data():
    """Logistic data without separation."""
    rng = np.random.default_rng(3)
    n_samples = 300
    X = rng.standard_normal((n_samples, 3))
    eta = 0.2 + X @ np.array([0.8, -0.5, 0.3])
    prob = 1.0 / (1.0 + np.exp(-eta))
    y = (rng.uniform(size=n_samples) < prob).astype(float)
    return X, y
