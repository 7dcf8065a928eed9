"""Tests for design matrix validation, standardization and encoding."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from regpath.design import (
    as_design_matrix,
    as_target,
    encode_frame,
    find_constant_columns,
    standardize,
)
from regpath.errors import DegenerateInputError


class TestAsDesignMatrix:
    """Validation of the design matrix."""

    def test_returns_read_only_copy(self):
        X = np.arange(12, dtype=float).reshape(4, 3) ** 2
        array, names = as_design_matrix(X)

        assert names == ["x0", "x1", "x2"]
        assert array.dtype == np.float64
        assert not array.flags.writeable
        X[0, 0] = 99.0
        assert array[0, 0] == 0.0

    def test_dataframe_names_are_kept(self):
        df = pd.DataFrame({"a": [1.0, 2.0, 3.0], "b": [0.0, 1.0, 0.5]})
        _, names = as_design_matrix(df)

        assert names == ["a", "b"]

    def test_zero_variance_column_is_named(self):
        df = pd.DataFrame({"a": [1.0, 2.0, 3.0], "flat": [5.0, 5.0, 5.0]})

        with pytest.raises(DegenerateInputError, match="flat"):
            as_design_matrix(df)

    @pytest.mark.parametrize(
        "X",
        [
            np.array([1.0, 2.0, 3.0]),
            np.array([[1.0, 2.0]]),
            np.array([[1.0, np.nan], [2.0, 3.0], [0.0, 1.0]]),
            np.array([[1.0, np.inf], [2.0, 3.0], [0.0, 1.0]]),
            [["a", "b"], ["c", "d"]],
        ],
    )
    def test_degenerate_inputs_raise(self, X):
        with pytest.raises(DegenerateInputError):
            as_design_matrix(X)

    def test_name_count_mismatch_raises(self):
        with pytest.raises(DegenerateInputError, match="feature names"):
            as_design_matrix(np.eye(3), feature_names=["a", "b"])


class TestAsTarget:
    """Validation of the target vector."""

    def test_gaussian_target(self):
        y = as_target([1, 2, 3], 3)

        np.testing.assert_array_equal(y, [1.0, 2.0, 3.0])
        assert not y.flags.writeable

    def test_length_mismatch_raises(self):
        with pytest.raises(DegenerateInputError, match="rows"):
            as_target([1.0, 2.0], 3)

    def test_constant_gaussian_target_raises(self):
        with pytest.raises(DegenerateInputError, match="zero variance"):
            as_target([2.0, 2.0, 2.0], 3)

    def test_binomial_labels_map_to_zero_one(self):
        y = as_target(np.array(["no", "yes", "yes", "no"]), 4, family="binomial")

        np.testing.assert_array_equal(y, [0.0, 1.0, 1.0, 0.0])

    def test_binomial_single_class_raises(self):
        with pytest.raises(DegenerateInputError, match="2 distinct"):
            as_target([1, 1, 1], 3, family="binomial")

    def test_binomial_three_classes_raises(self):
        with pytest.raises(DegenerateInputError, match="exactly 2"):
            as_target([0, 1, 2], 3, family="binomial")


class TestFindConstantColumns:
    def test_indices(self):
        X = np.array([[1.0, 2.0, 3.0], [1.0, 5.0, 3.0], [1.0, 0.0, 3.0]])

        assert find_constant_columns(X) == [0, 2]

    def test_no_constant_columns(self):
        assert find_constant_columns(np.eye(3)) == []


class TestStandardize:
    """Centering/scaling round trip."""

    def test_unit_variance_and_zero_mean(self, ols_data):
        X, y = ols_data
        std = standardize(X, y)

        np.testing.assert_allclose(std.Xs.mean(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(std.Xs.std(axis=0), 1.0, rtol=1e-12)
        assert std.y_mean == pytest.approx(float(np.mean(y)))

    def test_round_trip_preserves_linear_predictor(self, ols_data):
        """Unscaled coefficients and recovered intercept reproduce predictions."""
        X, y = ols_data
        std = standardize(X, y)
        coef_std = np.array([0.5, -1.0, 2.0, 0.1])

        coef = std.unscale(coef_std)
        intercept = std.intercept(coef)

        np.testing.assert_allclose(
            X @ coef + intercept, std.Xs @ coef_std + std.y_mean, rtol=1e-10, atol=1e-10
        )

    def test_no_intercept_no_scaling(self, ols_data):
        X, y = ols_data
        std = standardize(X, y, standardize=False, fit_intercept=False)

        np.testing.assert_allclose(std.Xs, X)
        np.testing.assert_array_equal(std.x_mean, 0.0)
        np.testing.assert_array_equal(std.x_scale, 1.0)
        assert std.y_mean == 0.0


class TestEncodeFrame:
    """One-hot encoding of raw frames."""

    def test_numeric_first_then_dummies(self):
        df = pd.DataFrame(
            {
                "area": [50.0, 80.0, 65.0, 120.0],
                "zone": ["A", "B", "A", "C"],
                "rooms": [2, 3, 2, 5],
                "price": [100.0, 180.0, 130.0, 300.0],
            }
        )
        X, y = encode_frame(df, "price")

        assert list(X.columns) == ["area", "rooms", "zone_A", "zone_B", "zone_C"]
        np.testing.assert_array_equal(X["zone_A"].to_numpy(), [1.0, 0.0, 1.0, 0.0])
        assert y.tolist() == [100.0, 180.0, 130.0, 300.0]

    def test_rows_with_missing_values_are_dropped(self):
        df = pd.DataFrame({"a": [1.0, np.nan, 3.0], "b": ["x", "y", None], "t": [1.0, 2.0, 3.0]})
        X, y = encode_frame(df, "t")

        assert len(X) == 1
        assert y.tolist() == [1.0]

    def test_explicit_categorical_columns(self):
        df = pd.DataFrame({"code": [1, 2, 1, 2], "t": [0.0, 1.0, 0.5, 2.0]})
        X, _ = encode_frame(df, "t", categorical_cols=["code"])

        assert list(X.columns) == ["code_1", "code_2"]

    def test_missing_target_raises(self):
        with pytest.raises(KeyError, match="not found"):
            encode_frame(pd.DataFrame({"a": [1.0]}), "t")
