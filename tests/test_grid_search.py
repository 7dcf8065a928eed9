"""Tests for the alpha x lambda grid search."""

from __future__ import annotations

import importlib

import numpy as np
import pandas as pd
import pytest

from regpath.config import FitConfig
from regpath.cross_validation import cross_validate
from regpath.errors import InvalidHyperparameterError, SearchCancelledError
from regpath.grid_search import GridSearchResult, grid_search

# The package re-exports the grid_search function, which shadows the submodule attribute.
grid_module = importlib.import_module("regpath.grid_search")


@pytest.fixture
def grid_config():
    return FitConfig(alphas=(0.0, 0.5, 1.0), n_lambda=15, nfolds=4, seed=11)


class TestGridSearch:
    """Selection over the whole grid."""

    def test_best_pair_is_global_minimum(self, sparse_data, grid_config):
        X, y, _ = sparse_data
        result = grid_search(X, y, grid_config)

        assert isinstance(result, GridSearchResult)
        assert result.alphas == [0.0, 0.5, 1.0]
        table = result.cv_table()
        assert result.best_cv.best_loss == pytest.approx(table["cv_mean"].min())
        assert result.best_lambda == result.best_cv.lambda_min
        assert not result.truncated

    def test_matches_single_alpha_cv(self, sparse_data, grid_config):
        """Each grid row equals cross_validate on the same folds."""
        X, y, _ = sparse_data
        result = grid_search(X, y, grid_config)

        for cv_result in result.cv_results:
            single = cross_validate(X, y, grid_config, alpha=cv_result.alpha, foldid=cv_result.foldid)
            np.testing.assert_allclose(cv_result.cv_mean, single.cv_mean)
            assert cv_result.lambda_min == single.lambda_min

    def test_folds_shared_across_alphas(self, sparse_data, grid_config):
        X, y, _ = sparse_data
        result = grid_search(X, y, grid_config)

        first = result.cv_results[0].foldid
        for cv_result in result.cv_results[1:]:
            np.testing.assert_array_equal(cv_result.foldid, first)

    def test_1se_selection(self, sparse_data, grid_config):
        X, y, _ = sparse_data
        minimum = grid_search(X, y, grid_config)
        one_se = grid_search(X, y, grid_config.replace(selection="1se"))

        assert one_se.best_alpha == minimum.best_alpha
        assert one_se.best_lambda == one_se.best_cv.lambda_1se
        assert one_se.best_lambda >= minimum.best_lambda

    def test_parallel_matches_serial(self, sparse_data, grid_config):
        """Completion order does not change the aggregated result."""
        X, y, _ = sparse_data
        serial = grid_search(X, y, grid_config)
        pooled = grid_search(X, y, grid_config.replace(n_jobs=4))

        assert pooled.best_alpha == serial.best_alpha
        assert pooled.best_lambda == serial.best_lambda
        pd.testing.assert_frame_equal(pooled.cv_table(), serial.cv_table())

    def test_process_backend_matches_serial(self, sparse_data, grid_config):
        X, y, _ = sparse_data
        serial = grid_search(X, y, grid_config)
        pooled = grid_search(X, y, grid_config.replace(n_jobs=2, backend="process"))

        assert pooled.best_alpha == serial.best_alpha
        assert pooled.best_lambda == serial.best_lambda
        pd.testing.assert_frame_equal(pooled.cv_table(), serial.cv_table())

    def test_alpha_override_and_duplicates(self, sparse_data, grid_config):
        X, y, _ = sparse_data
        result = grid_search(X, y, grid_config, alphas=[1.0, 0.2, 1.0])

        assert result.alphas == [1.0, 0.2]

    def test_refit_and_reporting(self, sparse_data, grid_config):
        X, y, _ = sparse_data
        result = grid_search(X, y, grid_config, feature_names=[f"f{j}" for j in range(20)])

        coef = result.best_coef()
        assert coef.index[0] == "(Intercept)"
        assert list(coef.index[1:]) == [f"f{j}" for j in range(20)]
        assert result.path.alpha == result.best_alpha
        np.testing.assert_array_equal(result.path.lambdas, result.best_cv.lambdas)

        preds = result.predict(X)
        expected = X @ coef.iloc[1:].to_numpy() + coef.iloc[0]
        np.testing.assert_allclose(preds, expected)

        table = result.cv_table()
        assert list(table.columns) == ["alpha", "lambda", "cv_mean", "cv_se", "cv_lower", "cv_upper"]
        assert len(table) == 3 * 15

    def test_invalid_alpha_raises(self, sparse_data, grid_config):
        X, y, _ = sparse_data

        with pytest.raises(InvalidHyperparameterError):
            grid_search(X, y, grid_config, alphas=[0.5, 1.2])


class TestSelectTies:
    def test_earliest_alpha_wins_ties(self, sparse_data, grid_config):
        """Equal minimum losses resolve to the first alpha in grid order."""
        X, y, _ = sparse_data
        base = cross_validate(X, y, grid_config, alpha=1.0)
        twin = cross_validate(X, y, grid_config, alpha=1.0, foldid=base.foldid)

        best, _ = grid_module._select([base, twin], "min")

        assert best is base


class TestTimeBudget:
    """Cooperative cancellation."""

    def test_exhausted_budget_raises(self, sparse_data, grid_config):
        X, y, _ = sparse_data

        with pytest.raises(SearchCancelledError):
            grid_search(X, y, grid_config.replace(time_budget=1e-9))

    def test_unfinished_alpha_is_dropped(self, sparse_data, grid_config, monkeypatch, capsys):
        """Cells cancelled by the budget drop their alpha and mark the result truncated."""
        X, y, _ = sparse_data
        real_cell = grid_module._fold_cell

        def cell(*args):
            alpha = args[5]
            if alpha == 0.5:
                return None
            return real_cell(*args)

        monkeypatch.setattr(grid_module, "_fold_cell", cell)
        result = grid_search(X, y, grid_config.replace(time_budget=3600.0))

        assert result.truncated
        assert result.alphas == [0.0, 1.0]
        assert "alpha=0.5 dropped" in capsys.readouterr().out


class TestVerbose:
    def test_progress_lines(self, sparse_data, grid_config, capsys):
        X, y, _ = sparse_data
        grid_search(X, y, grid_config.replace(verbose=True))

        out = capsys.readouterr().out
        assert "[grid] 3 alphas x 4 folds" in out
        assert "[grid] selected alpha=" in out
