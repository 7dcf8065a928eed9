"""Tests for FitConfig validation and YAML loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from regpath.config import DEFAULT_ALPHAS, FitConfig, load_config
from regpath.errors import InvalidHyperparameterError

PROJECT_ROOT = Path(__file__).parent.parent


class TestFitConfigDefaults:
    """Default values."""

    def test_default_values(self):
        """Defaults should match the documented options."""
        config = FitConfig()

        assert config.alpha == 1.0
        assert config.n_lambda == 100
        assert config.nfolds == 10
        assert config.standardize is True
        assert config.fit_intercept is True
        assert config.measure is None
        assert config.loss_measure == "mse"
        assert config.family == "gaussian"
        assert config.tol == 1e-7
        assert config.selection == "min"
        assert config.lambda_path is None

    def test_measure_follows_family(self):
        """Without an explicit measure, binomial fits are scored by deviance."""
        assert FitConfig(family="binomial").loss_measure == "deviance"
        assert FitConfig(family="binomial", measure="mse").loss_measure == "mse"
        assert FitConfig(measure="mae").replace(family="binomial").loss_measure == "mae"
        assert FitConfig().replace(family="binomial").loss_measure == "deviance"

    def test_default_alpha_grid(self):
        """The default grid spans [0, 1] in 11 steps."""
        assert len(DEFAULT_ALPHAS) == 11
        assert DEFAULT_ALPHAS[0] == 0.0
        assert DEFAULT_ALPHAS[-1] == 1.0
        assert DEFAULT_ALPHAS[5] == pytest.approx(0.5)

    def test_defaults_validate(self):
        """The default config is valid."""
        assert FitConfig().validate() == FitConfig()


class TestReplace:
    """Override behaviour."""

    def test_none_values_are_ignored(self):
        config = FitConfig(nfolds=5).replace(nfolds=None, alpha=0.3)

        assert config.nfolds == 5
        assert config.alpha == 0.3

    def test_sequences_become_tuples(self):
        config = FitConfig().replace(alphas=[0, 1], lambda_path=[1, 0.1])

        assert config.alphas == (0.0, 1.0)
        assert config.lambda_path == (1.0, 0.1)


class TestValidate:
    """Invalid hyperparameters are rejected."""

    @pytest.mark.parametrize(
        "changes",
        [
            {"alpha": -0.1},
            {"alpha": 1.5},
            {"alphas": (0.0, 2.0)},
            {"alphas": ()},
            {"lambda_path": (1.0, -0.5)},
            {"lambda_path": (1.0, 1.0)},
            {"nfolds": 1},
            {"max_iter": 0},
            {"tol": 0.0},
            {"n_lambda": 0},
            {"lambda_min_ratio": 1.5},
            {"measure": "auc"},
            {"family": "poisson"},
            {"selection": "2se"},
            {"backend": "mpi"},
            {"n_jobs": 0},
            {"time_budget": -1.0},
        ],
    )
    def test_invalid_values_raise(self, changes):
        with pytest.raises(InvalidHyperparameterError):
            FitConfig(**changes).validate()

    def test_error_is_value_error(self):
        """Validation errors can be caught as ValueError."""
        with pytest.raises(ValueError, match="alpha"):
            FitConfig(alpha=2.0).validate()


class TestFromMapping:
    """Building configs from YAML sections."""

    def test_types_are_coerced(self):
        config = FitConfig.from_mapping(
            {"alpha": "0.5", "nfolds": "5", "alphas": [0, 1], "stratify": 1, "measure": "mae"}
        )

        assert config.alpha == 0.5
        assert config.nfolds == 5
        assert config.alphas == (0.0, 1.0)
        assert config.stratify is True
        assert config.measure == "mae"

    def test_unknown_keys_raise(self):
        with pytest.raises(InvalidHyperparameterError, match="Unknown"):
            FitConfig.from_mapping({"l1_ratio": 0.5})


class TestLoadConfig:
    """YAML loading."""

    def test_load_section(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("regpath:\n  nfolds: 4\n  selection: 1se\n  lambda_path: null\n", encoding="utf-8")

        config = load_config(path)

        assert config.nfolds == 4
        assert config.selection == "1se"
        assert config.lambda_path is None

    def test_missing_section_raises(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("other: {}\n", encoding="utf-8")

        with pytest.raises(KeyError, match="regpath"):
            load_config(path)

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_values_in_yaml_raise(self, tmp_path):
        path = tmp_path / "cfg.yaml"
        path.write_text("regpath:\n  nfolds: 1\n", encoding="utf-8")

        with pytest.raises(InvalidHyperparameterError):
            load_config(path)

    def test_shipped_config_loads(self):
        """configs/regpath.yaml matches the defaults."""
        config = load_config(PROJECT_ROOT / "configs" / "regpath.yaml")

        assert config == FitConfig()
