"""Exceptions and warnings raised by the regularized regression core."""

from __future__ import annotations

from sklearn.exceptions import ConvergenceWarning


class RegPathError(Exception):
    """Base class for every error raised by regpath."""


class InvalidHyperparameterError(RegPathError, ValueError):
    """A configuration value is out of range (raised before data is touched)."""


class DegenerateInputError(RegPathError, ValueError):
    """The design matrix or target cannot be fit (e.g. zero-variance column)."""


class FoldImbalanceError(RegPathError, ValueError):
    """A stratum holds fewer observations than there are folds."""


class SearchCancelledError(RegPathError):
    """The time budget ran out before the cross-validation or grid search completed."""


class NonConvergenceWarning(ConvergenceWarning):
    """Coordinate descent hit ``max_iter`` before meeting the tolerance."""
