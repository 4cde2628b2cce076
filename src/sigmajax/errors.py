"""Exception types raised by sigmajax.

Every error derives from :class:`EstimationError`. The concrete types also
derive from the builtin (or NumPy) exception a caller would otherwise
expect, so ``except ValueError`` keeps working for shape and configuration
problems and ``except numpy.linalg.LinAlgError`` for numerical failures.

- :class:`DimensionMismatchError` -- array shapes disagree with the state,
  measurement, or weight dimension.
- :class:`NumericalInstabilityError` -- a covariance square root or linear
  solve failed. The offending matrix is named in ``matrix_name``.
- :class:`ConfigurationError` -- a model capability is missing, scaling
  parameters are invalid, association weights are malformed, or a
  smoothing history lacks a predicted entry.
"""

from __future__ import annotations

import numpy as np


class EstimationError(Exception):
    """Base class for all sigmajax errors."""


class DimensionMismatchError(EstimationError, ValueError):
    """Array dimensions are inconsistent with the declared state or measurement size."""


class ConfigurationError(EstimationError, ValueError):
    """A model, scaling parameter, weight vector, or history is malformed."""


class NumericalInstabilityError(EstimationError, np.linalg.LinAlgError):
    """A covariance factorization or linear solve produced non-finite values.

    Attributes:
        matrix_name: Human-readable name of the matrix that failed, e.g.
            ``"state covariance"`` or ``"innovation covariance"``.
    """

    def __init__(self, message: str, matrix_name: str | None = None) -> None:
        super().__init__(message)
        self.matrix_name = matrix_name
