"""Type definitions for sigma point state estimation.

Provides the core data types used across the estimation engine:

- :class:`FilterState`: State estimate and covariance matrix.
- :class:`UKFConfig`: Scaling parameters for the unscented transform.
- :class:`SigmaPoints`: A weighted, deterministic sample set.
- :class:`TransformResult`: Sigma points pushed through a function, with
  the reconstructed mean and covariance.
- :class:`UKFPrediction`: Output of the predict step. Holds everything the
  update step needs so no model is required to apply a measurement.
- :class:`FilterResult`: Output of an update step, containing the updated
  state plus diagnostic information for filter tuning.
- :class:`FilteredEstimate`: One entry of a forward-pass history, consumed
  by the smoother.

All types are :class:`~typing.NamedTuple` instances, which JAX treats as
pytrees automatically. This means they work seamlessly with ``jax.jit``,
``jax.vmap``, and ``jax.lax`` control flow primitives.
"""

from __future__ import annotations

from typing import NamedTuple

from jax import Array


class FilterState(NamedTuple):
    """State of a Kalman filter.

    Holds the current state estimate and error covariance matrix. Returned
    as the ``state`` field of :class:`UKFPrediction` and
    :class:`FilterResult`.

    Attributes:
        x: State estimate vector of shape ``(n,)``.
        P: Error covariance matrix of shape ``(n, n)``. Must be symmetric
            positive semi-definite.
    """

    x: Array
    P: Array


class UKFConfig(NamedTuple):
    """Scaling parameters for the unscented transform.

    Controls the sigma point spread and weighting using the scaled unscented
    transform (Wan and Van der Merwe). The derived scalar
    ``lambda = alpha**2 * (n + kappa) - n`` sets both the spread of the
    points and the centre weights.

    Attributes:
        alpha: Spread of sigma points around the mean. Must be positive.
            Default: 0.5.
        beta: Prior knowledge of the state distribution. ``beta=2.0``
            is optimal for Gaussian distributions. Default: 2.0.
        kappa: Secondary scaling parameter. Default: 0.0.
    """

    alpha: float = 0.5
    beta: float = 2.0
    kappa: float = 0.0


class SigmaPoints(NamedTuple):
    """A deterministic sigma point set with its weight vectors.

    Point 0 is the unperturbed mean, points ``1..n`` lie at mean plus a
    square-root column and points ``n+1..2n`` at mean minus that column.

    Attributes:
        points: Sigma points of shape ``(2n+1, n)``.
        Wm: Mean weights of shape ``(2n+1,)``. Sum to one.
        Wc: Covariance weights of shape ``(2n+1,)``.
    """

    points: Array
    Wm: Array
    Wc: Array

    @property
    def mean(self) -> Array:
        """The unperturbed centre point."""
        return self.points[0]


class TransformResult(NamedTuple):
    """Sigma points after an unscented transform.

    Attributes:
        points: Transformed points of shape ``(2n+1, m)``.
        mean: Weighted mean of shape ``(m,)``.
        covariance: Weighted covariance of shape ``(m, m)``, including any
            additive noise supplied to the transform.
    """

    points: Array
    mean: Array
    covariance: Array


class UKFPrediction(NamedTuple):
    """Result of a UKF predict step.

    All fields come from the same sigma point propagation and are
    mutually consistent.

    Attributes:
        state: Predicted :class:`FilterState` ``(x_pred, P_pred)``.
        measurement_mean: Predicted measurement of shape ``(m,)``.
        innovation_covariance: Innovation covariance ``S`` of shape
            ``(m, m)``, including measurement noise.
        cross_covariance: State-measurement cross-covariance ``Pxz`` of
            shape ``(n, m)``.
    """

    state: FilterState
    measurement_mean: Array
    innovation_covariance: Array
    cross_covariance: Array


class FilterResult(NamedTuple):
    """Result of a filter measurement update step.

    Returned by ``ukf_update`` and ``ukf_update_pda``. Contains the updated
    filter state along with diagnostic quantities useful for filter
    tuning and health monitoring.

    Attributes:
        state: Updated :class:`FilterState` after incorporating the
            measurement.
        innovation: Measurement residual ``z - z_pred`` of shape ``(m,)``.
            For the multi-hypothesis update this is the association-weighted
            combined innovation.
        innovation_covariance: Innovation covariance ``S`` of shape
            ``(m, m)``. The normalized innovation squared
            ``innovation.T @ S^{-1} @ innovation`` should follow a
            chi-squared distribution with ``m`` degrees of freedom.
        kalman_gain: Kalman gain matrix ``K`` of shape ``(n, m)``.
    """

    state: FilterState
    innovation: Array
    innovation_covariance: Array
    kalman_gain: Array


class FilteredEstimate(NamedTuple):
    """One timestep of a forward filtering history.

    The smoother reads ``x_pred`` and ``P_pred`` of entry ``k+1`` together
    with ``x`` and ``P`` of entry ``k``. The first entry of a history may
    leave the predicted fields as ``None`` (e.g. an initial prior).

    Attributes:
        x: Filtered state mean of shape ``(n,)``.
        P: Filtered state covariance of shape ``(n, n)``.
        x_pred: Predicted state mean that produced ``x``, or ``None``.
        P_pred: Predicted state covariance that produced ``P``, or ``None``.
    """

    x: Array
    P: Array
    x_pred: Array | None = None
    P_pred: Array | None = None
