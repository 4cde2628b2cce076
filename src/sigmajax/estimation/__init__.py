"""Sigma point state estimation.

Provides the Unscented Kalman Filter building blocks: sigma point
generation, the unscented transform, predict and update steps (single
measurement and probabilistic data association), the unscented
Rauch-Tung-Striebel smoother, and a forward filtering pass. Model
interfaces are in the :mod:`sigmajax.models` module.

Available components:

- :class:`FilterState` -- Filter state (estimate and covariance)
- :class:`UKFConfig` -- Unscented transform scaling parameters
- :class:`SigmaPoints` -- Sigma points with mean and covariance weights
- :class:`TransformResult` -- Transformed points with mean and covariance
- :class:`UKFPrediction` -- Predicted state and measurement statistics
- :class:`FilterResult` -- Update result with diagnostics
- :class:`FilteredEstimate` -- Forward-pass history entry
- :class:`UnscentedSigmaPoints` -- Scaled unscented sigma point strategy
- :class:`CubatureSigmaPoints` -- Spherical-radial cubature strategy
- :func:`sigma_points` -- Scaled unscented sigma points and weights
- :func:`unscented_transform` -- Propagate sigma points through a function
- :func:`cross_covariance` -- Cross-covariance of original and transformed points
- :func:`ukf_predict` -- State and measurement prediction
- :func:`ukf_predict_state` -- State-only prediction
- :func:`ukf_update` -- Single measurement update
- :func:`ukf_update_pda` -- Association-weighted multi-measurement update
- :func:`ukf_smooth` -- Unscented RTS smoother
- :func:`ukf_filter` -- Forward filtering pass
- :class:`UnscentedKalmanFilter` -- Model-bound filter engine

The step functions are compatible with ``jax.jit`` and ``jax.lax.scan``.
"""

from sigmajax.estimation._types import (
    FilteredEstimate,
    FilterResult,
    FilterState,
    SigmaPoints,
    TransformResult,
    UKFConfig,
    UKFPrediction,
)
from sigmajax.estimation.filter import UnscentedKalmanFilter, ukf_filter
from sigmajax.estimation.sigma_points import (
    CubatureSigmaPoints,
    SigmaPointStrategy,
    UnscentedSigmaPoints,
    as_strategy,
    scaling_lambda,
    sigma_points,
)
from sigmajax.estimation.smoother import rts_step, ukf_smooth
from sigmajax.estimation.transform import (
    cross_covariance,
    reconstruct,
    unscented_transform,
)
from sigmajax.estimation.ukf import (
    ukf_predict,
    ukf_predict_state,
    ukf_update,
    ukf_update_pda,
)

__all__ = [
    "FilterState",
    "UKFConfig",
    "SigmaPoints",
    "TransformResult",
    "UKFPrediction",
    "FilterResult",
    "FilteredEstimate",
    "SigmaPointStrategy",
    "UnscentedSigmaPoints",
    "CubatureSigmaPoints",
    "as_strategy",
    "scaling_lambda",
    "sigma_points",
    "unscented_transform",
    "reconstruct",
    "cross_covariance",
    "ukf_predict",
    "ukf_predict_state",
    "ukf_update",
    "ukf_update_pda",
    "rts_step",
    "ukf_smooth",
    "ukf_filter",
    "UnscentedKalmanFilter",
]
