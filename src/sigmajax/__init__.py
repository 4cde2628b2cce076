"""
sigmajax is a sigma point (unscented) Kalman filtering and smoothing library implemented in JAX.
"""

from .config import set_dtype, get_dtype, get_tolerance

from .errors import (
    EstimationError,
    DimensionMismatchError,
    NumericalInstabilityError,
    ConfigurationError,
)

from .models import (
    DynamicModel,
    ObservationModel,
    ControlModel,
    StateSpaceModel,
    LinearDynamicModel,
    NonlinearDynamicModel,
    LinearObservationModel,
    NonlinearObservationModel,
    LinearControlModel,
)

from .estimation import (
    FilterState,
    UKFConfig,
    SigmaPoints,
    UKFPrediction,
    FilterResult,
    FilteredEstimate,
    UnscentedSigmaPoints,
    CubatureSigmaPoints,
    sigma_points,
    unscented_transform,
    cross_covariance,
    ukf_predict,
    ukf_predict_state,
    ukf_update,
    ukf_update_pda,
    ukf_smooth,
    ukf_filter,
    UnscentedKalmanFilter,
)

__all__ = [
    # Config
    "set_dtype",
    "get_dtype",
    "get_tolerance",
    # Errors
    "EstimationError",
    "DimensionMismatchError",
    "NumericalInstabilityError",
    "ConfigurationError",
    # Models
    "DynamicModel",
    "ObservationModel",
    "ControlModel",
    "StateSpaceModel",
    "LinearDynamicModel",
    "NonlinearDynamicModel",
    "LinearObservationModel",
    "NonlinearObservationModel",
    "LinearControlModel",
    # Estimation
    "FilterState",
    "UKFConfig",
    "SigmaPoints",
    "UKFPrediction",
    "FilterResult",
    "FilteredEstimate",
    "UnscentedSigmaPoints",
    "CubatureSigmaPoints",
    "sigma_points",
    "unscented_transform",
    "cross_covariance",
    "ukf_predict",
    "ukf_predict_state",
    "ukf_update",
    "ukf_update_pda",
    "ukf_smooth",
    "ukf_filter",
    "UnscentedKalmanFilter",
]
