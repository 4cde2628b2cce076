"""Forward filtering pass and a model-bound filter engine.

:func:`ukf_filter` runs predict/update over a sequence of measurements and
records one :class:`~sigmajax.estimation.FilteredEstimate` per timestep,
ready to be handed to :func:`~sigmajax.estimation.ukf_smooth`.

:class:`UnscentedKalmanFilter` binds a :class:`~sigmajax.models.StateSpaceModel`
and a sigma point strategy so they need not be passed to every call. It
keeps no estimate of its own; each method returns a fresh immutable value.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from jax.typing import ArrayLike

from sigmajax.estimation._types import (
    FilteredEstimate,
    FilterResult,
    FilterState,
    UKFConfig,
    UKFPrediction,
)
from sigmajax.estimation.sigma_points import (
    SigmaPointStrategy,
    UnscentedSigmaPoints,
    as_strategy,
)
from sigmajax.estimation.smoother import ukf_smooth
from sigmajax.estimation.ukf import (
    ukf_predict,
    ukf_predict_state,
    ukf_update,
    ukf_update_pda,
)
from sigmajax.models import StateSpaceModel

logger = logging.getLogger(__name__)

_DEFAULT_UKF_CONFIG = UKFConfig()


def ukf_filter(
    prior: FilterState,
    measurements: Iterable[ArrayLike | None],
    model: StateSpaceModel,
    config: UKFConfig | SigmaPointStrategy = _DEFAULT_UKF_CONFIG,
) -> list[FilteredEstimate]:
    """Run the UKF forward over a measurement sequence.

    For every measurement the prior (or previous filtered estimate) is
    predicted one step ahead and then corrected. A ``None`` measurement is
    treated as a missed detection: only the state prediction is made and
    the filtered estimate equals the prediction.

    Args:
        prior: Initial state distribution ``(x0, P0)``.
        measurements: One measurement vector (or ``None``) per timestep.
        model: State-space model with dynamics and observation models.
        config: Scaling parameters or a sigma point strategy.
            Default: ``UKFConfig()``.

    Returns:
        list[FilteredEstimate]: One entry per timestep, each holding the
            filtered estimate and the prediction that produced it.

    Examples:
        ```python
        history = ukf_filter(FilterState(x=x0, P=P0), [z1, None, z3], model)
        history[-1].x
        ```
    """
    strategy = as_strategy(config)
    history: list[FilteredEstimate] = []
    state = prior

    for k, z in enumerate(measurements):
        if z is None:
            predicted = ukf_predict_state(state, model, strategy)
            state = predicted
            logger.debug("Step %d: no measurement, prediction only", k)
        else:
            prediction = ukf_predict(state, model, strategy)
            predicted = prediction.state
            state = ukf_update(prediction, z).state
        history.append(
            FilteredEstimate(x=state.x, P=state.P, x_pred=predicted.x, P_pred=predicted.P)
        )

    logger.info("Filtered %d timesteps", len(history))
    return history


@dataclass(frozen=True)
class UnscentedKalmanFilter:
    """Sigma point Kalman filter bound to a model and a sigma point strategy.

    Args:
        model: State-space model (dynamics, observation, optional control).
        strategy: Sigma point strategy, or a :class:`UKFConfig` which is
            wrapped in :class:`UnscentedSigmaPoints`. Default: unscented
            points with ``alpha=0.5``, ``beta=2.0``, ``kappa=0.0``.

    Examples:
        ```python
        ukf = UnscentedKalmanFilter(model, UKFConfig(alpha=1.0))
        prediction = ukf.predict(FilterState(x=x0, P=P0))
        result = ukf.update(prediction, z)
        smoothed = ukf.smooth(ukf.filter(FilterState(x=x0, P=P0), zs))
        ```
    """

    model: StateSpaceModel
    strategy: UKFConfig | SigmaPointStrategy = field(default_factory=UnscentedSigmaPoints)

    def __post_init__(self) -> None:
        object.__setattr__(self, "strategy", as_strategy(self.strategy))

    def predict(self, filter_state: FilterState) -> UKFPrediction:
        """Predict the next state and measurement. See :func:`ukf_predict`."""
        return ukf_predict(filter_state, self.model, self.strategy)

    def predict_state(self, filter_state: FilterState) -> FilterState:
        """Predict the next state only. See :func:`ukf_predict_state`."""
        return ukf_predict_state(filter_state, self.model, self.strategy)

    def update(self, prediction: UKFPrediction, z: ArrayLike) -> FilterResult:
        """Apply a single measurement. See :func:`ukf_update`."""
        return ukf_update(prediction, z)

    def update_pda(
        self,
        prediction: UKFPrediction,
        measurements: ArrayLike,
        weights: ArrayLike | None = None,
    ) -> FilterResult:
        """Apply association-weighted measurements. See :func:`ukf_update_pda`."""
        return ukf_update_pda(prediction, measurements, weights)

    def filter(
        self,
        prior: FilterState,
        measurements: Iterable[ArrayLike | None],
    ) -> list[FilteredEstimate]:
        """Run the forward pass. See :func:`ukf_filter`."""
        return ukf_filter(prior, measurements, self.model, self.strategy)

    def smooth(self, history: Sequence[FilteredEstimate]) -> list[FilteredEstimate]:
        """Smooth a forward-pass history. See :func:`ukf_smooth`."""
        return ukf_smooth(history, self.model, self.strategy)
