"""Unscented Kalman Filter (UKF) predict and update functions.

Implements the scaled Unscented Kalman Filter. The dynamic and observation
models are applied to sigma points via ``jax.vmap`` for efficient parallel
evaluation.

The predict step advances the state through the dynamic (and optional
control) model, then resamples sigma points from the predicted state and
pushes them through the observation model. It returns a
:class:`~sigmajax.estimation.UKFPrediction` that holds the predicted state,
predicted measurement, innovation covariance and cross-covariance, so the
update steps need no access to the models:

- :func:`ukf_update` -- single measurement update.
- :func:`ukf_update_pda` -- probabilistic data association update over
  several candidate measurements weighted by association probabilities.

The Kalman gain is obtained with a Cholesky solve, never an explicit
inverse. A singular or indefinite innovation covariance raises
:class:`~sigmajax.errors.NumericalInstabilityError`.

These are building-block functions designed to compose with Python loops
or ``jax.lax.scan`` for sequential filtering.
"""

from __future__ import annotations

from collections.abc import Callable

import jax.numpy as jnp
from jax import Array
from jax.scipy.linalg import cho_solve
from jax.typing import ArrayLike

from sigmajax.config import get_dtype, get_tolerance
from sigmajax.errors import ConfigurationError, DimensionMismatchError
from sigmajax.estimation._checks import (
    check_finite,
    check_positive_definite,
    check_square,
    check_vector,
    is_traced,
    symmetrize,
)
from sigmajax.estimation._types import (
    FilterResult,
    FilterState,
    UKFConfig,
    UKFPrediction,
)
from sigmajax.estimation.sigma_points import SigmaPointStrategy, as_strategy
from sigmajax.estimation.transform import cross_covariance, unscented_transform
from sigmajax.models import StateSpaceModel, validate_model

_DEFAULT_UKF_CONFIG = UKFConfig()


def _propagate_fn(model: StateSpaceModel) -> Callable[[Array], Array]:
    """Return ``x -> f(x) + b(x)``, or plain ``f`` without a control model."""
    transition = model.dynamics.transition
    if model.control is None:
        return transition
    control_effect = model.control.control_effect

    def propagate(x: Array) -> Array:
        return transition(x) + control_effect(x)

    return propagate


def _process_noise(model: StateSpaceModel, n: int) -> Array:
    """Return ``Q``, plus ``Qu`` when a control model is present."""
    dtype = get_dtype()
    Q = jnp.asarray(model.dynamics.process_noise_covariance(), dtype=dtype)
    check_square(Q, "process noise covariance", n)
    if model.control is not None:
        Qu = jnp.asarray(model.control.control_noise_covariance(), dtype=dtype)
        check_square(Qu, "control noise covariance", n)
        Q = Q + Qu
    return Q


def _predict_state(
    x: Array,
    P: Array,
    model: StateSpaceModel,
    strategy: SigmaPointStrategy,
) -> FilterState:
    n = x.shape[0]
    sigma = strategy.generate(x, P, name="state covariance")
    propagated = unscented_transform(
        sigma, _propagate_fn(model), _process_noise(model, n), name="process noise covariance"
    )
    check_vector(propagated.mean, "propagated state", n)
    return FilterState(x=propagated.mean, P=propagated.covariance)


def _as_filter_arrays(filter_state: FilterState) -> tuple[Array, Array]:
    dtype = get_dtype()
    x = jnp.asarray(filter_state.x, dtype=dtype)
    P = jnp.asarray(filter_state.P, dtype=dtype)
    n = check_vector(x, "state mean")
    check_square(P, "state covariance", n)
    return x, P


def ukf_predict_state(
    filter_state: FilterState,
    model: StateSpaceModel,
    config: UKFConfig | SigmaPointStrategy = _DEFAULT_UKF_CONFIG,
) -> FilterState:
    """Propagate the filter state forward one timestep without predicting a measurement.

    Generates sigma points from the current state, propagates each through
    the dynamic model (plus the control offset, if any), and reconstructs
    the predicted mean and covariance with ``Q`` (and ``Qu``) added. Use
    this for timesteps without a measurement; it does not require an
    observation model.

    Args:
        filter_state: Current filter state ``(x, P)``.
        model: State-space model. Only ``dynamics`` and ``control`` are used.
        config: Scaling parameters or a sigma point strategy.
            Default: ``UKFConfig()``.

    Returns:
        FilterState: Predicted state and covariance ``(x_pred, P_pred)``.

    Raises:
        ConfigurationError: If the model lacks a dynamic model.
        DimensionMismatchError: If model outputs or noise covariances do
            not match the state dimension.
        NumericalInstabilityError: If the state covariance is not positive
            definite.
    """
    validate_model(model, require_observation=False)
    strategy = as_strategy(config)
    x, P = _as_filter_arrays(filter_state)
    return _predict_state(x, P, model, strategy)


def ukf_predict(
    filter_state: FilterState,
    model: StateSpaceModel,
    config: UKFConfig | SigmaPointStrategy = _DEFAULT_UKF_CONFIG,
) -> UKFPrediction:
    """Predict the next state and measurement distribution using sigma points.

    1. Generates sigma points from the current state and covariance.
    2. Propagates them through the dynamic model, adding the control
       offset when a control model is present.
    3. Reconstructs the predicted mean and covariance, adding ``Q``
       (and ``Qu``).
    4. Resamples sigma points from the predicted distribution.
    5. Propagates the fresh points through the observation model.
    6. Reconstructs the predicted measurement and innovation covariance
       (adding ``R``), and the state-measurement cross-covariance.

    Args:
        filter_state: Current filter state ``(x, P)``.
        model: State-space model with dynamics and observation models.
        config: Scaling parameters or a sigma point strategy.
            Default: ``UKFConfig()``.

    Returns:
        UKFPrediction: Predicted state, predicted measurement, innovation
            covariance and cross-covariance.

    Raises:
        ConfigurationError: If the model lacks a dynamic or observation
            model, or a required model operation.
        DimensionMismatchError: If model outputs or noise covariances do
            not match the state or measurement dimension.
        NumericalInstabilityError: If the current or predicted state
            covariance is not positive definite.

    Examples:
        ```python
        import jax.numpy as jnp
        from sigmajax.estimation import FilterState, ukf_predict
        from sigmajax.models import (
            LinearDynamicModel,
            LinearObservationModel,
            StateSpaceModel,
        )

        model = StateSpaceModel(
            dynamics=LinearDynamicModel(jnp.array([[1.0, 1.0], [0.0, 1.0]]), jnp.eye(2) * 0.01),
            observation=LinearObservationModel(jnp.array([[1.0, 0.0]]), jnp.array([[0.1]])),
        )
        pred = ukf_predict(FilterState(x=jnp.array([0.0, 1.0]), P=jnp.eye(2)), model)
        ```
    """
    validate_model(model, require_observation=True)
    strategy = as_strategy(config)
    x, P = _as_filter_arrays(filter_state)

    predicted = _predict_state(x, P, model, strategy)

    # Fresh sigma points from the predicted distribution
    sigma = strategy.generate(predicted.x, predicted.P, name="predicted state covariance")

    R = model.observation.measurement_noise_covariance()
    meas = unscented_transform(
        sigma, model.observation.measurement, R, name="measurement noise covariance"
    )

    Pxz = cross_covariance(sigma, meas)

    return UKFPrediction(
        state=predicted,
        measurement_mean=meas.mean,
        innovation_covariance=meas.covariance,
        cross_covariance=Pxz,
    )


def _unpack_prediction(prediction: UKFPrediction) -> tuple[Array, Array, Array, Array, Array]:
    dtype = get_dtype()
    x, P = _as_filter_arrays(prediction.state)
    z_pred = jnp.asarray(prediction.measurement_mean, dtype=dtype)
    S = jnp.asarray(prediction.innovation_covariance, dtype=dtype)
    Pxz = jnp.asarray(prediction.cross_covariance, dtype=dtype)

    n = x.shape[0]
    m = check_vector(z_pred, "predicted measurement")
    check_square(S, "innovation covariance", m)
    if Pxz.shape != (n, m):
        raise DimensionMismatchError(
            f"cross covariance must have shape ({n}, {m}), got {Pxz.shape}"
        )
    return x, P, z_pred, S, Pxz


def _kalman_gain(Pxz: Array, S: Array) -> Array:
    # K = Pxz @ S^{-1}, computed as K^T = S^{-1} Pxz^T (S is SPD)
    check_positive_definite(S, "innovation covariance")
    L = jnp.linalg.cholesky(S)
    K = cho_solve((L, True), Pxz.T).T
    check_finite(K, "innovation covariance")
    return K


def ukf_update(
    prediction: UKFPrediction,
    z: ArrayLike,
) -> FilterResult:
    """Incorporate a single measurement into a predicted state.

    Computes the Kalman gain ``K = Pxz S^{-1}`` and corrects the predicted
    state::

        x = x_pred + K (z - z_pred)
        P = P_pred - K S K^T

    Args:
        prediction: Output of :func:`ukf_predict`.
        z: Measurement vector of shape ``(m,)``.

    Returns:
        FilterResult: Updated state, innovation, innovation covariance,
            and Kalman gain.

    Raises:
        DimensionMismatchError: If ``z`` does not match the predicted
            measurement dimension.
        NumericalInstabilityError: If the innovation covariance is singular.

    Examples:
        ```python
        result = ukf_update(pred, jnp.array([1.05]))
        result.state.x
        ```
    """
    dtype = get_dtype()
    x, P, z_pred, S, Pxz = _unpack_prediction(prediction)
    z = jnp.asarray(z, dtype=dtype)
    check_vector(z, "measurement", z_pred.shape[0])

    innovation = z - z_pred

    K = _kalman_gain(Pxz, S)

    x_upd = x + K @ innovation
    P_upd = symmetrize(P - K @ S @ K.T)

    return FilterResult(
        state=FilterState(x=x_upd, P=P_upd),
        innovation=innovation,
        innovation_covariance=S,
        kalman_gain=K,
    )


def _check_association_weights(weights: Array) -> None:
    if is_traced(weights):
        return
    if not bool(jnp.all(jnp.isfinite(weights))):
        raise ConfigurationError(f"Association weights must be finite, got {weights}")
    if bool(jnp.any(weights < 0)):
        raise ConfigurationError(f"Association weights must be non-negative, got {weights}")
    total = float(jnp.sum(weights))
    if abs(total - 1.0) > get_tolerance():
        raise ConfigurationError(f"Association weights must sum to 1, got {total}")


def ukf_update_pda(
    prediction: UKFPrediction,
    measurements: ArrayLike,
    weights: ArrayLike | None = None,
) -> FilterResult:
    """Incorporate several candidate measurements weighted by association probability.

    Implements the probabilistic data association (PDA/JPDA) update of
    Bar-Shalom et al. With innovations ``v_j = z_j - z_pred`` and
    association weights ``beta_0`` (no detection) ... ``beta_m``::

        v = sum_j beta_j v_j
        x = x_pred + K v
        P = beta_0 P_pred + (1 - beta_0) (P_pred - K S K^T)
            + K (sum_j beta_j v_j v_j^T - v v^T) K^T

    The last term inflates the covariance by the spread of the innovations,
    which accounts for not knowing which hypothesis is correct. With
    ``weights = [0, 1]`` this reduces exactly to :func:`ukf_update`.

    Args:
        prediction: Output of :func:`ukf_predict`.
        measurements: Candidate measurements of shape ``(k, m)``. Pass an
            empty array for a scan with no detections.
        weights: Association weights of shape ``(k + 1,)`` summing to one,
            index 0 being the dummy (no detection) hypothesis. Default:
            ``[0, 1/k, ..., 1/k]``, or ``[1]`` when ``k == 0``.

    Returns:
        FilterResult: Updated state, combined innovation, innovation
            covariance and Kalman gain.

    Raises:
        DimensionMismatchError: If the measurements are not ``(k, m)`` or
            the weights are not of length ``k + 1``.
        ConfigurationError: If the weights are negative or do not sum to one.
        NumericalInstabilityError: If the innovation covariance is singular.

    Examples:
        ```python
        zs = jnp.array([[1.0], [1.3]])
        result = ukf_update_pda(pred, zs, jnp.array([0.1, 0.6, 0.3]))
        ```
    """
    dtype = get_dtype()
    x, P, z_pred, S, Pxz = _unpack_prediction(prediction)
    m = z_pred.shape[0]

    Z = jnp.asarray(measurements, dtype=dtype)
    if Z.size == 0:
        Z = jnp.zeros((0, m), dtype=dtype)
    if Z.ndim != 2 or Z.shape[1] != m:
        raise DimensionMismatchError(
            f"measurements must have shape (k, {m}), got {Z.shape}"
        )
    k = Z.shape[0]

    if weights is None:
        if k == 0:
            weights = jnp.ones(1, dtype=dtype)
        else:
            weights = jnp.concatenate(
                [jnp.zeros(1, dtype=dtype), jnp.full(k, 1.0 / k, dtype=dtype)]
            )
    weights = jnp.asarray(weights, dtype=dtype)
    check_vector(weights, "association weights", k + 1)
    _check_association_weights(weights)

    beta_0 = weights[0]
    beta = weights[1:]

    innovations = Z - z_pred[None, :]
    innovation = jnp.einsum("j,jm->m", beta, innovations)

    K = _kalman_gain(Pxz, S)

    # Spread of innovations
    spread = jnp.einsum("j,jm,jl->ml", beta, innovations, innovations) - jnp.outer(
        innovation, innovation
    )

    x_upd = x + K @ innovation
    P_upd = P - (1.0 - beta_0) * (K @ S @ K.T) + K @ spread @ K.T

    return FilterResult(
        state=FilterState(x=x_upd, P=symmetrize(P_upd)),
        innovation=innovation,
        innovation_covariance=S,
        kalman_gain=K,
    )
