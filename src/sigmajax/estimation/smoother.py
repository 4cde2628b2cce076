"""Unscented Rauch-Tung-Striebel (URTS) smoother.

Refines a forward filtering history using all later information, following
S. Särkkä, "Unscented Rauch-Tung-Striebel Smoother", IEEE Transactions on
Automatic Control 53(3), 2008.

The last filtered estimate is already conditioned on every measurement and
is kept as is. Walking backward, each step regenerates sigma points from
the filtered estimate at ``k``, propagates them through the dynamic model
and uses their cross-covariance with the propagated images to form the
smoother gain ``D = C P_pred[k+1]^{-1}``.

The recursion has a data dependency from ``k+1`` to ``k``, so timesteps are
processed strictly in reverse. :func:`rts_step` is the pure per-step
function and may be ``jax.jit``-compiled on its own.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

import jax.numpy as jnp
import numpy as np
from jax import Array
from jax.scipy.linalg import cho_solve

from sigmajax.config import get_dtype, get_tolerance
from sigmajax.errors import ConfigurationError, DimensionMismatchError
from sigmajax.estimation._checks import (
    check_finite,
    check_positive_definite,
    is_traced,
    symmetrize,
)
from sigmajax.estimation._types import FilteredEstimate, FilterState, UKFConfig
from sigmajax.estimation.sigma_points import SigmaPointStrategy, as_strategy
from sigmajax.estimation.transform import cross_covariance, unscented_transform
from sigmajax.estimation.ukf import _propagate_fn
from sigmajax.models import StateSpaceModel, validate_model

logger = logging.getLogger(__name__)

_DEFAULT_UKF_CONFIG = UKFConfig()


def rts_step(
    filtered: FilterState,
    predicted_next: FilterState,
    smoothed_next: FilterState,
    model: StateSpaceModel,
    config: UKFConfig | SigmaPointStrategy = _DEFAULT_UKF_CONFIG,
) -> tuple[FilterState, Array]:
    """Run one backward step of the unscented RTS smoother.

    Args:
        filtered: Filtered estimate ``(x, P)`` at step ``k``.
        predicted_next: Predicted estimate ``(x_pred, P_pred)`` at step
            ``k+1``, as produced by the forward pass.
        smoothed_next: Smoothed estimate at step ``k+1``.
        model: State-space model used by the forward pass. Only
            ``dynamics`` and ``control`` are used.
        config: Scaling parameters or sigma point strategy used by the
            forward pass. Default: ``UKFConfig()``.

    Returns:
        A tuple ``(smoothed, propagated_mean)`` where ``smoothed`` is the
        smoothed :class:`FilterState` at step ``k`` and
        ``propagated_mean`` the one-step prediction recomputed from the
        filtered estimate, for consistency checks against
        ``predicted_next.x``.

    Raises:
        NumericalInstabilityError: If the filtered covariance at ``k`` is
            not positive definite or the predicted covariance at ``k+1`` is
            singular or indefinite.
    """
    dtype = get_dtype()
    strategy = as_strategy(config)

    x = jnp.asarray(filtered.x, dtype=dtype)
    P = jnp.asarray(filtered.P, dtype=dtype)
    x_pred = jnp.asarray(predicted_next.x, dtype=dtype)
    P_pred = jnp.asarray(predicted_next.P, dtype=dtype)
    x_smooth = jnp.asarray(smoothed_next.x, dtype=dtype)
    P_smooth = jnp.asarray(smoothed_next.P, dtype=dtype)

    sigma = strategy.generate(x, P, name="filtered state covariance")
    propagated = unscented_transform(sigma, _propagate_fn(model))

    C = cross_covariance(sigma, propagated)

    # D = C @ P_pred^{-1}, computed as D^T = P_pred^{-1} C^T (P_pred is SPD)
    check_positive_definite(P_pred, "predicted covariance at step k+1")
    D = cho_solve((jnp.linalg.cholesky(P_pred), True), C.T).T
    check_finite(D, "predicted covariance at step k+1")

    x_s = x + D @ (x_smooth - x_pred)
    P_s = symmetrize(P + D @ (P_smooth - P_pred) @ D.T)

    return FilterState(x=x_s, P=P_s), propagated.mean


def _check_shape(value, name: str, shape: tuple[int, ...]) -> None:
    if np.shape(value) != shape:
        raise DimensionMismatchError(f"{name} must have shape {shape}, got {np.shape(value)}")


def _validate_history(history: Sequence[FilteredEstimate]) -> None:
    # Missing predictions are reported before any shape problem further down
    for k, estimate in enumerate(history[1:], start=1):
        if estimate.x_pred is None or estimate.P_pred is None:
            raise ConfigurationError(
                f"History entry {k} has no predicted mean/covariance; every entry "
                f"after the first must record the prediction that produced it"
            )

    if np.ndim(history[0].x) != 1:
        raise DimensionMismatchError(
            f"filtered mean at index 0 must be a vector, got shape {np.shape(history[0].x)}"
        )
    n = np.shape(history[0].x)[0]
    for k, estimate in enumerate(history):
        _check_shape(estimate.x, f"filtered mean at index {k}", (n,))
        _check_shape(estimate.P, f"filtered covariance at index {k}", (n, n))
        if k > 0:
            _check_shape(estimate.x_pred, f"predicted mean at index {k}", (n,))
            _check_shape(estimate.P_pred, f"predicted covariance at index {k}", (n, n))


def ukf_smooth(
    history: Sequence[FilteredEstimate],
    model: StateSpaceModel,
    config: UKFConfig | SigmaPointStrategy = _DEFAULT_UKF_CONFIG,
) -> list[FilteredEstimate]:
    """Smooth a forward filtering history with the unscented RTS smoother.

    The returned list has the same length as *history*. Each entry is the
    input entry with ``x`` and ``P`` replaced by their smoothed values; all
    other fields are passed through unchanged. The input is not modified.

    Args:
        history: Forward-pass estimates in time order, e.g. from
            :func:`~sigmajax.estimation.ukf_filter`. Every entry after the
            first must carry ``x_pred`` and ``P_pred``.
        model: State-space model used by the forward pass.
        config: Scaling parameters or sigma point strategy used by the
            forward pass. Default: ``UKFConfig()``.

    Returns:
        list[FilteredEstimate]: Smoothed history.

    Raises:
        ConfigurationError: If an entry after the first lacks its predicted
            mean or covariance, or the model has no dynamic model.
        DimensionMismatchError: If entries have inconsistent dimensions.
        NumericalInstabilityError: If a filtered covariance is not positive
            definite or a predicted covariance is singular.

    Examples:
        ```python
        history = ukf_filter(prior, measurements, model)
        smoothed = ukf_smooth(history, model)
        ```
    """
    history = list(history)
    if len(history) <= 1:
        return history

    validate_model(model, require_observation=False)
    strategy = as_strategy(config)
    _validate_history(history)

    logger.info("Smoothing %d filtered estimates", len(history))
    tol = get_tolerance()

    smoothed = [None] * len(history)
    smoothed[-1] = history[-1]
    for k in range(len(history) - 2, -1, -1):
        current = history[k]
        following = history[k + 1]
        state, propagated_mean = rts_step(
            FilterState(x=current.x, P=current.P),
            FilterState(x=following.x_pred, P=following.P_pred),
            FilterState(x=smoothed[k + 1].x, P=smoothed[k + 1].P),
            model,
            strategy,
        )
        if not is_traced(propagated_mean):
            x_pred = jnp.asarray(following.x_pred, dtype=get_dtype())
            deviation = float(jnp.linalg.norm(propagated_mean - x_pred))
            scale = max(1.0, float(jnp.linalg.norm(x_pred)))
            if deviation > tol * scale:
                logger.warning(
                    "Recomputed prediction for step %d deviates from the stored "
                    "prediction by %.3g; the smoothing model may differ from the "
                    "filtering model",
                    k + 1,
                    deviation,
                )
        smoothed[k] = current._replace(x=state.x, P=state.P)
        logger.debug("Smoothed step %d", k)

    return smoothed
