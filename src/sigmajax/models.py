"""Model capability sets consumed by the estimation engine.

The engine never inspects a model beyond a narrow set of operations, so
each kind of model is a :class:`~typing.Protocol`:

- :class:`DynamicModel` -- ``transition(state)`` and
  ``process_noise_covariance()``.
- :class:`ObservationModel` -- ``measurement(state)`` and
  ``measurement_noise_covariance()``.
- :class:`ControlModel` -- ``control_effect(state)`` and
  ``control_noise_covariance()``.

A :class:`StateSpaceModel` bundles independently built dynamic, observation
and (optional) control models. The engine references these objects but
never mutates them; their functions must be pure so they can be applied to
sigma points with ``jax.vmap``.

Linear and function-backed implementations are provided for the common
cases. Any object with the right methods works equally well.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import jax.numpy as jnp
import numpy as np
from jax import Array
from jax.typing import ArrayLike

from sigmajax.config import get_dtype
from sigmajax.errors import ConfigurationError, DimensionMismatchError


class DynamicModel(Protocol):
    """Protocol for state transition models."""

    def transition(self, state: Array) -> Array: ...

    def process_noise_covariance(self) -> Array: ...


class ObservationModel(Protocol):
    """Protocol for measurement models."""

    def measurement(self, state: Array) -> Array: ...

    def measurement_noise_covariance(self) -> Array: ...


class ControlModel(Protocol):
    """Protocol for control input models.

    ``control_effect`` returns the additive state offset produced by the
    (model-bound) control input when applied from ``state``.
    """

    def control_effect(self, state: Array) -> Array: ...

    def control_noise_covariance(self) -> Array: ...


_REQUIRED_METHODS = {
    "dynamics": ("transition", "process_noise_covariance"),
    "observation": ("measurement", "measurement_noise_covariance"),
    "control": ("control_effect", "control_noise_covariance"),
}


@dataclass(frozen=True)
class StateSpaceModel:
    """Dynamic, observation and control models used by one filter.

    Args:
        dynamics: Transition model. Required.
        observation: Measurement model. Required by the predict step, not
            by the smoother.
        control: Optional control model. ``None`` means zero control
            offset and zero control noise.

    Examples:
        ```python
        import jax.numpy as jnp
        from sigmajax.models import (
            LinearDynamicModel,
            LinearObservationModel,
            StateSpaceModel,
        )

        model = StateSpaceModel(
            dynamics=LinearDynamicModel(F=jnp.array([[1.0, 1.0], [0.0, 1.0]]),
                                        Q=jnp.eye(2) * 0.01),
            observation=LinearObservationModel(H=jnp.array([[1.0, 0.0]]),
                                               R=jnp.array([[0.1]])),
        )
        ```
    """

    dynamics: DynamicModel
    observation: ObservationModel | None = None
    control: ControlModel | None = None


def validate_model(model: StateSpaceModel, require_observation: bool = True) -> None:
    """Check that a model exposes every operation the engine will call.

    Args:
        model: The state-space model to check.
        require_observation: Whether an observation model is mandatory.

    Raises:
        ConfigurationError: If a required model is absent or lacks a
            callable operation.
    """
    if not isinstance(model, StateSpaceModel):
        raise ConfigurationError(
            f"Expected a StateSpaceModel, got {type(model).__name__}"
        )
    for role, methods in _REQUIRED_METHODS.items():
        component = getattr(model, role)
        if component is None:
            if role == "dynamics" or (role == "observation" and require_observation):
                raise ConfigurationError(f"StateSpaceModel has no {role} model")
            continue
        for method in methods:
            if not callable(getattr(component, method, None)):
                raise ConfigurationError(
                    f"{role} model {type(component).__name__} does not provide "
                    f"a callable '{method}'"
                )


def _check_matrix(value: ArrayLike, name: str, shape: tuple[int, int]) -> None:
    if np.shape(value) != shape:
        raise DimensionMismatchError(
            f"{name} must have shape {shape}, got {np.shape(value)}"
        )


@dataclass(frozen=True)
class LinearDynamicModel:
    """Linear Gaussian transition ``x' = F x`` with process noise ``Q``.

    Args:
        F: Transition matrix of shape ``(n, n)``.
        Q: Process noise covariance of shape ``(n, n)``.
    """

    F: ArrayLike
    Q: ArrayLike

    def __post_init__(self) -> None:
        if np.ndim(self.F) != 2:
            raise DimensionMismatchError(f"F must be a matrix, got shape {np.shape(self.F)}")
        n = np.shape(self.F)[0]
        _check_matrix(self.F, "F", (n, n))
        _check_matrix(self.Q, "Q", (n, n))

    def transition(self, state: Array) -> Array:
        dtype = get_dtype()
        return jnp.asarray(self.F, dtype=dtype) @ state

    def process_noise_covariance(self) -> Array:
        return jnp.asarray(self.Q, dtype=get_dtype())


@dataclass(frozen=True)
class NonlinearDynamicModel:
    """Transition given by an arbitrary function with additive noise ``Q``.

    The user constructs ``transition_fn`` by closing over whatever
    integrator, timestep and parameters the dynamics need::

        def transition_fn(x):
            return x + jnp.array([x[1], -jnp.sin(x[0])]) * dt

    Args:
        transition_fn: Pure function ``f(x) -> x_next``.
        Q: Process noise covariance of shape ``(n, n)``.
    """

    transition_fn: Callable[[Array], Array]
    Q: ArrayLike

    def __post_init__(self) -> None:
        if not callable(self.transition_fn):
            raise ConfigurationError("transition_fn must be callable")
        if np.ndim(self.Q) != 2 or np.shape(self.Q)[0] != np.shape(self.Q)[1]:
            raise DimensionMismatchError(f"Q must be square, got shape {np.shape(self.Q)}")

    def transition(self, state: Array) -> Array:
        return self.transition_fn(state)

    def process_noise_covariance(self) -> Array:
        return jnp.asarray(self.Q, dtype=get_dtype())


@dataclass(frozen=True)
class LinearObservationModel:
    """Linear Gaussian measurement ``y = H x`` with noise ``R``.

    Args:
        H: Measurement matrix of shape ``(m, n)``.
        R: Measurement noise covariance of shape ``(m, m)``.
    """

    H: ArrayLike
    R: ArrayLike

    def __post_init__(self) -> None:
        if np.ndim(self.H) != 2:
            raise DimensionMismatchError(f"H must be a matrix, got shape {np.shape(self.H)}")
        m = np.shape(self.H)[0]
        _check_matrix(self.R, "R", (m, m))

    def measurement(self, state: Array) -> Array:
        dtype = get_dtype()
        return jnp.asarray(self.H, dtype=dtype) @ state

    def measurement_noise_covariance(self) -> Array:
        return jnp.asarray(self.R, dtype=get_dtype())


@dataclass(frozen=True)
class NonlinearObservationModel:
    """Measurement given by an arbitrary function with additive noise ``R``.

    Args:
        measurement_fn: Pure function ``h(x) -> y``.
        R: Measurement noise covariance of shape ``(m, m)``.

    Examples:
        ```python
        import jax.numpy as jnp
        from sigmajax.models import NonlinearObservationModel

        def range_bearing(x):
            return jnp.array([jnp.hypot(x[0], x[1]), jnp.arctan2(x[1], x[0])])

        obs = NonlinearObservationModel(range_bearing, jnp.diag(jnp.array([1.0, 1e-4])))
        ```
    """

    measurement_fn: Callable[[Array], Array]
    R: ArrayLike

    def __post_init__(self) -> None:
        if not callable(self.measurement_fn):
            raise ConfigurationError("measurement_fn must be callable")
        if np.ndim(self.R) != 2 or np.shape(self.R)[0] != np.shape(self.R)[1]:
            raise DimensionMismatchError(f"R must be square, got shape {np.shape(self.R)}")

    def measurement(self, state: Array) -> Array:
        return self.measurement_fn(state)

    def measurement_noise_covariance(self) -> Array:
        return jnp.asarray(self.R, dtype=get_dtype())


@dataclass(frozen=True)
class LinearControlModel:
    """Linear control input ``x' += B u`` with control noise ``Qu``.

    The control input ``u`` is bound into the model, so the offset is the
    same for every state. Build a new model for each control input.

    Args:
        B: Control matrix of shape ``(n, k)``.
        u: Control input of shape ``(k,)``.
        Qu: Control noise covariance of shape ``(n, n)``.
    """

    B: ArrayLike
    u: ArrayLike
    Qu: ArrayLike

    def __post_init__(self) -> None:
        if np.ndim(self.B) != 2:
            raise DimensionMismatchError(f"B must be a matrix, got shape {np.shape(self.B)}")
        n, k = np.shape(self.B)
        if np.shape(self.u) != (k,):
            raise DimensionMismatchError(f"u must have shape ({k},), got {np.shape(self.u)}")
        _check_matrix(self.Qu, "Qu", (n, n))

    def control_effect(self, state: Array) -> Array:
        dtype = get_dtype()
        offset = jnp.asarray(self.B, dtype=dtype) @ jnp.asarray(self.u, dtype=dtype)
        return jnp.broadcast_to(offset, state.shape)

    def control_noise_covariance(self) -> Array:
        return jnp.asarray(self.Qu, dtype=get_dtype())
