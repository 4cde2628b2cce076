"""Sigma point generation strategies.

A sigma point strategy turns a mean and covariance into a deterministic,
weighted sample set (:class:`~sigmajax.estimation.SigmaPoints`). The predict,
update and smoothing functions only depend on the
:class:`SigmaPointStrategy` protocol, so any strategy producing ``2n + 1``
points whose mean weights sum to one can drive the same engine.

Available strategies:

- :class:`UnscentedSigmaPoints` -- Van der Merwe's scaled unscented
  transform, parameterized by :class:`~sigmajax.estimation.UKFConfig`.
- :class:`CubatureSigmaPoints` -- Third-degree spherical-radial cubature
  rule, expressed as a ``2n + 1`` set whose centre point has zero weight.

The covariance square root is a Cholesky factor of the scaled covariance.
No regularization is applied: a covariance that is not positive definite
raises :class:`~sigmajax.errors.NumericalInstabilityError` rather than being
silently inflated.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from sigmajax.config import get_dtype, get_tolerance
from sigmajax.errors import ConfigurationError, NumericalInstabilityError
from sigmajax.estimation._checks import (
    check_finite,
    check_positive_definite,
    check_square,
    check_vector,
)
from sigmajax.estimation._types import SigmaPoints, UKFConfig


@runtime_checkable
class SigmaPointStrategy(Protocol):
    """Protocol for sigma point generators."""

    def generate(self, x: ArrayLike, P: ArrayLike, name: str = ...) -> SigmaPoints: ...


def scaling_lambda(n: int, config: UKFConfig) -> float:
    """Compute the composite scaling parameter ``alpha**2 * (n + kappa) - n``.

    Args:
        n: State dimension.
        config: Scaling parameters.

    Returns:
        float: The scalar ``lambda``.

    Examples:
        ```python
        from sigmajax.estimation import UKFConfig, scaling_lambda

        scaling_lambda(2, UKFConfig(alpha=0.5, kappa=0.0))  # -1.5
        ```
    """
    return config.alpha**2 * (n + config.kappa) - n


def _points_from_factor(x: Array, L: Array) -> Array:
    # Rows of L.T are the columns of L
    points_plus = x[None, :] + L.T
    points_minus = x[None, :] - L.T
    return jnp.concatenate([x[None, :], points_plus, points_minus], axis=0)


def _prepare(x: ArrayLike, P: ArrayLike) -> tuple[Array, Array, int]:
    dtype = get_dtype()
    x = jnp.asarray(x, dtype=dtype)
    P = jnp.asarray(P, dtype=dtype)
    n = check_vector(x, "state mean")
    check_square(P, "state covariance", n)
    return x, P, n


def sigma_points(
    x: ArrayLike,
    P: ArrayLike,
    config: UKFConfig,
    name: str = "state covariance",
) -> SigmaPoints:
    """Generate scaled sigma points and weights.

    Uses Van der Merwe's scaled unscented transform to generate
    ``2n + 1`` sigma points from the state mean and covariance.

    Args:
        x: State mean of shape ``(n,)``.
        P: State covariance of shape ``(n, n)``. Must be positive definite.
        config: Scaling parameters.
        name: Name of the covariance reported if factorization fails.

    Returns:
        SigmaPoints: Points of shape ``(2n+1, n)`` with mean weights ``Wm``
            and covariance weights ``Wc``.

    Raises:
        ConfigurationError: If ``config.alpha`` is not positive.
        DimensionMismatchError: If ``x`` is not a vector or ``P`` is not
            ``(n, n)``.
        NumericalInstabilityError: If ``n + lambda`` is (close to) zero or
            ``(n + lambda) * P`` is not numerically positive definite.

    Examples:
        ```python
        import jax.numpy as jnp
        from sigmajax.estimation import UKFConfig, sigma_points

        sp = sigma_points(jnp.zeros(2), jnp.eye(2), UKFConfig())
        sp.points.shape  # (5, 2)
        ```
    """
    if config.alpha <= 0:
        raise ConfigurationError(f"alpha must be positive, got {config.alpha}")

    dtype = get_dtype()
    x, P, n = _prepare(x, P)

    alpha = config.alpha
    beta = config.beta
    lam = scaling_lambda(n, config)

    if abs(n + lam) <= get_tolerance():
        raise NumericalInstabilityError(
            f"Degenerate sigma point scaling: n + lambda = {n + lam} "
            f"(n={n}, alpha={alpha}, kappa={config.kappa})",
            matrix_name=name,
        )

    # Cholesky factor of (n + lambda) * P
    scaled = (n + lam) * P
    check_positive_definite(scaled, name)
    L = jnp.linalg.cholesky(scaled)
    check_finite(L, name)

    points = _points_from_factor(x, L)

    # Weights
    w0_m = jnp.asarray(lam / (n + lam), dtype=dtype)
    w0_c = jnp.asarray(lam / (n + lam) + (1.0 - alpha**2 + beta), dtype=dtype)
    wi = jnp.asarray(1.0 / (2.0 * (n + lam)), dtype=dtype)

    Wm = jnp.concatenate([jnp.array([w0_m], dtype=dtype), jnp.full(2 * n, wi, dtype=dtype)])
    Wc = jnp.concatenate([jnp.array([w0_c], dtype=dtype), jnp.full(2 * n, wi, dtype=dtype)])

    return SigmaPoints(points=points, Wm=Wm, Wc=Wc)


@dataclass(frozen=True)
class UnscentedSigmaPoints:
    """Scaled unscented transform sigma points.

    Args:
        config: Scaling parameters. Default: ``UKFConfig()``
            (``alpha=0.5``, ``beta=2.0``, ``kappa=0.0``).

    Examples:
        ```python
        import jax.numpy as jnp
        from sigmajax.estimation import UKFConfig, UnscentedSigmaPoints

        strategy = UnscentedSigmaPoints(UKFConfig(alpha=1.0))
        sp = strategy.generate(jnp.zeros(3), jnp.eye(3))
        ```
    """

    config: UKFConfig = field(default_factory=UKFConfig)

    def generate(
        self,
        x: ArrayLike,
        P: ArrayLike,
        name: str = "state covariance",
    ) -> SigmaPoints:
        """Generate sigma points for ``(x, P)``. See :func:`sigma_points`."""
        return sigma_points(x, P, self.config, name=name)


@dataclass(frozen=True)
class CubatureSigmaPoints:
    """Spherical-radial cubature points.

    Places ``2n`` equally weighted points at ``x +/- sqrt(n) * S[:, i]``
    where ``S S^T = P``, plus the mean itself with zero weight so the set
    has the same ``2n + 1`` layout as the unscented one. All weights are
    non-negative, which keeps the reconstructed covariance positive
    semi-definite in high dimensions.
    """

    def generate(
        self,
        x: ArrayLike,
        P: ArrayLike,
        name: str = "state covariance",
    ) -> SigmaPoints:
        """Generate cubature points for ``(x, P)``.

        Raises:
            DimensionMismatchError: If ``x`` is not a vector or ``P`` is not
                ``(n, n)``.
            NumericalInstabilityError: If ``P`` is not numerically positive
                definite.
        """
        dtype = get_dtype()
        x, P, n = _prepare(x, P)

        check_positive_definite(P, name)
        L = jnp.linalg.cholesky(P) * math.sqrt(n)
        check_finite(L, name)

        points = _points_from_factor(x, L)

        wi = jnp.asarray(1.0 / (2.0 * n), dtype=dtype)
        W = jnp.concatenate([jnp.zeros(1, dtype=dtype), jnp.full(2 * n, wi, dtype=dtype)])

        return SigmaPoints(points=points, Wm=W, Wc=W)


def as_strategy(config: UKFConfig | SigmaPointStrategy | None) -> SigmaPointStrategy:
    """Normalize a scaling configuration or strategy into a strategy.

    Args:
        config: A :class:`UKFConfig` (wrapped in
            :class:`UnscentedSigmaPoints`), an object implementing
            :class:`SigmaPointStrategy` (returned as is), or ``None`` for
            the default unscented strategy.

    Returns:
        SigmaPointStrategy: Strategy to generate sigma points with.

    Raises:
        ConfigurationError: If *config* is neither.
    """
    if config is None:
        return UnscentedSigmaPoints()
    if isinstance(config, UKFConfig):
        return UnscentedSigmaPoints(config)
    if isinstance(config, SigmaPointStrategy):
        return config
    raise ConfigurationError(
        f"Expected a UKFConfig or a sigma point strategy, got {type(config).__name__}"
    )
