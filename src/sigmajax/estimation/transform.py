"""Unscented transform of sigma point sets.

Propagates a :class:`~sigmajax.estimation.SigmaPoints` set through an
arbitrary vector-valued function via ``jax.vmap`` and reconstructs the
weighted mean and covariance of the transformed points. Also provides the
cross-covariance between a sigma point set and its transformed image,
which both the Kalman gain and the smoother gain are built from.
"""

from __future__ import annotations

from collections.abc import Callable

import jax
import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from sigmajax.config import get_dtype
from sigmajax.estimation._checks import check_square, symmetrize
from sigmajax.estimation._types import SigmaPoints, TransformResult


def reconstruct(
    points: Array,
    sigma: SigmaPoints,
    noise_covariance: ArrayLike | None = None,
    name: str = "noise covariance",
) -> TransformResult:
    """Reconstruct the weighted mean and covariance of already-transformed points.

    Args:
        points: Transformed points of shape ``(2n+1, m)``, in the same order
            as ``sigma.points``.
        sigma: The sigma point set the points were produced from. Only its
            weights are used.
        noise_covariance: Optional additive noise covariance of shape
            ``(m, m)``.
        name: Name of the noise covariance used in error messages.

    Returns:
        TransformResult: The points with their weighted mean and covariance.

    Raises:
        DimensionMismatchError: If ``noise_covariance`` is not ``(m, m)``.
    """
    dtype = get_dtype()

    # Weighted mean
    mean = jnp.einsum("i,ij->j", sigma.Wm, points)

    # Weighted covariance
    diff = points - mean[None, :]
    cov = jnp.einsum("i,ij,ik->jk", sigma.Wc, diff, diff)

    if noise_covariance is not None:
        noise_covariance = jnp.asarray(noise_covariance, dtype=dtype)
        check_square(noise_covariance, name, mean.shape[0])
        cov = cov + noise_covariance

    return TransformResult(points=points, mean=mean, covariance=symmetrize(cov))


def unscented_transform(
    sigma: SigmaPoints,
    fn: Callable[[Array], Array],
    noise_covariance: ArrayLike | None = None,
    name: str = "noise covariance",
) -> TransformResult:
    """Propagate sigma points through a function and reconstruct their statistics.

    Args:
        sigma: Sigma point set, e.g. from :func:`sigma_points`.
        fn: Function ``f(x) -> y`` applied to each sigma point via
            ``jax.vmap``. Scalar outputs are treated as length-1 vectors.
        noise_covariance: Optional additive noise covariance (process or
            measurement noise) of shape ``(m, m)``.
        name: Name of the noise covariance used in error messages.

    Returns:
        TransformResult: Transformed points ``(2n+1, m)``, weighted mean
            ``(m,)`` and covariance ``(m, m)``.

    Examples:
        ```python
        import jax.numpy as jnp
        from sigmajax.estimation import UKFConfig, sigma_points, unscented_transform

        sp = sigma_points(jnp.array([1.0, 0.0]), jnp.eye(2) * 0.1, UKFConfig())
        result = unscented_transform(sp, lambda x: jnp.array([jnp.hypot(x[0], x[1])]))
        ```
    """
    points = jax.vmap(fn)(sigma.points)
    if points.ndim == 1:
        # Scalar-valued function
        points = points[:, None]
    return reconstruct(points, sigma, noise_covariance, name=name)


def cross_covariance(sigma: SigmaPoints, transformed: TransformResult) -> Array:
    """Cross-covariance between a sigma point set and its transformed image.

    Computes ``sum_i Wc_i (X_i - X_0)(Y_i - y_mean)^T`` where ``X_0`` is the
    unperturbed mean of the original set and ``y_mean`` the reconstructed
    mean of the transformed set.

    Args:
        sigma: Original sigma point set of shape ``(2n+1, n)``.
        transformed: Transformed points and reconstructed mean.

    Returns:
        jax.Array: Cross-covariance of shape ``(n, m)``.
    """
    x_diff = sigma.points - sigma.mean[None, :]
    y_diff = transformed.points - transformed.mean[None, :]
    return jnp.einsum("i,ij,ik->jk", sigma.Wc, x_diff, y_diff)
