"""Shape and finiteness checks shared by the estimation functions.

Shape checks always run, since array shapes are static even under
``jax.jit``. Finiteness checks need concrete values and are skipped while
tracing.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
from jax import Array

from sigmajax.errors import DimensionMismatchError, NumericalInstabilityError


def is_traced(value) -> bool:
    """Return True if *value* is an abstract tracer rather than a concrete array."""
    return isinstance(value, jax.core.Tracer)


def check_vector(value: Array, name: str, size: int | None = None) -> int:
    """Require a 1-D array, optionally of a given length.

    Args:
        value: Array to check.
        name: Name used in the error message.
        size: Expected length, or ``None`` to accept any length.

    Returns:
        int: Length of the vector.

    Raises:
        DimensionMismatchError: If *value* is not 1-D or has the wrong length.
    """
    if value.ndim != 1:
        raise DimensionMismatchError(
            f"{name} must be a vector, got array with shape {value.shape}"
        )
    if size is not None and value.shape[0] != size:
        raise DimensionMismatchError(
            f"{name} must have length {size}, got {value.shape[0]}"
        )
    return value.shape[0]


def check_square(value: Array, name: str, size: int) -> None:
    """Require a ``(size, size)`` matrix.

    Raises:
        DimensionMismatchError: If the shape differs.
    """
    if value.shape != (size, size):
        raise DimensionMismatchError(
            f"{name} must have shape ({size}, {size}), got {value.shape}"
        )


def check_finite(value: Array, name: str) -> None:
    """Raise if a concrete array holds NaN or infinite entries.

    JAX reports a failed Cholesky factorization or a singular solve by
    filling the result with non-finite values instead of raising, so this
    is how numerical failures surface in eager mode.

    Raises:
        NumericalInstabilityError: If *value* is concrete and not finite.
    """
    if is_traced(value):
        return
    if not bool(jnp.all(jnp.isfinite(value))):
        raise NumericalInstabilityError(
            f"Numerical failure involving the {name}: the matrix is not "
            f"positive definite or is singular",
            matrix_name=name,
        )


def check_positive_definite(value: Array, name: str) -> None:
    """Raise if a concrete symmetric matrix is not numerically positive definite.

    A Cholesky factorization only fails on an exactly zero or negative
    pivot; rounding can leave a tiny positive pivot for a rank-deficient
    matrix and yield a near-singular factor. The matrix is therefore
    rejected when its smallest eigenvalue does not exceed
    ``n * eps * max(|eigenvalue|)``, the rank tolerance used by
    ``numpy.linalg.matrix_rank``.

    Raises:
        NumericalInstabilityError: If *value* is concrete and not finite,
            indefinite, or rank deficient.
    """
    if is_traced(value):
        return
    check_finite(value, name)
    eigenvalues = jnp.linalg.eigvalsh(symmetrize(value))
    check_finite(eigenvalues, name)
    eps = float(jnp.finfo(value.dtype).eps)
    largest = float(jnp.max(jnp.abs(eigenvalues)))
    smallest = float(jnp.min(eigenvalues))
    if smallest <= value.shape[0] * eps * largest:
        raise NumericalInstabilityError(
            f"The {name} is not positive definite: smallest eigenvalue "
            f"{smallest:.3g}, largest {largest:.3g}",
            matrix_name=name,
        )


def symmetrize(P: Array) -> Array:
    """Return ``(P + P^T) / 2``."""
    return 0.5 * (P + P.T)
