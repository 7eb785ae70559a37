"""Dense linear solvers, factorizations and an inverse power iteration.

Every routine works on copies of its inputs and returns new arrays.
Square matrices are numpy arrays of shape ``(n, n)`` and vectors have
shape ``(n,)``.
"""

from __future__ import annotations

from os import PathLike
from pathlib import Path

import numpy as np
from numpy.linalg import LinAlgError

__all__ = [
    "gaussian_elimination",
    "crout_decomposition",
    "solve_lower_triangular",
    "solve_unit_upper_triangular",
    "solve_crout_system",
    "ldl_decomposition",
    "forward_substitution",
    "backward_substitution",
    "solve_diagonal",
    "cholesky_solve",
    "conjugate_gradient",
    "inverse_power_method",
    "read_equation_system",
]

_CG_TOLERANCE = 1e-9


def _square(a) -> np.ndarray:
    matrix = np.array(a, dtype=float)
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValueError(f"expected a square matrix, got shape {matrix.shape}")
    if matrix.shape[0] == 0:
        raise ValueError("matrix must not be empty")
    return matrix


def _vector(b, n: int) -> np.ndarray:
    vector = np.array(b, dtype=float)
    if vector.shape != (n,):
        raise ValueError(f"expected a vector of length {n}, got shape {vector.shape}")
    return vector


def _pivot(value: float, index: int) -> float:
    if value == 0.0:
        raise LinAlgError(f"zero pivot at position {index}")
    return value


def gaussian_elimination(a, b) -> np.ndarray:
    """Solve ``a x = b`` by Gaussian elimination without pivoting."""
    m = _square(a)
    n = m.shape[0]
    rhs = _vector(b, n)
    for k in range(n - 1):
        pivot = _pivot(m[k, k], k)
        factors = m[k + 1 :, k] / pivot
        m[k + 1 :, k + 1 :] -= np.outer(factors, m[k, k + 1 :])
        m[k + 1 :, k] = 0.0
        rhs[k + 1 :] -= factors * rhs[k]
    x = np.zeros(n)
    for i in reversed(range(n)):
        x[i] = (rhs[i] - m[i, i + 1 :] @ x[i + 1 :]) / _pivot(m[i, i], i)
    return x


def crout_decomposition(a) -> np.ndarray:
    """Return the Crout factors of ``a`` packed into one matrix.

    The lower triangle, diagonal included, holds L; the strict upper
    triangle holds U, whose diagonal is implicitly one.
    """
    m = _square(a)
    n = m.shape[0]
    for i in range(n):
        m[i, i] -= m[i, :i] @ m[:i, i]
        m[i + 1 :, i] -= m[i + 1 :, :i] @ m[:i, i]
        pivot = _pivot(m[i, i], i)
        m[i, i + 1 :] = (m[i, i + 1 :] - m[i, :i] @ m[:i, i + 1 :]) / pivot
    return m


def solve_lower_triangular(lu, b) -> np.ndarray:
    """Solve ``L x = b`` with L the lower triangle of ``lu``, diagonal included."""
    m = _square(lu)
    n = m.shape[0]
    rhs = _vector(b, n)
    x = np.zeros(n)
    for j in range(n):
        x[j] = (rhs[j] - m[j, :j] @ x[:j]) / _pivot(m[j, j], j)
    return x


def solve_unit_upper_triangular(lu, b) -> np.ndarray:
    """Solve ``U x = b`` with U the strict upper triangle of ``lu`` plus a unit diagonal."""
    return backward_substitution(lu, b)


def solve_crout_system(a, b) -> np.ndarray:
    """Solve ``a x = b`` through the Crout factorization."""
    lu = crout_decomposition(a)
    return solve_unit_upper_triangular(lu, solve_lower_triangular(lu, b))


def ldl_decomposition(a) -> np.ndarray:
    """Return the LDL^T factors of the symmetric matrix ``a`` packed into one matrix.

    The diagonal holds D; the strict lower triangle holds the unit lower
    factor L, mirrored into the upper triangle.
    """
    m = _square(a)
    n = m.shape[0]
    for i in range(n):
        d = np.diag(m)[:i]
        m[i, i] -= np.sum(m[i, :i] ** 2 * d)
        pivot = _pivot(m[i, i], i)
        weighted = m[i, :i] * d
        column = (m[i + 1 :, i] - m[i + 1 :, :i] @ weighted) / pivot
        m[i + 1 :, i] = column
        m[i, i + 1 :] = column
    return m


def forward_substitution(a, b) -> np.ndarray:
    """Solve ``L x = b`` with L the strict lower triangle of ``a`` plus a unit diagonal."""
    m = _square(a)
    n = m.shape[0]
    rhs = _vector(b, n)
    x = np.zeros(n)
    for j in range(n):
        x[j] = rhs[j] - m[j, :j] @ x[:j]
    return x


def backward_substitution(a, b) -> np.ndarray:
    """Solve ``U x = b`` with U the strict upper triangle of ``a`` plus a unit diagonal."""
    m = _square(a)
    n = m.shape[0]
    rhs = _vector(b, n)
    x = np.zeros(n)
    for j in reversed(range(n)):
        x[j] = rhs[j] - m[j, j + 1 :] @ x[j + 1 :]
    return x


def solve_diagonal(d, b) -> np.ndarray:
    """Solve ``D x = b`` using only the diagonal of ``d``."""
    m = _square(d)
    diagonal = np.diag(m)
    rhs = _vector(b, m.shape[0])
    for index, value in enumerate(diagonal):
        _pivot(value, index)
    return rhs / diagonal


def cholesky_solve(a, b) -> np.ndarray:
    """Solve the symmetric system ``a x = b`` through its LDL^T factorization."""
    factors = ldl_decomposition(a)
    y = forward_substitution(factors, b)
    z = solve_diagonal(factors, y)
    return backward_substitution(factors, z)


def conjugate_gradient(a, b) -> np.ndarray:
    """Solve the symmetric positive definite system ``a x = b`` by conjugate gradients.

    Starts at zero and stops once the residual norm drops to 1e-9 or after
    ten times the dimension in iterations.
    """
    m = _square(a)
    n = m.shape[0]
    rhs = _vector(b, n)
    x = np.zeros(n)
    grad = -rhs
    direction = rhs.copy()
    for _ in range(10 * n):
        if np.linalg.norm(grad) <= _CG_TOLERANCE:
            break
        curvature = float(direction @ m @ direction)
        if curvature == 0.0:
            raise LinAlgError("search direction has zero curvature")
        alpha = -float(grad @ direction) / curvature
        x += alpha * direction
        grad_new = grad + alpha * (m @ direction)
        beta = float(grad_new @ grad_new) / float(grad @ grad)
        direction = beta * direction - grad_new
        grad = grad_new
    return x


def inverse_power_method(a, start, tolerance=1e-6, max_iterations=1000) -> float:
    """Estimate the eigenvalue of ``a`` of smallest magnitude.

    Returns 0.0 when the estimate has not settled within ``max_iterations``.
    """
    lu = crout_decomposition(a)
    current = _vector(start, lu.shape[0])
    norm = np.linalg.norm(current)
    if norm == 0.0:
        raise ValueError("start vector must not be zero")
    current = current / norm
    previous = 0.0
    for _ in range(max_iterations):
        new = solve_unit_upper_triangular(lu, solve_lower_triangular(lu, current))
        estimate = float(current @ new) / float(new @ new)
        new = new / np.linalg.norm(new)
        if abs(estimate - previous) < tolerance:
            return estimate
        current = new
        previous = estimate
    return 0.0


def read_equation_system(path: str | PathLike) -> tuple[np.ndarray, np.ndarray]:
    """Read a system from a text file: its size n, then the n*n matrix, then b."""
    tokens = Path(path).read_text().split()
    if not tokens:
        raise ValueError(f"{path}: empty equation system file")
    try:
        n = int(tokens[0])
    except ValueError as exc:
        raise ValueError(f"{path}: invalid system size {tokens[0]!r}") from exc
    if n <= 0:
        raise ValueError(f"{path}: system size must be positive")
    needed = n * n + n
    values = tokens[1 : 1 + needed]
    if len(values) < needed:
        raise ValueError(f"{path}: expected {needed} numbers, found {len(values)}")
    try:
        numbers = np.array([float(token) for token in values])
    except ValueError as exc:
        raise ValueError(f"{path}: non-numeric entry in equation system") from exc
    return numbers[: n * n].reshape(n, n), numbers[n * n :]