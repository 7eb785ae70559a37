"""Phase unwrapping by fitting a sum of Gaussians to wrapped gradients.

The unwrapped phase is modelled as ``sum_i alpha_i * phi_i(x, y)`` with
isotropic Gaussians ``phi_i`` of centre ``mu_i`` and width ``sigma_i``.
The amplitudes, centres and widths are fitted in turn by Gauss-Newton or
Levenberg-Marquardt steps, so that the model's gradient matches the
wrapped gradient of the observed image.

Parameter layout: ``alpha`` and ``sigma`` hold one value per Gaussian;
``mu`` holds all row coordinates first and then all column coordinates.
Residual and Jacobian rows cover the row-direction component of every
pixel, in row-major order, followed by the column-direction component.
"""

from __future__ import annotations

import argparse
import sys
from enum import Enum, IntEnum
from pathlib import Path
from typing import Iterator, NamedTuple

import numpy as np

from optilab.linalg import cholesky_solve, conjugate_gradient, inverse_power_method
from optilab.pgm import (
    forward_gradient,
    normalize_image,
    pi_normalize_image,
    read_pgm,
    write_pgm,
)

__all__ = [
    "Method",
    "wrapped_gradients",
    "phi",
    "var_phi_x",
    "var_phi_y",
    "objective",
    "jacobian",
    "gaussian_means",
    "unwrap_image",
    "gauss_newton_step",
    "levenberg_marquardt_step",
    "sufficient_descent",
    "line_search",
    "nonlinear_least_squares",
    "main",
]

_PER_SIDE = 2
_INITIAL_AMPLITUDE = -1.0
_INITIAL_WIDTH = 50.0
_INITIAL_STEP = 0.8
_ITERATIONS = 100
_C1 = 1e-4
_BACKTRACK_ATTEMPTS = 10
_SHRINK = 2
_SHRINKS_BEFORE_GROW = 5
_GROW = 3
_POWER_TOLERANCE = 1e-6
_POWER_ITERATIONS = 1000


class _Block(IntEnum):
    ALPHA = 1
    MU = 2
    SIGMA = 3


class Method(Enum):
    """Solver for the linearised least-squares step."""

    GAUSS_NEWTON = 1
    LEVENBERG_MARQUARDT = 2

    def step(self, jacobian, residual) -> np.ndarray:
        """Search direction for the given Jacobian rows and residual."""
        if self is Method.GAUSS_NEWTON:
            return gauss_newton_step(jacobian, residual)
        return levenberg_marquardt_step(jacobian, residual)


class _Iteration(NamedTuple):
    iteration: int
    fitness: tuple[float, float, float]
    alpha_direction: np.ndarray
    mu_direction: np.ndarray
    sigma_direction: np.ndarray
    alpha: np.ndarray
    mu: np.ndarray
    sigma: np.ndarray


def _shape(size) -> tuple[int, int]:
    if isinstance(size, (int, np.integer)):
        rows = cols = int(size)
    else:
        rows, cols = (int(value) for value in size)
    if rows <= 0 or cols <= 0:
        raise ValueError(f"image size must be positive, got {(rows, cols)}")
    return rows, cols


def _grid(shape: tuple[int, int]) -> tuple[np.ndarray, np.ndarray]:
    rows, cols = shape
    return np.arange(rows, dtype=float)[:, None], np.arange(cols, dtype=float)[None, :]


def _parameters(alpha, mu, sigma) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    a = np.asarray(alpha, dtype=float).ravel()
    m = np.asarray(mu, dtype=float).ravel()
    s = np.asarray(sigma, dtype=float).ravel()
    if s.size != a.size or m.size != 2 * a.size:
        raise ValueError(
            f"inconsistent parameters: {a.size} amplitudes, {m.size} means, {s.size} widths"
        )
    return a, m, s


def _offsets(i, mu, sigma, px, py):
    m = np.asarray(mu, dtype=float).ravel()
    s = np.asarray(sigma, dtype=float).ravel()
    count = s.size
    if m.size != 2 * count:
        raise ValueError(f"expected {2 * count} means, got {m.size}")
    if not 0 <= i < count:
        raise IndexError(f"Gaussian index {i} out of range for {count} components")
    dx = np.asarray(px, dtype=float) - m[i]
    dy = np.asarray(py, dtype=float) - m[count + i]
    return dx, dy, s[i] * s[i]


def _scalar(value):
    array = np.asarray(value)
    return float(array) if array.ndim == 0 else array


def phi(i, mu, sigma, px, py):
    """Value of the ``i``-th Gaussian at ``(px, py)``; arrays broadcast."""
    dx, dy, var = _offsets(i, mu, sigma, px, py)
    return _scalar(np.exp(-(dx * dx + dy * dy) / (2 * var)))


def var_phi_x(i, mu, sigma, px, py):
    """Derivative of the ``i``-th Gaussian along the row coordinate."""
    dx, dy, var = _offsets(i, mu, sigma, px, py)
    return _scalar(np.exp(-(dx * dx + dy * dy) / (2 * var)) * (-dx / var))


def var_phi_y(i, mu, sigma, px, py):
    """Derivative of the ``i``-th Gaussian along the column coordinate."""
    dx, dy, var = _offsets(i, mu, sigma, px, py)
    return _scalar(np.exp(-(dx * dx + dy * dy) / (2 * var)) * (-dy / var))


def wrapped_gradients(image) -> tuple[np.ndarray, np.ndarray]:
    """Backward differences of ``image`` wrapped into ``[-pi, pi]``."""
    g_rows, g_cols = forward_gradient(image)
    return np.arctan2(np.sin(g_rows), np.cos(g_rows)), np.arctan2(
        np.sin(g_cols), np.cos(g_cols)
    )


def _gradient_pair(grads) -> tuple[np.ndarray, np.ndarray]:
    g_rows, g_cols = (np.asarray(g, dtype=float) for g in grads)
    if g_rows.ndim != 2 or g_rows.shape != g_cols.shape:
        raise ValueError(
            f"gradients must be 2-D with equal shapes, got {g_rows.shape} and {g_cols.shape}"
        )
    return g_rows, g_cols


def objective(grads, alpha, mu, sigma) -> tuple[float, np.ndarray]:
    """Half the squared residual norm and the residual itself.

    The residual is the wrapped gradient minus the model's gradient.
    """
    g_rows, g_cols = _gradient_pair(grads)
    a, m, s = _parameters(alpha, mu, sigma)
    px, py = _grid(g_rows.shape)
    model_rows = np.zeros_like(g_rows)
    model_cols = np.zeros_like(g_cols)
    for i, amplitude in enumerate(a):
        model_rows = model_rows + amplitude * var_phi_x(i, m, s, px, py)
        model_cols = model_cols + amplitude * var_phi_y(i, m, s, px, py)
    residual = np.concatenate(((g_rows - model_rows).ravel(), (g_cols - model_cols).ravel()))
    return 0.5 * float(residual @ residual), residual


def jacobian(alpha, mu, sigma, block, size) -> np.ndarray:
    """Derivatives of the residual with respect to one parameter block.

    ``block`` is 1 for the amplitudes, 2 for the means and 3 for the
    widths. Row ``k`` of the result is the derivative with respect to the
    ``k``-th parameter of the block.
    """
    kind = _Block(block)
    a, m, s = _parameters(alpha, mu, sigma)
    px, py = _grid(_shape(size))
    first: list[np.ndarray] = []
    second: list[np.ndarray] = []
    for i, amplitude in enumerate(a):
        dx, dy, var = _offsets(i, m, s, px, py)
        dist = dx * dx + dy * dy
        gauss = np.exp(-dist / (2 * var))
        if kind is _Block.ALPHA:
            first.append(np.concatenate(((gauss * dx / var).ravel(), (gauss * dy / var).ravel())))
        elif kind is _Block.MU:
            inv = 1.0 / var
            cross = (amplitude * inv * inv * dx * dy * gauss).ravel()
            first.append(
                np.concatenate(((-amplitude * inv * (1 - inv * dx * dx) * gauss).ravel(), cross))
            )
            second.append(
                np.concatenate((cross, (-amplitude * inv * (1 - inv * dy * dy) * gauss).ravel()))
            )
        else:
            inv = 1.0 / s[i]
            factor = -amplitude * gauss * inv**3 * (2 - dist * inv * inv)
            first.append(np.concatenate(((factor * dx).ravel(), (factor * dy).ravel())))
    return np.array(first + second)


def gaussian_means(count, size) -> np.ndarray:
    """Centres of a ``count`` by ``count`` lattice of Gaussians over the image.

    The image is split into equal cells (integer cell width) and each
    Gaussian sits in the middle of its cell.
    """
    if count <= 0:
        raise ValueError("count must be positive")
    rows, cols = _shape(size)
    row_cell = rows // count
    col_cell = cols // count
    index = np.arange(count, dtype=float)
    row_means = np.repeat(row_cell / 2 + index * row_cell, count)
    col_means = np.tile(col_cell / 2 + index * col_cell, count)
    return np.concatenate((row_means, col_means))


def unwrap_image(alpha, mu, sigma, size) -> np.ndarray:
    """Evaluate the Gaussian model on every pixel of an image of ``size``."""
    a, m, s = _parameters(alpha, mu, sigma)
    px, py = _grid(_shape(size))
    image = np.zeros((px.shape[0], py.shape[1]))
    for i, amplitude in enumerate(a):
        image = image + amplitude * phi(i, m, s, px, py)
    return image


def _normal_equations(jacobian, residual) -> tuple[np.ndarray, np.ndarray]:
    j = np.asarray(jacobian, dtype=float)
    r = np.asarray(residual, dtype=float)
    if j.ndim != 2 or r.shape != (j.shape[1],):
        raise ValueError(f"Jacobian {j.shape} does not match residual {r.shape}")
    return j @ j.T, -(j @ r)


def gauss_newton_step(jacobian, residual) -> np.ndarray:
    """Solve ``J J^T p = -J r`` through an LDL^T factorization."""
    jtj, jr = _normal_equations(jacobian, residual)
    return cholesky_solve(jtj, jr)


def levenberg_marquardt_step(jacobian, residual) -> np.ndarray:
    """Solve ``(J J^T + lambda I) p = -J r`` by conjugate gradients.

    ``lambda`` is the smallest eigenvalue of ``J J^T``, estimated by
    inverse power iteration.
    """
    jtj, jr = _normal_equations(jacobian, residual)
    n = jtj.shape[0]
    damping = inverse_power_method(jtj, np.ones(n), _POWER_TOLERANCE, _POWER_ITERATIONS)
    return conjugate_gradient(jtj + damping * np.eye(n), jr)


def _replace(alpha, mu, sigma, block, value):
    kind = _Block(block)
    if kind is _Block.ALPHA:
        return value, mu, sigma
    if kind is _Block.MU:
        return alpha, value, sigma
    return alpha, mu, value


def sufficient_descent(step, f_xk, xk, pk, grad, grads, alpha, mu, sigma, block) -> bool:
    """Armijo test for moving the ``block`` parameters from ``xk`` along ``pk``."""
    direction = np.asarray(pk, dtype=float)
    candidate = np.asarray(xk, dtype=float) + step * direction
    f_new, _ = objective(grads, *_replace(alpha, mu, sigma, block, candidate))
    bound = f_xk + _C1 * step * float(np.dot(np.asarray(grad, dtype=float), direction))
    return bool(f_new <= bound)


def line_search(step, f_xk, jacobian, xk, pk, grads, alpha, mu, sigma, block) -> float:
    """Backtracking search that grows the step after repeated shrinks.

    The slope uses the row sums of the Jacobian. Returns ``step`` itself
    if ten attempts fail.
    """
    grad = np.asarray(jacobian, dtype=float).sum(axis=1)
    trial = step
    tracking = 0
    for _ in range(_BACKTRACK_ATTEMPTS):
        if sufficient_descent(trial, f_xk, xk, pk, grad, grads, alpha, mu, sigma, block):
            return trial
        tracking += 1
        if tracking > _SHRINKS_BEFORE_GROW:
            trial *= _GROW
            tracking = 0
        else:
            trial /= _SHRINK
    return step


def _initial_parameters(shape) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    count = _PER_SIDE * _PER_SIDE
    return (
        np.full(count, _INITIAL_AMPLITUDE),
        gaussian_means(_PER_SIDE, shape),
        np.full(count, _INITIAL_WIDTH),
    )


def _iterate(wrapped, method) -> Iterator[_Iteration]:
    solver = Method(method)
    grads = wrapped_gradients(wrapped)
    shape = grads[0].shape
    alpha, mu, sigma = _initial_parameters(shape)
    alpha_step = mu_step = sigma_step = _INITIAL_STEP
    for iteration in range(1, _ITERATIONS + 1):
        f_alpha, residual = objective(grads, alpha, mu, sigma)
        jac = jacobian(alpha, mu, sigma, _Block.ALPHA, shape)
        alpha_direction = solver.step(jac, residual)
        alpha_step = line_search(
            alpha_step, f_alpha, jac, alpha, alpha_direction, grads, alpha, mu, sigma, _Block.ALPHA
        )
        alpha = alpha + alpha_step * alpha_direction

        f_mu, residual = objective(grads, alpha, mu, sigma)
        jac = jacobian(alpha, mu, sigma, _Block.MU, shape)
        mu_direction = solver.step(jac, residual)
        # The searched step only seeds the next search; the update is taken in full.
        mu_step = line_search(
            mu_step, f_mu, jac, mu, mu_direction, grads, alpha, mu, sigma, _Block.MU
        )
        mu = mu + mu_direction

        f_sigma, residual = objective(grads, alpha, mu, sigma)
        jac = jacobian(alpha, mu, sigma, _Block.SIGMA, shape)
        sigma_direction = solver.step(jac, residual)
        sigma_step = line_search(
            sigma_step, f_sigma, jac, sigma, sigma_direction, grads, alpha, mu, sigma, _Block.SIGMA
        )
        sigma = sigma + sigma_direction

        yield _Iteration(
            iteration,
            (f_alpha, f_mu, f_sigma),
            alpha_direction,
            mu_direction,
            sigma_direction,
            alpha.copy(),
            mu.copy(),
            sigma.copy(),
        )


def nonlinear_least_squares(wrapped, method):
    """Fit the Gaussian model to the wrapped phase image ``wrapped``.

    Runs one hundred rounds of amplitude, mean and width updates. Returns
    ``(alpha, mu, sigma, history)`` where ``history`` holds one record per
    round with the objective before each block update, the search
    directions and the parameters after the round.
    """
    history = list(_iterate(np.asarray(wrapped, dtype=float), method))
    last = history[-1]
    return last.alpha, last.mu, last.sigma, history


def _save(path: Path, image) -> None:
    write_pgm(path, normalize_image(image, 255))


def _values(vector) -> str:
    return " ".join(f"{value:.6f}" for value in vector)


def main(argv=None) -> int:
    """Unwrap the phase of a PGM image, writing the model after every round."""
    parser = argparse.ArgumentParser(
        prog="optilab-unwrap", description="Phase unwrapping with a Gaussian model."
    )
    parser.add_argument("image", help="input PGM image")
    parser.add_argument(
        "method",
        type=int,
        choices=[method.value for method in Method],
        help="1 Gauss-Newton, 2 Levenberg-Marquardt",
    )
    parser.add_argument("-d", "--output-dir", default=".", help="directory for output images")
    args = parser.parse_args(argv)

    try:
        observed = read_pgm(args.image)
    except (OSError, ValueError) as exc:
        print(f"Could not open file: {args.image} ({exc})", file=sys.stderr)
        return 1

    out = Path(args.output_dir)
    try:
        wrapped = pi_normalize_image(observed)
        raw_rows, raw_cols = forward_gradient(wrapped)
        _save(out / "GradX.pgm", raw_rows)
        _save(out / "GradY.pgm", raw_cols)
        wrapped_rows, wrapped_cols = wrapped_gradients(wrapped)
        _save(out / "GradXW.pgm", wrapped_rows)
        _save(out / "GradYW.pgm", wrapped_cols)

        shape = wrapped.shape
        _save(out / "Result0.pgm", unwrap_image(*_initial_parameters(shape), shape))

        for record in _iterate(wrapped, Method(args.method)):
            count = record.alpha.size
            f_alpha, f_mu, f_sigma = record.fitness
            print(f"Iteration {record.iteration}")
            print(f"Fitness: {f_alpha:.6f}")
            print(
                f"alpha Pk: {_values(record.alpha_direction)} "
                f"Norm: {np.linalg.norm(record.alpha_direction):.6f}"
            )
            print(f"Fitness: {f_mu:.6f}")
            pairs = " ".join(
                f"{record.mu_direction[i]:.6f},{record.mu_direction[count + i]:.6f}"
                for i in range(count)
            )
            print(f"Mu Pk: {pairs} Norm: {np.linalg.norm(record.mu_direction):.6f}")
            print(f"Fitness: {f_sigma:.6f}")
            print(
                f"Sigma Pk: {_values(record.sigma_direction)} "
                f"Norm: {np.linalg.norm(record.sigma_direction):.6f}\n"
            )
            image = unwrap_image(record.alpha, record.mu, record.sigma, shape)
            _save(out / f"Result{record.iteration}.pgm", image)
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())