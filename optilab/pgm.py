"""Plain-text PGM images and the grid operators used on them.

Images are two-dimensional numpy arrays of floats indexed ``[row, col]``.
"""

from __future__ import annotations

from os import PathLike
from pathlib import Path

import numpy as np

__all__ = [
    "read_pgm",
    "write_pgm",
    "forward_gradient",
    "central_gradient",
    "image_hessian",
    "normalize_image",
    "pi_normalize_image",
    "neighbour_count",
    "neighbour_sum",
    "image_vector_product",
    "image_quadratic_form",
]

_MAX_GREY = 255
_MIN_START = 1e9


def _image(image) -> np.ndarray:
    array = np.array(image, dtype=float)
    if array.ndim != 2 or array.size == 0:
        raise ValueError(f"expected a non-empty 2-D image, got shape {array.shape}")
    return array


def read_pgm(path: str | PathLike) -> np.ndarray:
    """Read an ASCII (P2) PGM file into an array of shape ``(rows, cols)``.

    The first line is the magic number; comment lines directly after it
    are skipped.
    """
    lines = Path(path).read_text().splitlines()
    if not lines:
        raise ValueError(f"{path}: empty PGM file")
    body = lines[1:]
    start = 0
    while start < len(body) and body[start].startswith("#"):
        start += 1
    tokens = " ".join(body[start:]).split()
    if len(tokens) < 3:
        raise ValueError(f"{path}: incomplete PGM header")
    try:
        cols, rows = int(tokens[0]), int(tokens[1])
        float(tokens[2])
    except ValueError as exc:
        raise ValueError(f"{path}: invalid PGM header") from exc
    if rows <= 0 or cols <= 0:
        raise ValueError(f"{path}: image dimensions must be positive")
    values = tokens[3 : 3 + rows * cols]
    if len(values) < rows * cols:
        raise ValueError(f"{path}: expected {rows * cols} pixels, found {len(values)}")
    try:
        pixels = np.array([float(token) for token in values])
    except ValueError as exc:
        raise ValueError(f"{path}: non-numeric pixel value") from exc
    return pixels.reshape(rows, cols)


def write_pgm(path: str | PathLike, image) -> None:
    """Write ``image`` as an ASCII PGM file, truncating pixels to integers."""
    array = _image(image)
    if not np.all(np.isfinite(array)):
        raise ValueError("image contains non-finite values")
    pixels = np.trunc(array).astype(np.int64)
    rows, cols = pixels.shape
    with open(path, "w") as fh:
        fh.write(f"P2\n#Created by optilab\n{cols} {rows}\n{_MAX_GREY}\n")
        for row in pixels:
            fh.write("".join(f"{value} " for value in row))
            fh.write("\n")


def forward_gradient(image) -> tuple[np.ndarray, np.ndarray]:
    """Backward differences along rows and columns, zero on the first row/column.

    Returns ``(g_rows, g_cols)`` where ``g_rows[i, j] = I[i, j] - I[i-1, j]``
    and ``g_cols[i, j] = I[i, j] - I[i, j-1]``.
    """
    array = _image(image)
    g_rows = np.zeros_like(array)
    g_cols = np.zeros_like(array)
    g_rows[1:] = array[1:] - array[:-1]
    g_cols[:, 1:] = array[:, 1:] - array[:, :-1]
    return g_rows, g_cols


def central_gradient(image) -> tuple[np.ndarray, np.ndarray]:
    """Central differences with periodic boundaries.

    Returns ``(g_cols, g_rows)``: the first along each row (x direction),
    the second along each column (y direction).
    """
    array = _image(image)
    g_cols = 0.5 * (np.roll(array, -1, axis=1) - np.roll(array, 1, axis=1))
    g_rows = 0.5 * (np.roll(array, -1, axis=0) - np.roll(array, 1, axis=0))
    return g_cols, g_rows


def image_hessian(gx, gy, central=False) -> tuple[np.ndarray, ...]:
    """Second differences: the gradient of ``gx`` followed by the gradient of ``gy``."""
    gradient = central_gradient if central else forward_gradient
    return (*gradient(gx), *gradient(gy))


def _extremes(array: np.ndarray) -> tuple[float, float]:
    # The maximum never drops below zero and the minimum never exceeds 1e9.
    maximum = max(0.0, float(array.max()))
    minimum = min(_MIN_START, float(array.min()))
    if maximum == minimum:
        raise ValueError("cannot normalize an image with no intensity range")
    return minimum, maximum


def normalize_image(image, scale=255.0) -> np.ndarray:
    """Map intensities linearly so the range [min, max] becomes [0, scale]."""
    array = _image(image)
    minimum, maximum = _extremes(array)
    return scale * (array - minimum) / (maximum - minimum)


def pi_normalize_image(image) -> np.ndarray:
    """Map intensities linearly so the range [min, max] becomes [-pi, pi]."""
    array = _image(image)
    minimum, maximum = _extremes(array)
    return 2 * np.pi * (array - minimum) / (maximum - minimum) - np.pi


def _check_position(array: np.ndarray, row: int, col: int) -> None:
    rows, cols = array.shape
    if not (0 <= row < rows and 0 <= col < cols):
        raise IndexError(f"pixel ({row}, {col}) outside image of shape {array.shape}")


def neighbour_count(image, row, col) -> int:
    """Number of 4-neighbours the pixel has inside the image."""
    array = _image(image)
    _check_position(array, row, col)
    rows, cols = array.shape
    return sum((row > 0, row < rows - 1, col > 0, col < cols - 1))


def neighbour_sum(image, row, col) -> float:
    """Sum of the pixel's 4-neighbours inside the image."""
    array = _image(image)
    _check_position(array, row, col)
    rows, cols = array.shape
    candidates = ((row - 1, col), (row + 1, col), (row, col - 1), (row, col + 1))
    return float(
        sum(array[r, c] for r, c in candidates if 0 <= r < rows and 0 <= c < cols)
    )


def _neighbour_sums(array: np.ndarray) -> np.ndarray:
    sums = np.zeros_like(array)
    sums[1:] += array[:-1]
    sums[:-1] += array[1:]
    sums[:, 1:] += array[:, :-1]
    sums[:, :-1] += array[:, 1:]
    return sums


def image_vector_product(image, scalar) -> np.ndarray:
    """Apply ``(1 + 4s) I - s * (sum of 4-neighbours)`` to every pixel."""
    array = _image(image)
    return (1 + 4.0 * scalar) * array - scalar * _neighbour_sums(array)


def image_quadratic_form(image, lam) -> float:
    """The quadratic form ``v^T A v`` for the operator of :func:`image_vector_product`."""
    array = _image(image)
    return float(np.vdot(image_vector_product(array, lam), array))