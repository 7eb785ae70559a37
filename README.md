# optilab

A small toolkit of numerical optimisation methods built on NumPy:

- **Linear algebra** (`optilab.linalg`): Gaussian elimination, Crout LU,
  LDLᵀ factorisation and `cholesky_solve`, triangular and diagonal solvers,
  linear `conjugate_gradient`, `inverse_power_method` for the eigenvalue of
  smallest magnitude, and `read_equation_system` for equation-system files.
  Every routine works on copies of its inputs and returns new arrays; a zero
  pivot raises `numpy.linalg.LinAlgError`.
- **PGM images** (`optilab.pgm`): `read_pgm` and `write_pgm` for plain (P2)
  PGM files, `forward_gradient` and `central_gradient` (periodic
  boundaries), `image_hessian`, `normalize_image`, `pi_normalize_image`, and
  the 4-neighbourhood operators `neighbour_count`, `neighbour_sum`,
  `image_vector_product` and `image_quadratic_form`.
- **Edge-preserving smoothing** (`optilab.hqr`): nonlinear conjugate
  gradient on a half-quadratic model, with the Fletcher-Reeves,
  Polak-Ribière and Hestenes-Stiefel β rules (`BetaRule`) and a quadratic
  step model checked against the strong Wolfe conditions.
- **Phase unwrapping** (`optilab.unwrap`): a sum-of-Gaussians model fitted to
  wrapped phase gradients by Gauss-Newton or Levenberg-Marquardt steps
  (`Method`), updating amplitudes, centres and widths in turn.

## Installation

```
pip install .
```

For running the tests:

```
pip install .[test]
pytest
```

## Command-line tools

### Image smoothing with nonlinear conjugate gradient

```
optilab-hqr IMAGE.pgm LAMBDA K RULE [-o OUTPUT.pgm]
```

- `LAMBDA`: regularisation weight.
- `K`: constant of the edge-preserving potential.
- `RULE`: `1` Fletcher-Reeves, `2` Polak-Ribière, `3` Hestenes-Stiefel.

Smoothing starts from an all-zero image. Each iteration prints its number,
the objective value before the step, the step length, β and the gradient
norm. Iteration stops when the objective changes by at most 100 or after
500 iterations. The result, rescaled to [0, 255], is written to
`NLConjGrad.pgm` unless `-o` names another file. If the input cannot be
read, a message goes to standard error and the exit status is 1.

### Phase unwrapping

```
optilab-unwrap WRAPPED.pgm METHOD [-d OUTPUT_DIR]
```

- `METHOD`: `1` Gauss-Newton, `2` Levenberg-Marquardt.

The input image is rescaled to [-π, π]. Its raw gradients are saved as
`GradX.pgm` and `GradY.pgm`, the wrapped gradients as `GradXW.pgm` and
`GradYW.pgm`, the initial model as `Result0.pgm`, and the model after each
of the 100 rounds as `Result1.pgm` to `Result100.pgm`, all in the current
directory or in the one given by `-d`. Each round prints the objective
before every block update and the search directions with their norms.

## Library use

```python
import numpy as np
from optilab import linalg

a = np.array([[4.0, 1.0], [1.0, 3.0]])
b = np.array([1.0, 2.0])
x = linalg.cholesky_solve(a, b)
smallest = linalg.inverse_power_method(a, np.ones(2))
```

Images are handled as two-dimensional NumPy arrays:

```python
from optilab import pgm, hqr

image = pgm.read_pgm("input.pgm")
gx, gy = pgm.central_gradient(image)

smoothed, history = hqr.nonlinear_conjugate_gradient(
    np.zeros_like(image), image, 1.0, 10.0, hqr.BetaRule.POLAK_RIBIERE
)
pgm.write_pgm("smoothed.pgm", pgm.normalize_image(smoothed, 255))
```

Phase unwrapping returns the fitted parameters and a per-round history:

```python
from optilab import unwrap

wrapped = pgm.pi_normalize_image(pgm.read_pgm("wrapped.pgm"))
alpha, mu, sigma, history = unwrap.nonlinear_least_squares(
    wrapped, unwrap.Method.GAUSS_NEWTON
)
surface = unwrap.unwrap_image(alpha, mu, sigma, wrapped.shape)
```

## What is not included

The package has no general-purpose line-search minimiser for arbitrary
functions: there are no gradient-descent or Newton drivers, no standalone
Wolfe or Goldstein condition checks, and no Rosenbrock test function or
command for benchmarking step-length rules. The strong Wolfe check and
quadratic step model exist only inside `optilab.hqr`, tied to its smoothing
model, and the backtracking search exists only inside `optilab.unwrap`.