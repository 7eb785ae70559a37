import numpy as np
import pytest
from numpy.linalg import LinAlgError

from optilab.linalg import (
    backward_substitution,
    cholesky_solve,
    conjugate_gradient,
    crout_decomposition,
    forward_substitution,
    gaussian_elimination,
    inverse_power_method,
    ldl_decomposition,
    read_equation_system,
    solve_crout_system,
    solve_diagonal,
    solve_lower_triangular,
    solve_unit_upper_triangular,
)

SPD = np.array(
    [
        [4.0, 1.0, 0.5, 0.0],
        [1.0, 5.0, 1.0, 0.3],
        [0.5, 1.0, 6.0, 1.0],
        [0.0, 0.3, 1.0, 3.0],
    ]
)
RHS = np.array([1.0, -2.0, 3.0, 0.5])

GENERAL = np.array(
    [
        [3.0, 2.0, -1.0],
        [2.0, -2.0, 4.0],
        [-1.0, 0.5, -1.0],
    ]
)
GENERAL_RHS = np.array([1.0, -2.0, 0.0])


@pytest.mark.parametrize(
    "solver", [gaussian_elimination, solve_crout_system, cholesky_solve, conjugate_gradient]
)
def test_solvers_satisfy_spd_system(solver):
    x = solver(SPD, RHS)
    np.testing.assert_allclose(SPD @ x, RHS, atol=1e-8)


@pytest.mark.parametrize("solver", [gaussian_elimination, solve_crout_system])
def test_general_solvers(solver):
    x = solver(GENERAL, GENERAL_RHS)
    np.testing.assert_allclose(GENERAL @ x, GENERAL_RHS, atol=1e-10)


def test_gaussian_elimination_known_solution():
    x = gaussian_elimination(GENERAL, GENERAL_RHS)
    np.testing.assert_allclose(x, [1.0, -2.0, -2.0], atol=1e-10)


def test_inputs_are_not_modified():
    a = SPD.copy()
    b = RHS.copy()
    gaussian_elimination(a, b)
    cholesky_solve(a, b)
    crout_decomposition(a)
    np.testing.assert_array_equal(a, SPD)
    np.testing.assert_array_equal(b, RHS)


def test_crout_factors_reproduce_matrix():
    packed = crout_decomposition(GENERAL)
    lower = np.tril(packed)
    upper = np.triu(packed, 1) + np.eye(3)
    np.testing.assert_allclose(lower @ upper, GENERAL, atol=1e-12)


def test_crout_triangular_solves_compose():
    packed = crout_decomposition(SPD)
    y = solve_lower_triangular(packed, RHS)
    np.testing.assert_allclose(np.tril(packed) @ y, RHS, atol=1e-12)
    x = solve_unit_upper_triangular(packed, y)
    np.testing.assert_allclose((np.triu(packed, 1) + np.eye(4)) @ x, y, atol=1e-12)


def test_ldl_factors_reproduce_matrix():
    packed = ldl_decomposition(SPD)
    lower = np.tril(packed, -1) + np.eye(4)
    diagonal = np.diag(np.diag(packed))
    np.testing.assert_allclose(lower @ diagonal @ lower.T, SPD, atol=1e-12)
    np.testing.assert_allclose(packed, packed.T)


def test_forward_and_backward_substitution_ignore_diagonal():
    m = np.array([[9.0, 2.0, 3.0], [4.0, 9.0, 5.0], [6.0, 7.0, 9.0]])
    b = np.array([1.0, 2.0, 3.0])
    lower = np.tril(m, -1) + np.eye(3)
    upper = np.triu(m, 1) + np.eye(3)
    np.testing.assert_allclose(lower @ forward_substitution(m, b), b)
    np.testing.assert_allclose(upper @ backward_substitution(m, b), b)


def test_solve_diagonal_uses_only_diagonal():
    d = np.array([[2.0, 7.0], [7.0, 4.0]])
    b = np.array([6.0, 8.0])
    np.testing.assert_allclose(solve_diagonal(d, b), b / np.diag(d))


def test_conjugate_gradient_zero_rhs_returns_zero():
    x = conjugate_gradient(SPD, np.zeros(4))
    np.testing.assert_array_equal(x, np.zeros(4))


def test_inverse_power_method_finds_smallest_eigenvalue():
    a = np.diag([2.0, 5.0, 9.0])
    value = inverse_power_method(a, np.ones(3), 1e-10, 1000)
    assert value == pytest.approx(2.0, abs=1e-6)


def test_inverse_power_method_matches_numpy_on_spd():
    value = inverse_power_method(SPD, np.ones(4), 1e-12, 5000)
    assert value == pytest.approx(np.linalg.eigvalsh(SPD).min(), rel=1e-5)


def test_inverse_power_method_without_convergence_returns_zero():
    assert inverse_power_method(np.diag([2.0, 5.0]), np.ones(2), 1e-12, 1) == 0.0


def test_inverse_power_method_rejects_zero_start():
    with pytest.raises(ValueError):
        inverse_power_method(SPD, np.zeros(4))


def test_zero_pivot_raises():
    singular = np.array([[0.0, 1.0], [1.0, 0.0]])
    with pytest.raises(LinAlgError):
        gaussian_elimination(singular, [1.0, 1.0])
    with pytest.raises(LinAlgError):
        crout_decomposition(singular)
    with pytest.raises(LinAlgError):
        ldl_decomposition(singular)


def test_shape_errors():
    with pytest.raises(ValueError):
        gaussian_elimination(np.ones((2, 3)), [1.0, 2.0])
    with pytest.raises(ValueError):
        cholesky_solve(SPD, [1.0, 2.0])


def test_read_equation_system_round_trip(tmp_path):
    path = tmp_path / "system.txt"
    lines = ["4"]
    lines += [" ".join(repr(v) for v in row) for row in SPD]
    lines.append(" ".join(repr(v) for v in RHS))
    path.write_text("\n".join(lines) + "\n")
    a, b = read_equation_system(path)
    np.testing.assert_array_equal(a, SPD)
    np.testing.assert_array_equal(b, RHS)


def test_read_equation_system_truncated(tmp_path):
    path = tmp_path / "short.txt"
    path.write_text("2\n1 2\n3 4\n5\n")
    with pytest.raises(ValueError):
        read_equation_system(path)


def test_read_equation_system_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_equation_system(tmp_path / "absent.txt")