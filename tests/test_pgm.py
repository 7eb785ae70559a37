import numpy as np
import pytest

from optilab.pgm import (
    central_gradient,
    forward_gradient,
    image_hessian,
    image_quadratic_form,
    image_vector_product,
    neighbour_count,
    neighbour_sum,
    normalize_image,
    pi_normalize_image,
    read_pgm,
    write_pgm,
)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


def test_round_trip_integer_image(tmp_path, rng):
    image = rng.integers(0, 256, size=(4, 7)).astype(float)
    path = tmp_path / "img.pgm"
    write_pgm(path, image)
    assert np.array_equal(read_pgm(path), image)


def test_write_header_layout(tmp_path):
    path = tmp_path / "img.pgm"
    write_pgm(path, np.zeros((2, 3)))
    lines = path.read_text().splitlines()
    assert lines[0] == "P2"
    assert lines[1].startswith("#")
    assert lines[2] == "3 2"
    assert lines[3] == "255"
    assert len(lines) == 6


def test_write_truncates_toward_zero(tmp_path):
    path = tmp_path / "img.pgm"
    write_pgm(path, np.array([[1.9, -1.5]]))
    assert read_pgm(path).tolist() == [[1.0, -1.0]]


def test_write_rejects_nan(tmp_path):
    with pytest.raises(ValueError):
        write_pgm(tmp_path / "img.pgm", np.array([[np.nan]]))


def test_read_skips_comments(tmp_path):
    path = tmp_path / "img.pgm"
    path.write_text("P2\n# a comment\n# another\n2 2\n255\n1 2\n3 4\n")
    assert read_pgm(path).tolist() == [[1.0, 2.0], [3.0, 4.0]]


def test_read_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_pgm(tmp_path / "absent.pgm")


def test_read_truncated_data(tmp_path):
    path = tmp_path / "img.pgm"
    path.write_text("P2\n3 3\n255\n1 2 3\n")
    with pytest.raises(ValueError):
        read_pgm(path)


def test_forward_gradient_reconstructs_image(rng):
    image = rng.normal(size=(5, 6))
    g_rows, g_cols = forward_gradient(image)
    assert np.allclose(g_rows[0], 0.0)
    assert np.allclose(g_cols[:, 0], 0.0)
    assert np.allclose(np.cumsum(g_rows, axis=0) + image[0], image)
    assert np.allclose(np.cumsum(g_cols, axis=1) + image[:, :1], image)


def test_central_gradient_is_periodic(rng):
    image = rng.normal(size=(6, 6))
    g_cols, g_rows = central_gradient(image)
    assert np.allclose(g_cols.sum(axis=1), 0.0)
    assert np.allclose(g_rows.sum(axis=0), 0.0)
    shifted_cols, shifted_rows = central_gradient(np.roll(image, 2, axis=1))
    assert np.allclose(shifted_cols, np.roll(g_cols, 2, axis=1))
    assert np.allclose(shifted_rows, np.roll(g_rows, 2, axis=1))


def test_central_gradient_constant_is_zero():
    g_cols, g_rows = central_gradient(np.full((4, 4), 7.0))
    assert np.allclose(g_cols, 0.0) and np.allclose(g_rows, 0.0)


def test_image_hessian_composes_gradients(rng):
    image = rng.normal(size=(4, 5))
    gx, gy = forward_gradient(image)
    hessian = image_hessian(gx, gy)
    assert len(hessian) == 4
    expected = (*forward_gradient(gx), *forward_gradient(gy))
    for got, want in zip(hessian, expected):
        assert np.allclose(got, want)
    central = image_hessian(gx, gy, central=True)
    assert np.allclose(central[0], central_gradient(gx)[0])


def test_normalize_image_range(rng):
    image = rng.uniform(10, 20, size=(3, 4))
    result = normalize_image(image, 255)
    assert result.min() == pytest.approx(0.0)
    assert result.max() == pytest.approx(255.0)


def test_normalize_image_maximum_never_below_zero():
    result = normalize_image(np.array([[-4.0, -2.0]]), 255)
    assert result[0, 0] == pytest.approx(0.0)
    assert result.max() < 255


def test_normalize_flat_image_raises():
    with pytest.raises(ValueError):
        normalize_image(np.full((2, 2), 5.0), 255)


def test_pi_normalize_range():
    result = pi_normalize_image(np.arange(6.0).reshape(2, 3))
    assert result.min() == pytest.approx(-np.pi)
    assert result.max() == pytest.approx(np.pi)


def test_neighbour_count_matches_sum_of_ones():
    ones = np.ones((3, 4))
    for row in range(3):
        for col in range(4):
            assert neighbour_count(ones, row, col) == neighbour_sum(ones, row, col)
    assert neighbour_count(ones, 0, 0) == 2


def test_neighbour_out_of_range():
    with pytest.raises(IndexError):
        neighbour_sum(np.ones((2, 2)), 2, 0)


def test_image_vector_product_identity_at_zero(rng):
    image = rng.normal(size=(4, 4))
    assert np.allclose(image_vector_product(image, 0.0), image)


def test_image_vector_product_matches_neighbour_sum(rng):
    image = rng.normal(size=(3, 5))
    product = image_vector_product(image, 0.3)
    for row in range(3):
        for col in range(5):
            assert product[row, col] == pytest.approx(
                1.3 * 1 * image[row, col] + 0.3 * 3 * image[row, col]
                - 0.3 * neighbour_sum(image, row, col)
            )


def test_image_vector_product_is_symmetric(rng):
    u = rng.normal(size=(4, 5))
    v = rng.normal(size=(4, 5))
    left = np.vdot(image_vector_product(u, 0.7), v)
    right = np.vdot(u, image_vector_product(v, 0.7))
    assert left == pytest.approx(right)


def test_image_quadratic_form(rng):
    image = rng.normal(size=(4, 4))
    assert image_quadratic_form(image, 0.0) == pytest.approx(np.sum(image**2))
    assert image_quadratic_form(image, 2.0) > 0