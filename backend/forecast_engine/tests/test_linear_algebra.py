import numpy as np
import pytest

from forecast_engine.core.exceptions import SingularMatrixError
from forecast_engine.core.linear_algebra import (
    dot,
    matrix_multiply,
    matrix_vector_multiply,
    solve_linear_system,
    solve_normal_equation,
    transpose,
)


def test_transpose_swaps_rows_and_columns():
    result = transpose([[1, 2, 3], [4, 5, 6]])
    assert result.tolist() == [[1, 4], [2, 5], [3, 6]]


def test_matrix_products():
    a = [[1, 2], [3, 4]]
    b = [[5, 6], [7, 8]]
    assert matrix_multiply(a, b).tolist() == [[19, 22], [43, 50]]
    assert matrix_vector_multiply(a, [1, 1]).tolist() == [3, 7]
    assert dot([1, 2, 3], [4, 5, 6]) == 32


def test_matrix_multiply_rejects_mismatched_shapes():
    with pytest.raises(ValueError):
        matrix_multiply([[1, 2, 3]], [[1, 2]])


def test_solve_simple_system():
    solution = solve_linear_system([[2, 1], [1, 3]], [3, 5])
    assert solution == pytest.approx([0.8, 1.4])


def test_solve_requires_row_pivoting():
    solution = solve_linear_system([[0, 1], [1, 0]], [2, 3])
    assert solution == pytest.approx([3, 2])


def test_singular_system_raises():
    with pytest.raises(SingularMatrixError):
        solve_linear_system([[1, 2], [2, 4]], [3, 6])


def test_normal_equation_recovers_line():
    xs = np.linspace(0, 1, 20)
    design = np.column_stack([np.ones_like(xs), xs])
    target = 1.0 + 2.0 * xs
    beta = solve_normal_equation(design, target)
    assert beta == pytest.approx([1.0, 2.0])


def test_ridge_makes_collinear_design_solvable():
    design = [[1.0, 0.5]] * 10
    target = [1.0] * 10

    with pytest.raises(SingularMatrixError):
        solve_normal_equation(design, target)

    beta = solve_normal_equation(design, target, ridge_lambda=0.01)
    assert np.all(np.isfinite(beta))
    assert float(np.dot([1.0, 0.5], beta)) == pytest.approx(1.0, abs=1e-2)
