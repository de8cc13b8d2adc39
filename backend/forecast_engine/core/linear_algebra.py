from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from forecast_engine.core.exceptions import SingularMatrixError


PIVOT_TOLERANCE = 1e-12


def transpose(matrix: Sequence[Sequence[float]]) -> np.ndarray:
    return np.asarray(matrix, dtype=float).T.copy()


def matrix_multiply(a: Sequence[Sequence[float]], b: Sequence[Sequence[float]]) -> np.ndarray:
    left = np.asarray(a, dtype=float)
    right = np.asarray(b, dtype=float)
    if left.shape[1] != right.shape[0]:
        raise ValueError(f"cannot multiply {left.shape} by {right.shape}")
    return left @ right


def matrix_vector_multiply(matrix: Sequence[Sequence[float]], vector: Sequence[float]) -> np.ndarray:
    m = np.asarray(matrix, dtype=float)
    v = np.asarray(vector, dtype=float)
    if m.shape[1] != v.shape[0]:
        raise ValueError(f"cannot multiply {m.shape} by vector of length {v.shape[0]}")
    return m @ v


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    return float(np.dot(np.asarray(a, dtype=float), np.asarray(b, dtype=float)))


def solve_linear_system(a: Sequence[Sequence[float]], b: Sequence[float]) -> np.ndarray:
    """Solve ``a @ x = b`` by Gaussian elimination with partial pivoting.

    A pivot whose magnitude falls below ``PIVOT_TOLERANCE`` times the largest
    entry of ``a`` is treated as zero and raises :class:`SingularMatrixError`.
    """
    matrix = np.asarray(a, dtype=float)
    rhs = np.asarray(b, dtype=float)
    n = matrix.shape[0]
    if matrix.shape != (n, n) or rhs.shape != (n,):
        raise ValueError(f"expected square system, got {matrix.shape} and {rhs.shape}")

    augmented = np.column_stack([matrix, rhs])
    scale = float(np.max(np.abs(matrix))) if n else 0.0
    threshold = PIVOT_TOLERANCE * max(scale, 1.0)

    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(augmented[col:, col])))
        if abs(augmented[pivot_row, col]) <= threshold:
            raise SingularMatrixError(f"zero pivot in column {col}")
        if pivot_row != col:
            augmented[[col, pivot_row]] = augmented[[pivot_row, col]]

        factors = augmented[col + 1 :, col] / augmented[col, col]
        augmented[col + 1 :, col:] -= np.outer(factors, augmented[col, col:])

    solution = np.zeros(n)
    for row in range(n - 1, -1, -1):
        residual = augmented[row, n] - augmented[row, row + 1 : n] @ solution[row + 1 :]
        solution[row] = residual / augmented[row, row]

    if not np.all(np.isfinite(solution)):
        raise SingularMatrixError("solution is not finite")
    return solution


def solve_normal_equation(
    design: Sequence[Sequence[float]],
    target: Sequence[float],
    ridge_lambda: float = 0.0,
) -> np.ndarray:
    """Least squares via ``(XtX + lambda I) beta = Xt y``."""
    x_t = transpose(design)
    xtx = matrix_multiply(x_t, design)
    if ridge_lambda:
        xtx = xtx + ridge_lambda * np.eye(xtx.shape[0])
    xty = matrix_vector_multiply(x_t, target)
    return solve_linear_system(xtx, xty)
