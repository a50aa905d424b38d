# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Stain matrix utilities.

Stain matrices are stored with one stain per **row**: an ``(N, 3)`` array
with ``N`` in ``{1, 2, 3}``.  The interchange format between estimators and
their consumers is a flat 9-element array holding three rows, with trailing
rows zero-filled when fewer than three stains are defined.
"""

from __future__ import annotations

import enum

import numpy as np
from numpy.typing import ArrayLike, NDArray


class SortOrder(enum.Enum):
    """Ordering of stain rows by their red-channel OD."""

    ASCENDING = "ascending"
    DESCENDING = "descending"


def normalize_rows(matrix: ArrayLike) -> NDArray[np.float64]:
    """Scale every row of *matrix* to unit Euclidean norm.

    Rows with zero norm cannot be normalized and are returned unchanged.
    A 1D input is treated as a single row and returned 1D.

    :param matrix: ``(N, C)`` or ``(C,)`` array
    :return: array of the same shape, float64
    """
    a = np.array(matrix, dtype=np.float64)
    if a.size == 0:
        return a
    rows = a.reshape(1, -1) if a.ndim == 1 else a
    norms = np.linalg.norm(rows, axis=1, keepdims=True)
    norms = np.where(norms == 0.0, 1.0, norms)
    rows = rows / norms
    return rows.reshape(a.shape)


def sort_stain_vectors(
    matrix: ArrayLike,
    order: SortOrder = SortOrder.DESCENDING,
) -> NDArray[np.float64]:
    """Reorder stain rows by the value of their first (red) component.

    The sort is stable, so rows with equal red OD keep their relative
    order.  All-zero rows (padding of the flat format) are not sorted and
    stay at the end.

    :param matrix: ``(N, 3)`` stain matrix
    :param order: :attr:`SortOrder.DESCENDING` puts the highest red OD first
    :return: reordered copy of *matrix*
    """
    a = np.array(matrix, dtype=np.float64)
    if a.ndim != 2 or a.shape[0] < 2:
        return a

    used = np.any(a != 0.0, axis=1)
    stains = a[used]
    key = stains[:, 0] if order is SortOrder.ASCENDING else -stains[:, 0]
    stains = stains[np.argsort(key, kind="stable")]
    return np.vstack([stains, a[~used]])


def stains_to_flat(matrix: ArrayLike, normalize: bool = False) -> NDArray[np.float64]:
    """Pack an ``(N, 3)`` stain matrix into the flat 9-element format.

    :param matrix: up to three stain rows (any array with a multiple of
        three elements, at most nine)
    :param normalize: normalize each row before packing
    :return: ``(9,)`` array, zeros when the input is empty or its size is
        not a multiple of three
    """
    flat = np.zeros(9, dtype=np.float64)
    a = np.asarray(matrix, dtype=np.float64).ravel()
    if a.size == 0 or a.size % 3 != 0:
        return flat
    n = min(a.size, 9)
    flat[:n] = a[:n]
    if normalize:
        flat = normalize_rows(flat.reshape(3, 3)).ravel()
    return flat


def flat_to_stains(
    flat: ArrayLike,
    num_rows: int = -1,
    normalize: bool = False,
) -> NDArray[np.float64]:
    """Unpack the flat 9-element format into an ``(N, 3)`` stain matrix.

    :param flat: 9 elements (three rows of three)
    :param num_rows: number of rows to keep; values outside ``1..3`` keep
        all three, except ``0`` which yields an empty array
    :param normalize: normalize each row before returning
    :return: ``(num_rows, 3)`` array
    """
    if num_rows == 0:
        return np.empty((0, 3), dtype=np.float64)
    rows = 3 if num_rows < 0 or num_rows > 3 else num_rows
    a = np.zeros(9, dtype=np.float64)
    src = np.asarray(flat, dtype=np.float64).ravel()[:9]
    a[: src.size] = src
    matrix = a.reshape(3, 3)
    if normalize:
        matrix = normalize_rows(matrix)
    return matrix[:rows].copy()


def arrays_equal(first: ArrayLike, second: ArrayLike) -> bool:
    """Return ``True`` when both arrays have the same shape and elements.

    Two empty arrays compare equal regardless of shape.
    """
    a = np.asarray(first)
    b = np.asarray(second)
    if a.size == 0 and b.size == 0:
        return True
    return a.shape == b.shape and bool(np.array_equal(a, b))


def is_well_conditioned(matrix: ArrayLike, max_condition: float = 1e6) -> bool:
    """Return ``True`` when the stain rows are finite and linearly independent.

    :param matrix: ``(N, 3)`` stain matrix
    :param max_condition: largest acceptable ratio of largest to smallest
        singular value
    """
    a = np.asarray(matrix, dtype=np.float64)
    if a.ndim != 2 or a.shape[0] == 0 or not np.all(np.isfinite(a)):
        return False
    s = np.linalg.svd(a, compute_uv=False)
    if s[-1] <= 0.0:
        return False
    return bool(s[0] / s[-1] <= max_condition)
