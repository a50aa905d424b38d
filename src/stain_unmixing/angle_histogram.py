# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Histograms of 2D directions expressed as angles.

Angles live in the half-open range ``[-π, π)``.  A direction ``(x, y)`` maps
to ``atan2(y, x)``; because ``atan2`` returns values in ``(-π, π]`` the
single value ``π`` is folded onto ``-π``, which is the same direction.

Bins are a strict linear map of the range::

    bin   = (angle - lo) / width
    angle = lo + width * bin

None of the functions here raise on bad input.  Invalid shapes, ranges or
bin counts produce an empty array (or :data:`UNDEFINED` for scalar maps),
and callers are expected to check the size of what comes back.
"""

from __future__ import annotations

import logging
import math
from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

logger = logging.getLogger(__name__)

#: Sentinel for undefined angles and invalid bin conversions.
UNDEFINED = float(np.finfo(np.float32).max)

#: Components smaller than this (in absolute value) count as zero.
ZERO_TOLERANCE = 1e-6

DEFAULT_BINS = 128
DEFAULT_RANGE = (-math.pi, math.pi)


def _valid_range(hist_range: Sequence[float]) -> bool:
    return len(hist_range) == 2 and hist_range[1] > hist_range[0]


def fill_histogram(
    values: ArrayLike,
    nbins: int,
    hist_range: Sequence[float],
) -> NDArray[np.float64]:
    """Count *values* into ``nbins`` uniform bins over ``[lo, hi)``.

    Values outside the range, non-finite values and :data:`UNDEFINED` are
    not counted, so the total mass equals the number of in-range values.

    :param values: scalar values, any shape (flattened)
    :param nbins: number of bins, must be at least 1
    :param hist_range: ``(lo, hi)`` with ``hi > lo``
    :return: ``(nbins,)`` float64 counts, or an empty array when the input
        is empty, ``nbins <= 0`` or the range is degenerate
    """
    vals = np.asarray(values, dtype=np.float64).ravel()
    if vals.size == 0 or nbins <= 0 or not _valid_range(hist_range):
        return np.empty(0, dtype=np.float64)

    lo, hi = float(hist_range[0]), float(hist_range[1])
    vals = vals[np.isfinite(vals) & (vals != UNDEFINED)]
    vals = vals[(vals >= lo) & (vals < hi)]

    width = (hi - lo) / nbins
    bins = np.floor((vals - lo) / width).astype(np.int64)
    # rounding can push a value just under hi into bin nbins
    np.clip(bins, 0, nbins - 1, out=bins)
    return np.bincount(bins, minlength=nbins).astype(np.float64)


def vectors_to_angles(vectors: ArrayLike) -> NDArray[np.float64]:
    """Convert 2D vectors (one per row) to angles in ``[-π, π)``.

    Only the first two columns are used.  A vector whose two components are
    both within :data:`ZERO_TOLERANCE` of zero has no direction and is
    mapped to :data:`UNDEFINED`.

    :param vectors: ``(N, >=2)`` array
    :return: ``(N,)`` angles, or an empty array for empty input or fewer
        than two columns
    """
    vecs = np.asarray(vectors, dtype=np.float64)
    if vecs.ndim != 2 or vecs.shape[0] == 0 or vecs.shape[1] < 2:
        return np.empty(0, dtype=np.float64)

    x = vecs[:, 0]
    y = vecs[:, 1]
    angles = np.arctan2(y, x)
    angles[angles >= math.pi] = -math.pi
    undefined = (np.abs(x) < ZERO_TOLERANCE) & (np.abs(y) < ZERO_TOLERANCE)
    angles[undefined] = UNDEFINED
    if np.any(undefined):
        logger.debug("%d of %d vectors have no direction", int(undefined.sum()), len(angles))
    return angles


def angles_to_vectors(angles: ArrayLike) -> NDArray[np.float64]:
    """Convert a pair of angles to two 2D unit vectors ``(cos θ, sin θ)``.

    The pair may be given flat, as a ``(1, >=2)`` row or as a ``(>=2, 1)``
    column; only the first two angles are used.  The exact pair ``(0, 0)``
    is rejected.

    :param angles: two angles in radians
    :return: ``(2, 2)`` array, one vector per row, or an empty array
    """
    arr = np.asarray(angles, dtype=np.float64)
    if arr.ndim == 1 and arr.size >= 2:
        pair = arr[:2]
    elif arr.ndim == 2 and arr.shape[0] == 1 and arr.shape[1] >= 2:
        pair = arr[0, :2]
    elif arr.ndim == 2 and arr.shape[0] >= 2 and arr.shape[1] == 1:
        pair = arr[:2, 0]
    else:
        return np.empty(0, dtype=np.float64)

    if pair[0] == 0.0 and pair[1] == 0.0:
        return np.empty(0, dtype=np.float64)
    return np.column_stack([np.cos(pair), np.sin(pair)])


class AngleHistogram:
    """A histogram over a fixed angular range.

    :param nbins: number of bins (default 128)
    :param hist_range: ``(lo, hi)`` range of angles (default ``(-π, π)``)
    """

    def __init__(self, nbins: int = DEFAULT_BINS, hist_range: Sequence[float] = DEFAULT_RANGE):
        self.nbins = int(nbins)
        self.hist_range = (float(hist_range[0]), float(hist_range[1]))

    def __repr__(self) -> str:
        return f"AngleHistogram(nbins={self.nbins}, hist_range={self.hist_range})"

    @property
    def bin_width(self) -> float:
        """Width of one bin in radians, or :data:`UNDEFINED` when invalid."""
        if not self.is_valid():
            return UNDEFINED
        return (self.hist_range[1] - self.hist_range[0]) / self.nbins

    def is_valid(self) -> bool:
        return self.nbins >= 1 and _valid_range(self.hist_range)

    def fill(self, values: ArrayLike) -> NDArray[np.float64]:
        """Histogram *values* using this instance's bins and range."""
        return fill_histogram(values, self.nbins, self.hist_range)

    def angle_to_bin(self, angle: float) -> float:
        """Fractional bin position of *angle*; :data:`UNDEFINED` when invalid."""
        if not self.is_valid():
            return UNDEFINED
        return (angle - self.hist_range[0]) / self.bin_width

    def bin_to_angle(self, bin_: float) -> float:
        """Angle at fractional bin position *bin_*; exact inverse of :meth:`angle_to_bin`."""
        if not self.is_valid():
            return UNDEFINED
        return self.hist_range[0] + self.bin_width * bin_

    vectors_to_angles = staticmethod(vectors_to_angles)
    angles_to_vectors = staticmethod(angles_to_vectors)
