# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Extremal directions of a projected point cloud (Macenko histogram step).

Macenko et al. [1]_ estimate the two stain directions as robust angular
extremes of the OD cloud projected onto its plane of maximal spread.  The
angles of the projected points are histogrammed over ``[-π, π)`` and the bins
holding the ``(100 - p) / 2`` and ``100 - (100 - p) / 2`` percentiles of the
angular mass are converted back to unit directions.

.. [1] Macenko M. et al., "A method for normalizing histology slides for
   quantitative analysis", ISBI 2009.
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import ArrayLike, NDArray

from stain_unmixing.angle_histogram import (
    DEFAULT_RANGE,
    AngleHistogram,
    angles_to_vectors,
    vectors_to_angles,
)

logger = logging.getLogger(__name__)

DEFAULT_PERCENTILE = 98.0
DEFAULT_HISTOGRAM_BINS = 1024


def percentile_bins(hist: ArrayLike, percentile: float) -> tuple[int, int] | None:
    """Return the bins enclosing the central *percentile* of the mass in *hist*.

    The lower bin is the first one whose cumulative mass exceeds the lower
    tail fraction, the upper bin the first one whose cumulative mass reaches
    the upper fraction.  With ``percentile=100`` these are the first and
    last non-empty bins.

    :param hist: 1D histogram counts
    :param percentile: central percentile in ``(0, 100]``
    :return: ``(low_bin, high_bin)`` or ``None`` if the histogram is empty or
        the percentile is out of range
    """
    counts = np.asarray(hist, dtype=np.float64).ravel()
    if counts.size == 0 or not 0.0 < percentile <= 100.0:
        return None
    total = counts.sum()
    if total <= 0:
        return None

    tail = (100.0 - percentile) / 200.0
    cumulative = np.cumsum(counts) / total
    low = int(np.argmax(cumulative > tail))
    # compare against a slightly relaxed bound so float error in the
    # cumulative sum cannot skip the last occupied bin
    high = int(np.argmax(cumulative >= (1.0 - tail) - 1e-12))
    return low, high


class PercentileThresholdExtractor:
    """Find two extremal 2D directions from projected points.

    :param percentile: central angular percentile kept, in ``(0, 100]``
    :param nbins: number of histogram bins over ``[-π, π)``
    """

    def __init__(
        self,
        percentile: float = DEFAULT_PERCENTILE,
        nbins: int = DEFAULT_HISTOGRAM_BINS,
    ):
        self.percentile = float(percentile)
        self.histogram = AngleHistogram(nbins, DEFAULT_RANGE)

    @property
    def nbins(self) -> int:
        return self.histogram.nbins

    def percentile_threshold_vectors(self, points: ArrayLike) -> NDArray[np.float64]:
        """Return the two extremal unit directions of *points*.

        Each returned direction points at the centre of its boundary bin, so
        it is within half a bin width of the true percentile angle.  When all
        of the mass falls into one bin the two directions are identical.

        :param points: ``(N, 2)`` projected points
        :return: ``(2, 2)`` array (lower-angle direction first), or an empty
            array if the percentile is not positive, the histogram is
            invalid or no point has a defined angle
        """
        if self.percentile <= 0.0:
            logger.debug("percentile %s is not positive", self.percentile)
            return np.empty(0, dtype=np.float64)

        angles = vectors_to_angles(points)
        if angles.size == 0:
            return np.empty(0, dtype=np.float64)

        hist = self.histogram.fill(angles)
        bounds = percentile_bins(hist, self.percentile)
        if bounds is None:
            return np.empty(0, dtype=np.float64)

        low, high = bounds
        low_angle = self.histogram.bin_to_angle(low + 0.5)
        high_angle = self.histogram.bin_to_angle(high + 0.5)
        logger.debug(
            "percentile %.3g of %d angles: bins %d..%d (%.4f..%.4f rad)",
            self.percentile, int(hist.sum()), low, high, low_angle, high_angle,
        )
        return angles_to_vectors_pair(low_angle, high_angle)


def angles_to_vectors_pair(first: float, second: float) -> NDArray[np.float64]:
    """Like :func:`angles_to_vectors` but accepts the ``(0, 0)`` pair.

    Two directions along the positive x axis are a legitimate result of
    a degenerate cloud, so they are built directly here.
    """
    if first == 0.0 and second == 0.0:
        return np.array([[1.0, 0.0], [1.0, 0.0]])
    return angles_to_vectors([first, second])
