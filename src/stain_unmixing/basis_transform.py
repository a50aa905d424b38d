# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Projection of OD samples onto their plane of maximal spread.

:class:`BasisTransform` computes two orthonormal directions from an
``(N, 3)`` sample set using a singular value decomposition and then
projects points onto that plane and back.  Back-projection is the exact
inverse only for points that already lie in the plane; for anything else the
out-of-plane component is discarded, so the round trip is lossy.

Directions are sign-normalized so that the largest-magnitude component of
each is positive.  For OD data, whose samples all lie in the positive
octant, this places the projected cloud around angle 0 rather than
straddling ``±π``.
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import ArrayLike, NDArray

logger = logging.getLogger(__name__)


def _sign_normalize(directions: np.ndarray) -> np.ndarray:
    idx = np.argmax(np.abs(directions), axis=1)
    signs = np.sign(directions[np.arange(directions.shape[0]), idx])
    signs[signs == 0] = 1.0
    return directions * signs[:, None]


class BasisTransform:
    """Two-direction basis computed once from a sample set.

    :param samples: ``(N, 3)`` sample points (OD space)
    :param optimize_directions: when ``True`` the directions are taken from
        the non-centered samples, which keeps the dominant direction aligned
        with the data rather than with its spread about the mean.  When
        ``False`` the samples are centered on their mean first.
    """

    def __init__(self, samples: ArrayLike, optimize_directions: bool = True):
        self.optimize_directions = optimize_directions
        self.basis: NDArray[np.float64] = np.empty(0, dtype=np.float64)
        self.mean: NDArray[np.float64] = np.empty(0, dtype=np.float64)
        self.singular_values: NDArray[np.float64] = np.empty(0, dtype=np.float64)

        data = np.asarray(samples, dtype=np.float64)
        if data.ndim != 2 or data.shape[0] < 2 or data.shape[1] < 2:
            logger.debug("cannot compute a basis from samples of shape %s", data.shape)
            return
        if not np.all(np.isfinite(data)):
            logger.debug("cannot compute a basis from non-finite samples")
            return

        self.mean = data.mean(axis=0)
        fit = data if optimize_directions else data - self.mean
        _, s, vh = np.linalg.svd(fit, full_matrices=False)
        self.basis = _sign_normalize(vh[:2])
        self.singular_values = s[:2]
        logger.debug(
            "basis from %d samples, singular values %s", data.shape[0], self.singular_values
        )

    @property
    def dimensions(self) -> int:
        """Dimensionality of the sample space, 0 when no basis was computed."""
        return self.basis.shape[1] if self.is_valid() else 0

    def is_valid(self) -> bool:
        return self.basis.ndim == 2 and self.basis.shape[0] == 2

    def project_points(self, points: ArrayLike, use_mean: bool = False) -> NDArray[np.float64]:
        """Project ``(M, D)`` points onto the basis plane.

        :param points: points with the same dimensionality as the samples
        :param use_mean: subtract the sample mean before projecting
        :return: ``(M, 2)`` coordinates, or an empty array if the basis is
            invalid or the points have the wrong shape
        """
        pts = np.asarray(points, dtype=np.float64)
        if not self.is_valid() or pts.ndim != 2 or pts.shape[0] == 0:
            return np.empty(0, dtype=np.float64)
        if pts.shape[1] != self.dimensions:
            return np.empty(0, dtype=np.float64)

        if use_mean:
            pts = pts - self.mean
        return pts @ self.basis.T

    def back_project_points(self, points: ArrayLike, use_mean: bool = False) -> NDArray[np.float64]:
        """Map ``(M, 2)`` plane coordinates back to sample space.

        :param points: coordinates as produced by :meth:`project_points`
        :param use_mean: add the sample mean back after the linear map; must
            match the value given to :meth:`project_points`
        :return: ``(M, D)`` points, or an empty array on invalid input
        """
        pts = np.asarray(points, dtype=np.float64)
        if not self.is_valid() or pts.ndim != 2 or pts.shape[0] == 0 or pts.shape[1] != 2:
            return np.empty(0, dtype=np.float64)

        result = pts @ self.basis
        if use_mean:
            result = result + self.mean
        return result
