# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Colour deconvolution (stain unmixing).

Given a stain matrix **S** with one unit stain vector per row (``N x 3``,
``N`` in ``1..3``), the OD of a pixel is modelled as ``od = c x S`` where
``c`` holds the per-stain contributions.  Contributions are recovered with
the Moore-Penrose pseudo-inverse::

    c = od x pinv(S)

For three independent stains this is the ordinary inverse.  For fewer
stains it is the least-squares solution, identical to completing **S** with
an orthogonal residual vector and discarding the residual channel.

A stain matrix that is singular or ill-conditioned (duplicate or collinear
rows) cannot be inverted meaningfully.  :func:`unmixing_matrix` then falls
back to a passthrough that returns the first ``N`` OD channels unchanged,
so no NaN or Inf ever reaches the output.

The input array's dtype controls the working precision, as in
:mod:`stain_unmixing.optical_density`.

Typical usage::

    import numpy as np
    from stain_unmixing import rgb_color_deconvolution, reconstruct_rgb

    stains = np.array([[0.65, 0.70, 0.29], [0.07, 0.99, 0.11]])
    contributions = rgb_color_deconvolution(im_rgb, stains)

    # Zero-out the second stain and reconstruct
    contributions[..., 1] = 0.0
    first_only = reconstruct_rgb(contributions, stains)
"""

from __future__ import annotations

import logging
from typing import Union

import numpy as np
from numpy.typing import ArrayLike, NDArray

from stain_unmixing.optical_density import (
    DEFAULT_BACKGROUND,
    od_to_rgb,
    resolve_dtype,
    rgb_to_od,
)
from stain_unmixing.stain_math import is_well_conditioned, normalize_rows

logger = logging.getLogger(__name__)

_FloatArray = Union[NDArray[np.float32], NDArray[np.float64]]


def _check_stain_matrix(stain_matrix: np.ndarray) -> None:
    if stain_matrix.ndim != 2 or stain_matrix.shape[1] != 3 or not 1 <= stain_matrix.shape[0] <= 3:
        msg = f"stain_matrix must be (N, 3) with N in 1..3, got {stain_matrix.shape}"
        raise ValueError(msg)


def unmixing_matrix(stain_matrix: ArrayLike) -> NDArray[np.float64]:
    """Return the ``3 x N`` matrix mapping OD to stain contributions.

    :param stain_matrix: ``(N, 3)`` stain rows; normalized here
    :return: ``pinv(S)``, or the first ``N`` columns of the identity when
        *stain_matrix* is singular or ill-conditioned
    :raises ValueError: If *stain_matrix* is not ``(N, 3)`` with ``N`` in 1..3.
    """
    s = np.asarray(stain_matrix, dtype=np.float64)
    _check_stain_matrix(s)
    s = normalize_rows(s)
    if not is_well_conditioned(s):
        logger.warning("stain matrix is singular, falling back to OD passthrough: %s", s.tolist())
        return np.eye(3, s.shape[0])
    return np.linalg.pinv(s)


def color_deconvolution(
    im_od: ArrayLike,
    stain_matrix: ArrayLike,
) -> _FloatArray:
    """Decompose OD data into per-stain contributions.

    :param im_od: OD data with the colour channels in its last axis, e.g.
        ``(H, W, 3)`` or ``(N, 3)``
    :type im_od: ArrayLike
    :param stain_matrix: ``(N, 3)`` stain rows
    :type stain_matrix: ArrayLike
    :return: Contributions with shape ``(..., N)``; channel *i* belongs to
        stain *i*.  Dtype matches the computation precision.
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    :raises ValueError: If shapes are incompatible.
    """
    im_od = resolve_dtype(np.asarray(im_od))
    if im_od.ndim == 0 or im_od.shape[-1] != 3:
        msg = f"im_od must have 3 channels in its last axis, got shape {im_od.shape}"
        raise ValueError(msg)

    m = unmixing_matrix(stain_matrix).astype(im_od.dtype)
    return im_od @ m


def rgb_color_deconvolution(
    im_rgb: ArrayLike,
    stain_matrix: ArrayLike,
    background: float = DEFAULT_BACKGROUND,
) -> _FloatArray:
    """Decompose RGB data into per-stain contributions.

    Convenience wrapper converting to OD first, then applying
    :func:`color_deconvolution`.

    :param im_rgb: RGB data with values in ``[0, background]``
    :type im_rgb: ArrayLike
    :param stain_matrix: ``(N, 3)`` stain rows
    :type stain_matrix: ArrayLike
    :param background: incident intensity ``I0``
    :type background: float
    :return: Contributions with shape ``(..., N)``.
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    :raises ValueError: If shapes are incompatible.
    """
    return color_deconvolution(rgb_to_od(im_rgb, background=background), stain_matrix)


def reconstruct_rgb(
    contributions: ArrayLike,
    stain_matrix: ArrayLike,
    background: float = DEFAULT_BACKGROUND,
) -> _FloatArray:
    """Rebuild RGB intensities from stain contributions.

    Inverts :func:`rgb_color_deconvolution`: ``od = c x S`` followed by the
    inverse OD transform.  Useful after editing contributions, for example
    to show a single stain.

    :param contributions: ``(..., N)`` contributions
    :type contributions: ArrayLike
    :param stain_matrix: ``(N, 3)`` stain rows used for the deconvolution
    :type stain_matrix: ArrayLike
    :param background: incident intensity ``I0``
    :type background: float
    :return: ``(..., 3)`` RGB intensities in ``(0, background]``.
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    :raises ValueError: If shapes are incompatible.
    """
    contributions = resolve_dtype(np.asarray(contributions))
    s = np.asarray(stain_matrix, dtype=np.float64)
    _check_stain_matrix(s)
    if contributions.ndim == 0 or contributions.shape[-1] != s.shape[0]:
        msg = (
            f"contributions last axis {contributions.shape[-1:]} does not match "
            f"{s.shape[0]} stains"
        )
        raise ValueError(msg)

    od = contributions @ normalize_rows(s).astype(contributions.dtype)
    return od_to_rgb(od, background=background)


class UnmixingTransform:
    """Per-tile unmixing kernel producing a displayable single-stain image.

    Each pixel is converted to OD, unmixed, optionally thresholded, and the
    selected stain is rendered back as RGB in that stain's own colour.
    Instances are immutable after construction and safe to share between
    threads.

    :param stain_matrix: ``(N, 3)`` stain rows; normalized on construction
    :param stain_index: 0-based index of the stain to render
    :param threshold: contributions below this OD are set to zero; ``None``
        keeps every contribution
    :param background: incident intensity ``I0``
    :raises ValueError: If the stain matrix shape or *stain_index* is invalid.
    """

    def __init__(
        self,
        stain_matrix: ArrayLike,
        stain_index: int = 0,
        threshold: float | None = None,
        background: float = DEFAULT_BACKGROUND,
    ):
        s = np.asarray(stain_matrix, dtype=np.float64)
        _check_stain_matrix(s)
        if not 0 <= stain_index < s.shape[0]:
            msg = f"stain_index must be in 0..{s.shape[0] - 1}, got {stain_index}"
            raise ValueError(msg)

        self.stain_matrix = normalize_rows(s)
        self.stain_index = stain_index
        self.threshold = threshold
        self.background = background
        self.is_passthrough = not is_well_conditioned(self.stain_matrix)
        self._unmix = unmixing_matrix(self.stain_matrix)

    def __repr__(self) -> str:
        return (
            f"UnmixingTransform(stains={self.stain_matrix.shape[0]}, "
            f"stain_index={self.stain_index}, threshold={self.threshold})"
        )

    def contributions(self, tile: ArrayLike) -> NDArray[np.float64]:
        """Return the thresholded, non-negative ``(..., N)`` contributions of *tile*."""
        od = rgb_to_od(np.asarray(tile), background=self.background).astype(np.float64)
        c = od @ self._unmix
        np.maximum(c, 0.0, out=c)
        if self.threshold is not None:
            c[c < self.threshold] = 0.0
        return c

    def __call__(self, tile: ArrayLike) -> NDArray[np.uint8]:
        """Render the selected stain of an ``(H, W, 3)`` RGB tile as uint8 RGB."""
        c = self.contributions(tile)[..., self.stain_index]
        od = c[..., None] * self.stain_matrix[self.stain_index]
        rgb = od_to_rgb(od, background=1.0) * 255.0
        return np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
