# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""RGB ↔ optical density (OD) conversion.

Stains combine additively in OD space, which is why every estimator and the
unmixing transform work there.  The forward transform is

    OD_c = -log10(I_c / I0)

and the inverse is ``I_c = I0 x 10^(-OD_c)``.

Two edge policies are applied consistently in both directions:

- ``I == 0`` is singular; intensities are floored at ``I0 x 10^(-OD_MAX)``
  so the OD of a black pixel is the finite cap :data:`OD_MAX`.
- ``I > I0`` would produce a negative OD.  Negative OD is clamped to zero,
  so intensities brighter than the background are treated as background.
  :func:`od_to_rgb` clamps its input to ``[0, OD_MAX]`` for the same reason.

The input array's dtype controls the working precision:

- ``float64`` → kept as-is
- ``float32`` → kept as-is
- ``float16`` → promoted to float32
- integer types → promoted to float64
"""

from __future__ import annotations

from typing import Union

import numpy as np
from numpy.typing import ArrayLike, NDArray

#: Default incident (background) intensity for 8-bit images.
DEFAULT_BACKGROUND = 255.0

#: Largest OD value produced; the OD of a zero-intensity channel.
OD_MAX = 3.0

_FloatArray = Union[NDArray[np.float32], NDArray[np.float64]]


def resolve_dtype(arr: np.ndarray) -> np.ndarray:
    """Coerce *arr* to a float dtype, preserving precision.

    - float64 → kept as-is
    - float32 → kept as-is
    - float16 → promoted to float32
    - integer / other → promoted to float64

    :param arr: input array (any dtype)
    :type arr: numpy.ndarray
    :return: array guaranteed to be float32 or float64
    :rtype: numpy.ndarray
    """
    if arr.dtype == np.float64:
        return arr
    if arr.dtype == np.float32:
        return arr
    if arr.dtype == np.float16:
        return arr.astype(np.float32)
    return arr.astype(np.float64)


def _check_channels(arr: np.ndarray, name: str) -> None:
    if arr.ndim == 0 or arr.shape[-1] != 3:
        msg = f"{name} must have 3 channels in its last axis, got shape {arr.shape}"
        raise ValueError(msg)


def rgb_to_od(
    im_rgb: ArrayLike,
    background: float = DEFAULT_BACKGROUND,
) -> _FloatArray:
    """Convert RGB intensities to optical density.

    Works elementwise on any array whose last axis holds the three colour
    channels: a single ``(3,)`` triplet, an ``(N, 3)`` sample set or an
    ``(H, W, 3)`` image.

    :param im_rgb: RGB data with values in ``[0, background]``.
    :type im_rgb: ArrayLike
    :param background: Incident intensity ``I0``.  Use ``255.0`` for 8-bit
        data and ``1.0`` for normalized floats.
    :type background: float
    :return: OD values in ``[0, OD_MAX]``, same shape as the input.
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    :raises ValueError: If the last axis does not hold 3 channels or the
        background is not positive.
    """
    im_rgb = resolve_dtype(np.asarray(im_rgb))
    _check_channels(im_rgb, "im_rgb")
    if background <= 0:
        msg = f"background must be positive, got {background}"
        raise ValueError(msg)

    dtype = im_rgb.dtype.type
    floor = dtype(background * 10.0 ** (-OD_MAX))
    intensity = np.clip(im_rgb, floor, dtype(background))
    od = -np.log10(intensity / dtype(background))
    # log10(1) can come back as -0.0
    return np.clip(od, dtype(0.0), dtype(OD_MAX))


def od_to_rgb(
    im_od: ArrayLike,
    background: float = DEFAULT_BACKGROUND,
) -> _FloatArray:
    """Convert optical density back to RGB intensities.

    Inverse of :func:`rgb_to_od`: for every intensity in
    ``(background x 10^-OD_MAX, background]`` the round trip is exact up to
    floating error.  The result is *not* rounded; cast to ``uint8`` with
    :func:`numpy.rint` when a displayable image is needed.

    :param im_od: OD data with the colour channels in its last axis.
    :type im_od: ArrayLike
    :param background: Incident intensity ``I0``.
    :type background: float
    :return: Intensities in ``[background x 10^-OD_MAX, background]``.
    :rtype: NDArray[np.float32] | NDArray[np.float64]
    :raises ValueError: If the last axis does not hold 3 channels or the
        background is not positive.
    """
    im_od = resolve_dtype(np.asarray(im_od))
    _check_channels(im_od, "im_od")
    if background <= 0:
        msg = f"background must be positive, got {background}"
        raise ValueError(msg)

    dtype = im_od.dtype.type
    od = np.clip(im_od, dtype(0.0), dtype(OD_MAX))
    return dtype(background) * np.power(dtype(10.0), -od)


def mean_od(im_od: ArrayLike) -> np.ndarray:
    """Return the per-pixel mean OD across the three channels."""
    return np.mean(np.asarray(im_od), axis=-1)
