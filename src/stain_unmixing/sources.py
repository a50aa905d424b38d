# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Pixel sources, regions and pixel sampling.

The estimators and the tile factory only ever read pixels through the
:class:`PixelSource` protocol.  :class:`ArrayPixelSource` adapts an
in-memory ``(H, W, 3)`` array; slide readers can implement the same two
members.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Protocol, runtime_checkable

import numpy as np
from numpy.typing import ArrayLike, NDArray

from stain_unmixing.optical_density import DEFAULT_BACKGROUND, mean_od, rgb_to_od

logger = logging.getLogger(__name__)


@runtime_checkable
class PixelSource(Protocol):
    """Read-only access to an RGB image."""

    @property
    def dimensions(self) -> tuple[int, int]:
        """``(width, height)`` in pixels."""
        ...

    def read_region(self, x: int, y: int, width: int, height: int) -> np.ndarray:
        """Return the ``(height, width, 3)`` block whose top-left pixel is ``(x, y)``."""
        ...


class ArrayPixelSource:
    """:class:`PixelSource` backed by a numpy array.

    Reads outside the image are padded with *fill* (white by default) so
    that edge tiles always have the requested size.

    :param image: ``(H, W, 3)`` RGB array
    :param fill: value used for out-of-bounds pixels
    """

    def __init__(self, image: ArrayLike, fill: float = DEFAULT_BACKGROUND):
        self.image = np.asarray(image)
        if self.image.ndim != 3 or self.image.shape[2] != 3:
            msg = f"image must have shape (H, W, 3), got {self.image.shape}"
            raise ValueError(msg)
        self.fill = fill

    def __repr__(self) -> str:
        w, h = self.dimensions
        return f"ArrayPixelSource({w}x{h}, dtype={self.image.dtype})"

    @property
    def dimensions(self) -> tuple[int, int]:
        return self.image.shape[1], self.image.shape[0]

    def read_region(self, x: int, y: int, width: int, height: int) -> np.ndarray:
        out = np.full((height, width, 3), self.fill, dtype=self.image.dtype)
        img_w, img_h = self.dimensions
        x0, y0 = max(x, 0), max(y, 0)
        x1, y1 = min(x + width, img_w), min(y + height, img_h)
        if x1 > x0 and y1 > y0:
            out[y0 - y : y1 - y, x0 - x : x1 - x] = self.image[y0:y1, x0:x1]
        return out


@dataclasses.dataclass(frozen=True)
class Region:
    """An axis-aligned rectangle in image pixel coordinates."""

    x: int
    y: int
    width: int
    height: int

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def clip(self, width: int, height: int) -> Region:
        """Intersect with the image rectangle ``(0, 0, width, height)``."""
        x0, y0 = max(self.x, 0), max(self.y, 0)
        x1 = min(self.x + self.width, width)
        y1 = min(self.y + self.height, height)
        return Region(x0, y0, max(x1 - x0, 0), max(y1 - y0, 0))


def read_region_pixels(source: PixelSource, region: Region) -> NDArray:
    """Return the pixels of *region* (clipped to the image) as an ``(N, 3)`` array."""
    width, height = source.dimensions
    r = region.clip(width, height)
    if r.is_empty():
        return np.empty((0, 3))
    block = np.asarray(source.read_region(r.x, r.y, r.width, r.height))
    return block.reshape(-1, 3)


class RandomPixelSampler:
    """Draw random tissue pixels from a source, in OD space.

    Pixels whose mean OD falls below a threshold are background and are
    never selected.  Sampling is without replacement and reproducible for a
    given *seed*.

    The whole sampled area is read in one call, so *region* should be used to
    bound it for sources that do not fit in memory.

    :param source: the image to sample
    :param seed: seed for :func:`numpy.random.default_rng`
    :param background: incident intensity used for the OD conversion
    """

    def __init__(
        self,
        source: PixelSource,
        seed: int | None = 0,
        background: float = DEFAULT_BACKGROUND,
    ):
        self.source = source
        self.seed = seed
        self.background = background

    def choose_random_pixels(
        self,
        sample_size: int,
        od_threshold: float,
        region: Region | None = None,
    ) -> NDArray[np.float64]:
        """Select up to *sample_size* tissue pixels.

        :param sample_size: number of pixels wanted; fewer are returned when
            fewer pixels pass the threshold
        :param od_threshold: minimum mean OD of a selected pixel
        :param region: optional bound on the area sampled
        :return: ``(n, 3)`` OD samples, empty when *sample_size* is not
            positive or no pixel passes the threshold
        """
        if sample_size <= 0:
            return np.empty((0, 3))

        width, height = self.source.dimensions
        area = region if region is not None else Region(0, 0, width, height)
        pixels = read_region_pixels(self.source, area)
        if pixels.shape[0] == 0:
            logger.warning("sampling area %s is empty", area)
            return np.empty((0, 3))

        od = rgb_to_od(pixels, background=self.background).astype(np.float64)
        od = od[mean_od(od) >= od_threshold]
        if od.shape[0] == 0:
            logger.warning(
                "no pixel of %d has mean OD above %.3g", pixels.shape[0], od_threshold
            )
            return od

        tissue = od.shape[0]
        rng = np.random.default_rng(self.seed)
        if tissue > sample_size:
            idx = np.sort(rng.choice(od.shape[0], size=sample_size, replace=False))
            od = od[idx]
        logger.debug(
            "sampled %d of %d tissue pixels (%d in area)",
            od.shape[0], tissue, pixels.shape[0],
        )
        return od
