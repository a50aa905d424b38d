# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Shared pytest fixtures and configuration for stain_unmixing tests."""

import numpy as np
import pytest

from stain_unmixing.sources import ArrayPixelSource

# Well-known reference stain vectors (rows, OD space).
HEMATOXYLIN = np.array([0.65, 0.70, 0.29])
EOSIN = np.array([0.07, 0.99, 0.11])
DAB = np.array([0.27, 0.57, 0.78])


def unit(v):
    v = np.asarray(v, dtype=np.float64)
    return v / np.linalg.norm(v)


def cosine(a, b):
    return float(np.dot(unit(a), unit(b)))


@pytest.fixture
def rng():
    """Provide a seeded random number generator for reproducible tests.

    :return: numpy random generator with fixed seed
    :rtype: numpy.random.Generator
    """
    return np.random.default_rng(42)


@pytest.fixture
def sample_rgb_image(rng):
    """Provide a small synthetic RGB image for testing (float64).

    Returns a 64x64x3 float64 image.

    :return: synthetic RGB image
    :rtype: numpy.ndarray
    """
    return rng.uniform(1.0, 255.0, size=(64, 64, 3))


@pytest.fixture
def stain_pair():
    """Hematoxylin and eosin as a normalized (2, 3) stain matrix."""
    return np.vstack([unit(HEMATOXYLIN), unit(EOSIN)])


@pytest.fixture
def two_stain_image(rng, stain_pair):
    """Provide a 64x64 float64 RGB image mixed from two known stains.

    The top 8 rows hold pure hematoxylin, the next 8 pure eosin and the rest
    random mixtures, so the stain directions are the angular extremes of the
    OD cloud.  Every pixel lies exactly in the plane of the two stains.

    :return: ``(image, contributions)``
    :rtype: tuple[numpy.ndarray, numpy.ndarray]
    """
    c = rng.uniform(0.2, 1.0, size=(64, 64, 2))
    c[:8, :, 1] = 0.0
    c[:8, :, 0] = rng.uniform(0.5, 1.0, size=(8, 64))
    c[8:16, :, 0] = 0.0
    c[8:16, :, 1] = rng.uniform(0.5, 1.0, size=(8, 64))
    od = c @ stain_pair
    return 255.0 * np.power(10.0, -od), c


@pytest.fixture
def two_stain_source(two_stain_image):
    """:class:`ArrayPixelSource` over the two-stain image."""
    return ArrayPixelSource(two_stain_image[0])


@pytest.fixture
def roi_image():
    """Provide a 40x100 uint8 image with two uniform colour blocks on white.

    Columns 0-39 are (200, 50, 50), columns 40-79 are (50, 180, 60) and
    columns 80-99 are white.
    """
    img = np.full((40, 100, 3), 255, dtype=np.uint8)
    img[:, :40] = (200, 50, 50)
    img[:, 40:80] = (50, 180, 60)
    return img
