# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Stain vector estimation strategies.

Every strategy reads pixels through a :class:`~stain_unmixing.sources.PixelSource`
and reports a :class:`StainEstimate`: a success flag, the stain vectors in
the flat 9-element format (three OD-space rows, zero-padded) and a message.
On failure the vectors are all zero.

:func:`compute_stain_vectors` dispatches on
:class:`~stain_unmixing.parameters.SeparationAlgorithm` and enforces the
stain counts each strategy supports.

Typical usage::

    from stain_unmixing import ArrayPixelSource, SeparationParameters, compute_stain_vectors

    source = ArrayPixelSource(im_rgb)
    estimate = compute_stain_vectors(source, SeparationParameters(sample_size=5000))
    if estimate.success:
        stains = estimate.vectors.reshape(3, 3)[:2]
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, NamedTuple, Sequence

import numpy as np
from numpy.typing import NDArray
from sklearn.decomposition import NMF

from stain_unmixing.basis_transform import BasisTransform
from stain_unmixing.optical_density import DEFAULT_BACKGROUND, rgb_to_od
from stain_unmixing.parameters import (
    ALGORITHMS,
    DEFAULT_OD_THRESHOLD,
    SeparationAlgorithm,
    SeparationParameters,
)
from stain_unmixing.percentile_threshold import (
    DEFAULT_HISTOGRAM_BINS,
    DEFAULT_PERCENTILE,
    PercentileThresholdExtractor,
)
from stain_unmixing.sources import PixelSource, RandomPixelSampler, Region, read_region_pixels
from stain_unmixing.stain_math import SortOrder, sort_stain_vectors, stains_to_flat

logger = logging.getLogger(__name__)

ABORTED_MESSAGE = "Stain estimation aborted"

_COUNT_WORDS = {1: "one", 2: "two", 3: "three"}


class StainEstimate(NamedTuple):
    """Result of a stain vector estimation."""

    success: bool
    vectors: NDArray[np.float64]
    message: str = ""

    @classmethod
    def failure(cls, message: str) -> StainEstimate:
        logger.info("stain estimation failed: %s", message)
        return cls(False, np.zeros(9), message)

    def stain_matrix(self, number_of_stains: int) -> NDArray[np.float64]:
        """The first *number_of_stains* rows of the flat result."""
        return self.vectors.reshape(3, 3)[:number_of_stains].copy()


def _aborted(abort: threading.Event | None) -> bool:
    return abort is not None and abort.is_set()


# ---------------------------------------------------------------------------
# Pixel-ROI strategy
# ---------------------------------------------------------------------------


def estimate_from_regions(
    source: PixelSource | None,
    regions: Sequence[Sequence[Region]],
    background: float = DEFAULT_BACKGROUND,
    abort: threading.Event | None = None,
) -> StainEstimate:
    """Estimate one stain vector per group of user-delineated regions.

    The vector of a stain is the mean OD of every pixel inside its regions,
    normalized to unit length.  Stains keep the order of *regions*.

    :param source: image the regions refer to
    :param regions: one sequence of regions per stain (1 to 3 stains)
    :param background: incident intensity ``I0``
    :param abort: set to stop between stains
    """
    if source is None:
        return StainEstimate.failure("No image source is available")
    if not 1 <= len(regions) <= 3:
        return StainEstimate.failure(
            f"Between one and three stains need regions, got {len(regions)}"
        )

    rows = []
    for i, stain_regions in enumerate(regions):
        if _aborted(abort):
            return StainEstimate.failure(ABORTED_MESSAGE)
        pixels = [read_region_pixels(source, r) for r in stain_regions]
        pixels = [p for p in pixels if p.shape[0] > 0]
        if not pixels:
            return StainEstimate.failure(f"No regions defined for stain {i + 1}")
        od = rgb_to_od(np.concatenate(pixels), background=background)
        rows.append(od.astype(np.float64).mean(axis=0))
        logger.debug("stain %d: mean OD %s over %d pixels", i + 1, rows[-1], od.shape[0])

    return StainEstimate(True, stains_to_flat(np.array(rows), normalize=True))


# ---------------------------------------------------------------------------
# Macenko strategy
# ---------------------------------------------------------------------------


def estimate_macenko(
    source: PixelSource | None,
    sample_size: int,
    od_threshold: float = DEFAULT_OD_THRESHOLD,
    percentile: float = DEFAULT_PERCENTILE,
    histogram_bins: int = DEFAULT_HISTOGRAM_BINS,
    region: Region | None = None,
    seed: int | None = 0,
    background: float = DEFAULT_BACKGROUND,
    abort: threading.Event | None = None,
) -> StainEstimate:
    """Estimate two stain vectors with the Macenko percentile technique.

    Tissue pixels are sampled, projected onto their plane of maximal spread
    and the two robust angular extremes of the projected cloud are mapped
    back to OD space.  Back-projection deliberately ignores the sample mean:
    only the directions matter.

    :param source: image to sample
    :param sample_size: number of tissue pixels to sample, must be positive
    :param od_threshold: minimum mean OD of a sampled pixel
    :param percentile: central angular percentile kept, in ``(0, 100]``
    :param histogram_bins: angle histogram bins over ``[-π, π)``
    :param region: optional bound on the sampled area
    :param seed: sampling seed
    :param background: incident intensity ``I0``
    :param abort: set to stop between steps
    :return: two normalized stain rows in extraction order (unsorted)
    """
    if source is None:
        return StainEstimate.failure("No image source is available")
    if sample_size <= 0:
        return StainEstimate.failure("Sample size must be greater than zero")
    if percentile <= 0.0 or percentile > 100.0:
        return StainEstimate.failure("Percentile must be in the range (0, 100]")

    sampler = RandomPixelSampler(source, seed=seed, background=background)
    samples = sampler.choose_random_pixels(sample_size, od_threshold, region)
    if samples.shape[0] < 2:
        return StainEstimate.failure("Too few pixels above the OD threshold")
    if _aborted(abort):
        return StainEstimate.failure(ABORTED_MESSAGE)

    basis = BasisTransform(samples, optimize_directions=True)
    projected = basis.project_points(samples, use_mean=False)
    if projected.size == 0:
        return StainEstimate.failure("Could not project the sampled pixels")
    if _aborted(abort):
        return StainEstimate.failure(ABORTED_MESSAGE)

    extractor = PercentileThresholdExtractor(percentile, histogram_bins)
    directions = extractor.percentile_threshold_vectors(projected)
    if directions.size == 0:
        return StainEstimate.failure("Could not find percentile threshold directions")
    if _aborted(abort):
        return StainEstimate.failure(ABORTED_MESSAGE)

    stains = basis.back_project_points(directions, use_mean=False)
    if stains.size == 0:
        return StainEstimate.failure("Could not back-project the stain directions")
    return StainEstimate(True, stains_to_flat(stains, normalize=True))


# ---------------------------------------------------------------------------
# Non-negative matrix factorization strategy
# ---------------------------------------------------------------------------


def estimate_nmf(
    source: PixelSource | None,
    sample_size: int,
    od_threshold: float = DEFAULT_OD_THRESHOLD,
    number_of_stains: int = 2,
    region: Region | None = None,
    seed: int | None = 0,
    background: float = DEFAULT_BACKGROUND,
    max_iter: int = 500,
    abort: threading.Event | None = None,
) -> StainEstimate:
    """Estimate stain vectors by factorizing sampled OD into ``W x H``.

    The rows of ``H`` are the stain vectors.  Initialization is NNDSVDa and
    the solver is seeded, so the result is deterministic for a given sample.

    :param source: image to sample
    :param sample_size: number of tissue pixels to sample, must be positive
    :param od_threshold: minimum mean OD of a sampled pixel
    :param number_of_stains: number of components
    :param region: optional bound on the sampled area
    :param seed: sampling and solver seed
    :param background: incident intensity ``I0``
    :param max_iter: solver iteration limit
    :param abort: set to stop between steps
    """
    if source is None:
        return StainEstimate.failure("No image source is available")
    if not 1 <= number_of_stains <= 3:
        return StainEstimate.failure(
            f"Number of stains must be 1 to 3, got {number_of_stains}"
        )
    if sample_size <= 0:
        return StainEstimate.failure("Sample size must be greater than zero")

    sampler = RandomPixelSampler(source, seed=seed, background=background)
    samples = sampler.choose_random_pixels(sample_size, od_threshold, region)
    if samples.shape[0] < number_of_stains:
        return StainEstimate.failure("Too few pixels above the OD threshold")
    if _aborted(abort):
        return StainEstimate.failure(ABORTED_MESSAGE)

    model = NMF(
        n_components=number_of_stains,
        init="nndsvda",
        random_state=seed,
        max_iter=max_iter,
    )
    model.fit(samples)
    stains = model.components_
    logger.debug(
        "NMF converged after %d iterations, reconstruction error %.4g",
        model.n_iter_, model.reconstruction_err_,
    )
    return StainEstimate(True, stains_to_flat(stains, normalize=True))


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def _run_roi(source, params, regions, abort):
    n = params.number_of_stains
    # stains without a region group fail in estimate_from_regions
    groups = list(regions[:n]) + [()] * (n - len(regions))
    return estimate_from_regions(source, groups, params.background, abort)


def _run_macenko(source, params, regions, abort):
    return estimate_macenko(
        source,
        params.sample_size,
        params.od_threshold,
        params.percentile,
        params.histogram_bins,
        region=params.sample_region,
        seed=params.seed,
        background=params.background,
        abort=abort,
    )


def _run_nmf(source, params, regions, abort):
    return estimate_nmf(
        source,
        params.sample_size,
        params.od_threshold,
        params.number_of_stains,
        region=params.sample_region,
        seed=params.seed,
        background=params.background,
        abort=abort,
    )


_STRATEGIES: dict[SeparationAlgorithm, Callable[..., StainEstimate]] = {
    SeparationAlgorithm.ROI: _run_roi,
    SeparationAlgorithm.MACENKO: _run_macenko,
    SeparationAlgorithm.NMF: _run_nmf,
}


def compute_stain_vectors(
    source: PixelSource | None,
    params: SeparationParameters,
    regions: Sequence[Sequence[Region]] = (),
    sample_size: int | None = None,
    abort: threading.Event | None = None,
) -> StainEstimate:
    """Run the strategy selected in *params*.

    Results of strategies whose extremal directions come out in arbitrary
    order (Macenko, NMF) are sorted by descending red-channel OD.

    :param source: image to estimate from
    :param params: strategy and its parameters
    :param regions: per-stain regions, used by the ROI strategy only
    :param sample_size: overrides ``params.sample_size`` when given
    :param abort: cooperative cancellation flag
    """
    info = ALGORITHMS[params.algorithm]
    if params.number_of_stains not in info.stain_counts:
        counts = sorted(info.stain_counts)
        if len(counts) == 1:
            supported = f"exactly {_COUNT_WORDS.get(counts[0], counts[0])} stains"
        else:
            supported = f"{counts[0]} to {counts[-1]} stains"
        return StainEstimate.failure(
            f"{info.name} supports {supported}, {params.number_of_stains} requested"
        )
    if sample_size is not None:
        params = params.replace(sample_size=sample_size)

    logger.info("estimating %d stain vectors with %s", params.number_of_stains, info.name)
    estimate = _STRATEGIES[params.algorithm](source, params, regions, abort)
    if estimate.success and info.sorted_output:
        rows = sort_stain_vectors(estimate.vectors.reshape(3, 3), SortOrder.DESCENDING)
        estimate = estimate._replace(vectors=rows.ravel())
    return estimate

