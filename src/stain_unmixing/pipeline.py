# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Estimation and unmixing session.

:class:`StainSeparationPipeline` owns the pixel source and everything built
from it: the stain profile, the unmixing transform and the caching tile
factory.  :meth:`StainSeparationPipeline.build` is called whenever an input
may have changed and does only the work the change requires:

- estimation inputs changed → estimate, then rebuild transform and cache
- only display inputs changed → rebuild transform and cache
- nothing changed → keep everything, including the cached tiles

A failed or aborted build never replaces the previous configuration.

Typical usage::

    from stain_unmixing import ArrayPixelSource, SeparationParameters, StainSeparationPipeline

    pipeline = StainSeparationPipeline(ArrayPixelSource(im_rgb), name="H-DAB")
    result = pipeline.build(SeparationParameters(sample_size=5000))
    if result.success:
        print(pipeline.report())
        tile = pipeline.get_tile(0, 0)
"""

from __future__ import annotations

import contextlib
import enum
import logging
import threading
from typing import NamedTuple, Sequence

import numpy as np

from stain_unmixing.deconvolution import UnmixingTransform
from stain_unmixing.estimators import ABORTED_MESSAGE, compute_stain_vectors
from stain_unmixing.parameters import SeparationAlgorithm, SeparationParameters
from stain_unmixing.profile import StainProfile
from stain_unmixing.sources import PixelSource, Region
from stain_unmixing.stain_math import arrays_equal, normalize_rows
from stain_unmixing.tile_cache import CachingTileFactory

logger = logging.getLogger(__name__)


class PipelineNotBuiltError(RuntimeError):
    """Raised when tiles are requested before a successful build."""


class PipelineState(enum.Enum):
    UNCONFIGURED = "unconfigured"
    BUILT = "built"


class BuildResult(NamedTuple):
    """Outcome of :meth:`StainSeparationPipeline.build`.

    ``rebuilt`` is ``False`` when the previous configuration was kept,
    either because nothing changed or because the build failed.
    """

    success: bool
    message: str = ""
    rebuilt: bool = False


def _regions_key(regions: Sequence[Sequence[Region]]) -> tuple:
    return tuple(tuple(stain_regions) for stain_regions in regions)


class StainSeparationPipeline:
    """One image, one stain profile, one tile cache.

    :param source: image to estimate from and to unmix; must outlive the
        pipeline
    :param name: name given to the stain profile
    """

    def __init__(self, source: PixelSource, name: str = ""):
        self.source = source
        self.name = name
        self.state = PipelineState.UNCONFIGURED
        self.params: SeparationParameters | None = None
        self.profile: StainProfile | None = None
        self.stain_matrix: np.ndarray | None = None
        self.transform: UnmixingTransform | None = None
        self.tile_factory: CachingTileFactory | None = None
        self.last_message = ""
        self._build_message = ""
        self._regions: tuple = ()
        self._abort = threading.Event()
        self._build_lock = threading.Lock()
        self._pending_lock = threading.Lock()
        self._pending = 0

    def __repr__(self) -> str:
        return f"StainSeparationPipeline({self.source!r}, name={self.name!r}, state={self.state.value})"

    def request_abort(self) -> None:
        """Ask running and queued builds to stop at their next checkpoint.

        The request is dropped when no build is running or waiting.
        """
        with self._pending_lock:
            if self._pending:
                self._abort.set()

    @contextlib.contextmanager
    def _track_build(self):
        # registered before waiting on the build lock, so queued builds see aborts
        with self._pending_lock:
            self._pending += 1
        try:
            yield
        finally:
            with self._pending_lock:
                self._pending -= 1
                if self._pending == 0:
                    self._abort.clear()

    def _fail(self, message: str) -> BuildResult:
        logger.warning("build failed: %s", message)
        self.last_message = message
        return BuildResult(False, message)

    def _validate(self, params: SeparationParameters, regions: Sequence) -> str:
        if not 1 <= params.number_of_stains <= 3:
            return f"Number of stains must be 1 to 3, got {params.number_of_stains}"
        if not 0 <= params.stain_to_display < params.number_of_stains:
            return (
                f"Stain to display ({params.stain_to_display + 1}) is not one of the "
                f"{params.number_of_stains} defined stains"
            )
        if params.algorithm is SeparationAlgorithm.ROI:
            defined = sum(1 for r in regions[: params.number_of_stains] if len(r) > 0)
            if defined < params.number_of_stains:
                return f"Regions are required for all {params.number_of_stains} stains"
        if params.display_threshold is not None and params.display_threshold < 0:
            return f"Display threshold must not be negative, got {params.display_threshold}"
        if params.tile_size < 1 or params.max_cached_tiles < 1:
            return "Tile size and cache size must be positive"
        return ""

    def _estimation_unchanged(self, params: SeparationParameters, regions: tuple) -> bool:
        if self.state is not PipelineState.BUILT or self.params is None:
            return False
        if params.estimation_key() != self.params.estimation_key():
            return False
        if params.algorithm is SeparationAlgorithm.ROI and regions != self._regions:
            return False
        return True

    def build(
        self,
        params: SeparationParameters,
        regions: Sequence[Sequence[Region]] = (),
    ) -> BuildResult:
        """Bring the pipeline up to date with *params* and *regions*.

        Safe to call repeatedly; builds are serialized.  An abort requested
        while builds are running or queued stops all of them.

        :param params: strategy, estimation and display parameters
        :param regions: per-stain regions for the ROI strategy
        :return: success flag, user-facing message and whether anything
            was rebuilt
        """
        with self._track_build(), self._build_lock:
            error = self._validate(params, regions)
            if error:
                return self._fail(error)

            key = _regions_key(regions)
            if self._estimation_unchanged(params, key):
                matrix = self.stain_matrix
                if params == self.params:
                    logger.debug("build inputs unchanged, keeping pipeline")
                    self.last_message = self._build_message
                    return BuildResult(True, self._build_message, rebuilt=False)
            else:
                estimate = compute_stain_vectors(self.source, params, regions, abort=self._abort)
                if not estimate.success:
                    return self._fail(estimate.message)
                matrix = normalize_rows(estimate.stain_matrix(params.number_of_stains))

            if self._abort.is_set():
                return self._fail(ABORTED_MESSAGE)

            transform = UnmixingTransform(
                matrix,
                stain_index=params.stain_to_display,
                threshold=params.display_threshold,
                background=params.background,
            )
            factory = CachingTileFactory(
                self.source, transform, params.tile_size, params.max_cached_tiles
            )
            profile = StainProfile.from_matrix(self.name, matrix, params)
            message = ""
            if transform.is_passthrough:
                message = "Stain vectors are linearly dependent; displaying optical density instead"

            if self._abort.is_set():
                return self._fail(ABORTED_MESSAGE)

            changed = self.stain_matrix is None or not arrays_equal(matrix, self.stain_matrix)
            self.params = params
            self.stain_matrix = matrix
            self.transform = transform
            self.tile_factory = factory
            self.profile = profile
            self._regions = key
            self.state = PipelineState.BUILT
            self.last_message = message
            self._build_message = message
            logger.info(
                "pipeline built (%s stain vectors), new tile cache of %d tiles",
                "new" if changed else "same", params.max_cached_tiles,
            )
            return BuildResult(True, message, rebuilt=True)

    def get_tile(self, column: int, row: int) -> np.ndarray:
        """Return the unmixed display tile at ``(column, row)``.

        :raises PipelineNotBuiltError: If no build has succeeded yet.
        """
        factory = self.tile_factory
        if factory is None:
            raise PipelineNotBuiltError("the stain separation pipeline has not been built")
        return factory.get_tile(column, row)

    def report(self) -> str:
        """Text report of the current profile, or the last error."""
        if self.profile is None:
            return self.last_message or "No stain profile has been computed"
        text = self.profile.report()
        if self.last_message:
            text += "\n" + self.last_message
        return text
