# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Stain vector estimation and colour unmixing for multi-stain microscopy.

The package estimates one characteristic optical-density vector per stain,
either from user-picked regions or from unsupervised statistics of the whole
image (Macenko percentile decomposition or non-negative matrix
factorization), and inverts the optical mixing model to recover per-stain
intensities, tile by tile, behind a bounded cache.

Example::

    import numpy as np
    from stain_unmixing import (
        ArrayPixelSource,
        SeparationParameters,
        StainSeparationPipeline,
    )

    im_rgb = np.random.randint(0, 256, size=(512, 512, 3), dtype=np.uint8)
    pipeline = StainSeparationPipeline(ArrayPixelSource(im_rgb), name="H-DAB")
    result = pipeline.build(SeparationParameters(sample_size=5000))
    if result.success:
        print(pipeline.report())
        tile = pipeline.get_tile(0, 0)
"""

from stain_unmixing.__about__ import __version__
from stain_unmixing.angle_histogram import (
    UNDEFINED,
    AngleHistogram,
    angles_to_vectors,
    fill_histogram,
    vectors_to_angles,
)
from stain_unmixing.basis_transform import BasisTransform
from stain_unmixing.deconvolution import (
    UnmixingTransform,
    color_deconvolution,
    reconstruct_rgb,
    rgb_color_deconvolution,
    unmixing_matrix,
)
from stain_unmixing.estimators import (
    StainEstimate,
    compute_stain_vectors,
    estimate_from_regions,
    estimate_macenko,
    estimate_nmf,
)
from stain_unmixing.optical_density import OD_MAX, od_to_rgb, rgb_to_od
from stain_unmixing.parameters import (
    ALGORITHMS,
    SeparationAlgorithm,
    SeparationParameters,
    algorithm_from_name,
    algorithm_name,
    algorithm_names,
)
from stain_unmixing.percentile_threshold import PercentileThresholdExtractor
from stain_unmixing.pipeline import (
    BuildResult,
    PipelineNotBuiltError,
    PipelineState,
    StainSeparationPipeline,
)
from stain_unmixing.profile import Stain, StainProfile
from stain_unmixing.sources import ArrayPixelSource, PixelSource, RandomPixelSampler, Region
from stain_unmixing.stain_math import (
    SortOrder,
    flat_to_stains,
    normalize_rows,
    sort_stain_vectors,
    stains_to_flat,
)
from stain_unmixing.tile_cache import CachingTileFactory, TileCache

__all__ = [
    "ALGORITHMS",
    "OD_MAX",
    "UNDEFINED",
    "AngleHistogram",
    "ArrayPixelSource",
    "BasisTransform",
    "BuildResult",
    "CachingTileFactory",
    "PercentileThresholdExtractor",
    "PipelineNotBuiltError",
    "PipelineState",
    "PixelSource",
    "RandomPixelSampler",
    "Region",
    "SeparationAlgorithm",
    "SeparationParameters",
    "SortOrder",
    "Stain",
    "StainEstimate",
    "StainProfile",
    "StainSeparationPipeline",
    "TileCache",
    "UnmixingTransform",
    "__version__",
    "algorithm_from_name",
    "algorithm_name",
    "algorithm_names",
    "angles_to_vectors",
    "color_deconvolution",
    "compute_stain_vectors",
    "estimate_from_regions",
    "estimate_macenko",
    "estimate_nmf",
    "fill_histogram",
    "flat_to_stains",
    "normalize_rows",
    "od_to_rgb",
    "reconstruct_rgb",
    "rgb_color_deconvolution",
    "rgb_to_od",
    "sort_stain_vectors",
    "stains_to_flat",
    "unmixing_matrix",
    "vectors_to_angles",
]
