# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Separation parameters and the registry of estimation algorithms."""

from __future__ import annotations

import dataclasses
import enum
import logging
from types import MappingProxyType
from typing import Any, Mapping, NamedTuple

from stain_unmixing.optical_density import DEFAULT_BACKGROUND
from stain_unmixing.percentile_threshold import DEFAULT_HISTOGRAM_BINS, DEFAULT_PERCENTILE
from stain_unmixing.sources import Region

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 10000
DEFAULT_OD_THRESHOLD = 0.15
DEFAULT_MAX_CACHED_TILES = 30
DEFAULT_TILE_SIZE = 256


class SeparationAlgorithm(enum.Enum):
    """Stain vector estimation strategies."""

    ROI = "roi"
    MACENKO = "macenko"
    NMF = "nmf"


class AlgorithmInfo(NamedTuple):
    """Static description of an estimation strategy."""

    algorithm: SeparationAlgorithm
    name: str
    stain_counts: frozenset[int]
    parameters: tuple[str, ...]
    sorted_output: bool


ALGORITHMS: Mapping[SeparationAlgorithm, AlgorithmInfo] = MappingProxyType(
    {
        SeparationAlgorithm.ROI: AlgorithmInfo(
            SeparationAlgorithm.ROI,
            "Region-of-interest selection",
            frozenset({1, 2, 3}),
            (),
            False,
        ),
        SeparationAlgorithm.MACENKO: AlgorithmInfo(
            SeparationAlgorithm.MACENKO,
            "Macenko decomposition",
            frozenset({2}),
            ("numPixels", "threshold", "percentile", "histogramBins"),
            True,
        ),
        SeparationAlgorithm.NMF: AlgorithmInfo(
            SeparationAlgorithm.NMF,
            "Non-negative matrix factorization",
            frozenset({2}),
            ("numPixels", "threshold"),
            True,
        ),
    }
)


def algorithm_names() -> tuple[str, ...]:
    """Display names of all strategies, in option order."""
    return tuple(info.name for info in ALGORITHMS.values())


def algorithm_name(index: int) -> str:
    """Display name of the strategy at option *index*, ``""`` when out of range."""
    names = algorithm_names()
    if 0 <= index < len(names):
        return names[index]
    return ""


def algorithm_from_name(name: str) -> SeparationAlgorithm | None:
    """Look up a strategy by display name or enum value, ``None`` if unknown."""
    for info in ALGORITHMS.values():
        if name in (info.name, info.algorithm.value):
            return info.algorithm
    return None


# persisted profile key -> SeparationParameters field
_PROFILE_FIELDS = {
    "numPixels": ("sample_size", int),
    "threshold": ("od_threshold", float),
    "percentile": ("percentile", float),
    "histogramBins": ("histogram_bins", int),
}


@dataclasses.dataclass(frozen=True)
class SeparationParameters:
    """Everything that determines an estimation run and its display.

    Instances are immutable and compare by value, which is what the pipeline
    uses to decide whether a rebuild is needed.

    :param algorithm: estimation strategy
    :param number_of_stains: number of stains to estimate (1-3)
    :param stain_names: display names, one per stain
    :param sample_size: pixels sampled by the Macenko and NMF strategies
    :param od_threshold: minimum mean OD of a sampled pixel
    :param percentile: central angular percentile for Macenko, in ``(0, 100]``
    :param histogram_bins: angle histogram bins for Macenko
    :param stain_to_display: 0-based index of the stain shown by tiles
    :param display_threshold: contributions below this OD are zeroed;
        ``None`` disables thresholding
    :param sample_region: optional bound on the area sampled by the Macenko
        and NMF strategies
    :param seed: seed of the random pixel sampler
    :param background: incident intensity ``I0``
    :param max_cached_tiles: tile cache capacity
    :param tile_size: edge length of a square tile in pixels
    """

    algorithm: SeparationAlgorithm = SeparationAlgorithm.MACENKO
    number_of_stains: int = 2
    stain_names: tuple[str, ...] = ("Stain 1", "Stain 2", "Stain 3")
    sample_size: int = DEFAULT_SAMPLE_SIZE
    od_threshold: float = DEFAULT_OD_THRESHOLD
    percentile: float = DEFAULT_PERCENTILE
    histogram_bins: int = DEFAULT_HISTOGRAM_BINS
    stain_to_display: int = 0
    display_threshold: float | None = None
    sample_region: Region | None = None
    seed: int | None = 0
    background: float = DEFAULT_BACKGROUND
    max_cached_tiles: int = DEFAULT_MAX_CACHED_TILES
    tile_size: int = DEFAULT_TILE_SIZE

    @property
    def info(self) -> AlgorithmInfo:
        return ALGORITHMS[self.algorithm]

    def estimation_key(self) -> tuple:
        """The fields that affect the estimated stain matrix."""
        return (
            self.algorithm,
            self.number_of_stains,
            self.sample_size,
            self.od_threshold,
            self.percentile,
            self.histogram_bins,
            self.sample_region,
            self.seed,
            self.background,
        )

    def algorithm_parameters(self) -> dict[str, Any]:
        """Persistable key/value pairs of the selected strategy."""
        values = {key: getattr(self, field) for key, (field, _) in _PROFILE_FIELDS.items()}
        return {key: values[key] for key in self.info.parameters}

    def replace(self, **changes: Any) -> SeparationParameters:
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_profile_fields(
        cls, fields: Mapping[str, Any], **overrides: Any
    ) -> SeparationParameters:
        """Build parameters from persisted profile key/value pairs.

        Recognized keys are ``numPixels``, ``threshold``, ``percentile`` and
        ``histogramBins``; their values may be strings.  Unknown keys and
        values that do not convert are ignored.
        """
        kwargs: dict[str, Any] = {}
        for key, value in fields.items():
            if key not in _PROFILE_FIELDS:
                continue
            field, convert = _PROFILE_FIELDS[key]
            try:
                kwargs[field] = convert(float(value)) if convert is int else convert(value)
            except (TypeError, ValueError):
                logger.warning("ignoring profile field %s=%r", key, value)
        kwargs.update(overrides)
        return cls(**kwargs)
