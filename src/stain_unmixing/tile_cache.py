# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Caching tile production for unmixed display images.

A :class:`CachingTileFactory` cuts its source into square tiles, runs an
:class:`~stain_unmixing.deconvolution.UnmixingTransform` over each
requested tile and keeps the most recently used results in a
:class:`TileCache`.  A factory is bound to one transform: when the transform
changes, a new factory (and therefore a new, empty cache) is created.
"""

from __future__ import annotations

import logging
import os
import threading
from collections import OrderedDict
from concurrent import futures
from typing import Hashable, Iterable, Optional

import numpy as np

from stain_unmixing.deconvolution import UnmixingTransform
from stain_unmixing.parameters import DEFAULT_MAX_CACHED_TILES, DEFAULT_TILE_SIZE
from stain_unmixing.sources import PixelSource

logger = logging.getLogger(__name__)


class TileCache:
    """Bounded least-recently-used cache of tile results.

    The lock guards only the dictionary operations; no computation happens
    while it is held.

    :param max_items: number of tiles kept before the oldest is evicted
    """

    def __init__(self, max_items: int = DEFAULT_MAX_CACHED_TILES):
        if max_items < 1:
            msg = f"max_items must be at least 1, got {max_items}"
            raise ValueError(msg)
        self._max = max_items
        self._data: "OrderedDict[Hashable, np.ndarray]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._data

    @property
    def max_items(self) -> int:
        return self._max

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def get(self, key: Hashable) -> Optional[np.ndarray]:
        with self._lock:
            entry = self._data.get(key)
            if entry is not None:
                self._data.move_to_end(key)
                self.hits += 1
            else:
                self.misses += 1
            return entry

    def set(self, key: Hashable, value: np.ndarray) -> None:
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self._max:
                evicted, _ = self._data.popitem(last=False)
                logger.debug("evicted tile %s", evicted)

    def keys(self) -> list:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._data)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"size": len(self._data), "hits": self.hits, "misses": self.misses}


class CachingTileFactory:
    """Produce unmixed tiles of a source on demand.

    Tiles are addressed by ``(column, row)`` on a grid of ``tile_size``
    squares; edge tiles are padded by the source.  Returned arrays are
    read-only because the same array is handed out on every cache hit.

    :param source: image to unmix
    :param transform: per-tile kernel
    :param tile_size: tile edge length in pixels
    :param max_tiles: cache capacity
    """

    def __init__(
        self,
        source: PixelSource,
        transform: UnmixingTransform,
        tile_size: int = DEFAULT_TILE_SIZE,
        max_tiles: int = DEFAULT_MAX_CACHED_TILES,
    ):
        if tile_size < 1:
            msg = f"tile_size must be at least 1, got {tile_size}"
            raise ValueError(msg)
        self.source = source
        self.transform = transform
        self.tile_size = tile_size
        self.cache = TileCache(max_tiles)

    def __repr__(self) -> str:
        return (
            f"CachingTileFactory({self.source!r}, {self.transform!r}, "
            f"tile_size={self.tile_size}, max_tiles={self.cache.max_items})"
        )

    @property
    def grid_size(self) -> tuple[int, int]:
        """Number of ``(columns, rows)`` of tiles covering the source."""
        width, height = self.source.dimensions
        ts = self.tile_size
        return -(-width // ts), -(-height // ts)

    def compute_tile(self, column: int, row: int) -> np.ndarray:
        """Compute a tile without touching the cache."""
        cols, rows = self.grid_size
        if not (0 <= column < cols and 0 <= row < rows):
            msg = f"tile ({column}, {row}) is outside the {cols}x{rows} grid"
            raise ValueError(msg)
        ts = self.tile_size
        pixels = self.source.read_region(column * ts, row * ts, ts, ts)
        tile = self.transform(pixels)
        tile.flags.writeable = False
        return tile

    def get_tile(self, column: int, row: int) -> np.ndarray:
        """Return the tile at ``(column, row)``, from the cache when possible."""
        key = (column, row)
        tile = self.cache.get(key)
        if tile is None:
            tile = self.compute_tile(column, row)
            self.cache.set(key, tile)
        return tile

    def get_tiles(
        self,
        coords: Iterable[tuple[int, int]],
        max_workers: int | None = None,
    ) -> list[np.ndarray]:
        """Return several tiles, computing misses in parallel.

        :param coords: ``(column, row)`` pairs
        :param max_workers: thread count, defaults to the number of CPUs
        :return: tiles in the order of *coords*
        """
        coords = list(coords)
        workers = max_workers or os.cpu_count() or 1
        with futures.ThreadPoolExecutor(workers) as executor:
            jobs = [executor.submit(self.get_tile, col, row) for col, row in coords]
            return [job.result() for job in jobs]
