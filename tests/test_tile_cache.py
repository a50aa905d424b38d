# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Tests for stain_unmixing.tile_cache."""

import numpy as np
import pytest

from stain_unmixing.deconvolution import UnmixingTransform
from stain_unmixing.sources import ArrayPixelSource
from stain_unmixing.tile_cache import CachingTileFactory, TileCache


@pytest.fixture
def factory(two_stain_source, stain_pair):
    return CachingTileFactory(two_stain_source, UnmixingTransform(stain_pair), tile_size=16, max_tiles=4)


class TestTileCache:
    """Tests for the LRU cache."""

    def test_evicts_least_recently_used(self):
        cache = TileCache(2)
        cache.set("a", np.zeros(1))
        cache.set("b", np.zeros(1))
        cache.get("a")
        cache.set("c", np.zeros(1))
        assert "b" not in cache
        assert cache.keys() == ["a", "c"]

    def test_size_bounded(self):
        cache = TileCache(3)
        for i in range(10):
            cache.set(i, np.zeros(1))
        assert len(cache) == 3
        assert cache.keys() == [7, 8, 9]

    def test_set_existing_refreshes(self):
        cache = TileCache(2)
        cache.set("a", np.zeros(1))
        cache.set("b", np.zeros(1))
        cache.set("a", np.ones(1))
        cache.set("c", np.zeros(1))
        assert cache.keys() == ["a", "c"]
        np.testing.assert_array_equal(cache.get("a"), [1.0])

    def test_hit_and_miss_counts(self):
        cache = TileCache()
        cache.get("x")
        cache.set("x", np.zeros(1))
        cache.get("x")
        assert cache.stats() == {"size": 1, "hits": 1, "misses": 1}

    def test_clear(self):
        cache = TileCache()
        cache.set("x", np.zeros(1))
        cache.clear()
        assert len(cache) == 0
        assert cache.get("x") is None

    def test_default_capacity(self):
        assert TileCache().max_items == 30

    def test_zero_capacity_raises(self):
        with pytest.raises(ValueError, match="max_items"):
            TileCache(0)


class TestCachingTileFactory:
    """Tests for tile production."""

    def test_grid_size(self, factory):
        assert factory.grid_size == (4, 4)

    def test_grid_size_rounds_up(self, stain_pair):
        source = ArrayPixelSource(np.full((30, 50, 3), 255, dtype=np.uint8))
        f = CachingTileFactory(source, UnmixingTransform(stain_pair), tile_size=16)
        assert f.grid_size == (4, 2)
        assert f.compute_tile(3, 1).shape == (16, 16, 3)

    def test_tile_matches_transform(self, factory, two_stain_image):
        image, _ = two_stain_image
        expected = factory.transform(image[16:32, 32:48])
        np.testing.assert_array_equal(factory.get_tile(2, 1), expected)

    def test_cache_hit_returns_same_tile(self, factory):
        first = factory.get_tile(0, 0)
        second = factory.get_tile(0, 0)
        assert second is first
        assert factory.cache.stats()["hits"] == 1

    def test_cached_equals_fresh(self, factory):
        cached = factory.get_tile(1, 3)
        np.testing.assert_array_equal(cached, factory.compute_tile(1, 3))

    def test_tiles_read_only(self, factory):
        tile = factory.get_tile(0, 0)
        with pytest.raises(ValueError):
            tile[0, 0, 0] = 0

    def test_cache_bounded(self, factory):
        for col in range(4):
            for row in range(2):
                factory.get_tile(col, row)
        assert len(factory.cache) == 4
        assert factory.cache.keys() == [(2, 0), (2, 1), (3, 0), (3, 1)]

    @pytest.mark.parametrize("coords", [(-1, 0), (4, 0), (0, 4)])
    def test_outside_grid_raises(self, factory, coords):
        with pytest.raises(ValueError, match="outside"):
            factory.get_tile(*coords)

    def test_get_tiles_matches_sequential(self, factory):
        coords = [(c, r) for r in range(4) for c in range(4)]
        parallel = factory.get_tiles(coords, max_workers=4)
        assert len(parallel) == 16
        for (col, row), tile in zip(coords, parallel):
            np.testing.assert_array_equal(tile, factory.compute_tile(col, row))

    def test_bad_tile_size_raises(self, two_stain_source, stain_pair):
        with pytest.raises(ValueError, match="tile_size"):
            CachingTileFactory(two_stain_source, UnmixingTransform(stain_pair), tile_size=0)
