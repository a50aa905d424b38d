# SPDX-FileCopyrightText: 2024-present barrettMCW <mjbarrett@mcw.edu>
#
# SPDX-License-Identifier: MIT
"""Tests for stain_unmixing.deconvolution.

Each test class covers a single public function or class.  The
``TestDtypeDispatch`` class at the bottom verifies that float32, float16,
and integer inputs are handled correctly.
"""

import numpy as np
import pytest

from stain_unmixing.deconvolution import (
    UnmixingTransform,
    color_deconvolution,
    reconstruct_rgb,
    rgb_color_deconvolution,
    unmixing_matrix,
)
from stain_unmixing.optical_density import rgb_to_od

from conftest import DAB, EOSIN, HEMATOXYLIN, unit

# ---------------------------------------------------------------------------
# unmixing_matrix
# ---------------------------------------------------------------------------


class TestUnmixingMatrix:
    """Tests for the OD -> contribution matrix."""

    def test_shape_two_stains(self, stain_pair):
        assert unmixing_matrix(stain_pair).shape == (3, 2)

    def test_three_stains_is_inverse(self):
        s = np.vstack([unit(HEMATOXYLIN), unit(EOSIN), unit(DAB)])
        np.testing.assert_allclose(unmixing_matrix(s), np.linalg.inv(s), atol=1e-10)

    def test_left_inverse(self, stain_pair):
        """S x pinv(S) is the identity on the stain space."""
        np.testing.assert_allclose(stain_pair @ unmixing_matrix(stain_pair), np.eye(2), atol=1e-12)

    def test_rows_normalized_first(self, stain_pair):
        np.testing.assert_allclose(
            unmixing_matrix(3.0 * stain_pair), unmixing_matrix(stain_pair), atol=1e-12
        )

    def test_singular_falls_back_to_passthrough(self):
        s = np.vstack([HEMATOXYLIN, HEMATOXYLIN])
        np.testing.assert_array_equal(unmixing_matrix(s), np.eye(3, 2))

    def test_zero_row_falls_back_to_passthrough(self):
        s = np.vstack([HEMATOXYLIN, np.zeros(3), EOSIN])
        np.testing.assert_array_equal(unmixing_matrix(s), np.eye(3))

    @pytest.mark.parametrize(
        "shape", [(0, 3), (4, 3), (2, 2), (3,)], ids=["empty", "four", "two-cols", "1d"]
    )
    def test_bad_shape_raises(self, shape):
        with pytest.raises(ValueError, match="stain_matrix"):
            unmixing_matrix(np.ones(shape))


# ---------------------------------------------------------------------------
# color_deconvolution
# ---------------------------------------------------------------------------


class TestColorDeconvolution:
    """Tests for OD -> contributions."""

    def test_recovers_contributions(self, two_stain_image, stain_pair):
        image, c = two_stain_image
        result = color_deconvolution(rgb_to_od(image), stain_pair)
        assert result.shape == (64, 64, 2)
        np.testing.assert_allclose(result, c, atol=1e-10)

    def test_pixel_list(self, stain_pair):
        od = np.array([[0.5, 0.0], [0.0, 1.0], [0.3, 0.3]]) @ stain_pair
        np.testing.assert_allclose(
            color_deconvolution(od, stain_pair), [[0.5, 0.0], [0.0, 1.0], [0.3, 0.3]], atol=1e-12
        )

    def test_single_stain(self):
        h = unit(HEMATOXYLIN)
        result = color_deconvolution(0.7 * h[None, :], h[None, :])
        np.testing.assert_allclose(result, [[0.7]], atol=1e-12)

    def test_passthrough_is_finite(self):
        s = np.vstack([HEMATOXYLIN, 2.0 * HEMATOXYLIN])
        od = np.array([[0.1, 0.2, 0.3]])
        result = color_deconvolution(od, s)
        assert np.all(np.isfinite(result))
        np.testing.assert_allclose(result, [[0.1, 0.2]])

    def test_wrong_channel_count_raises(self, stain_pair):
        with pytest.raises(ValueError, match="3 channels"):
            color_deconvolution(np.ones((4, 4, 2)), stain_pair)


# ---------------------------------------------------------------------------
# rgb_color_deconvolution / reconstruct_rgb
# ---------------------------------------------------------------------------


class TestRgbColorDeconvolution:
    def test_matches_two_step(self, sample_rgb_image, stain_pair):
        expected = color_deconvolution(rgb_to_od(sample_rgb_image), stain_pair)
        np.testing.assert_array_equal(rgb_color_deconvolution(sample_rgb_image, stain_pair), expected)

    def test_white_is_zero(self, stain_pair):
        result = rgb_color_deconvolution(np.full((4, 4, 3), 255.0), stain_pair)
        np.testing.assert_allclose(result, 0.0, atol=1e-12)


class TestReconstructRgb:
    """Tests for contributions -> RGB."""

    def test_inverts_deconvolution(self, two_stain_image, stain_pair):
        image, _ = two_stain_image
        c = rgb_color_deconvolution(image, stain_pair)
        np.testing.assert_allclose(reconstruct_rgb(c, stain_pair), image, rtol=1e-9)

    def test_single_stain_isolation(self, two_stain_image, stain_pair):
        """Dropping a stain leaves only the other stain's colour."""
        image, c = two_stain_image
        c = c.copy()
        c[..., 1] = 0.0
        first_only = reconstruct_rgb(c, stain_pair)
        od = rgb_to_od(first_only)
        np.testing.assert_allclose(od, c[..., :1] * stain_pair[0], atol=1e-10)

    def test_zero_contributions_are_background(self, stain_pair):
        result = reconstruct_rgb(np.zeros((3, 2)), stain_pair, background=240.0)
        np.testing.assert_allclose(result, 240.0)

    def test_mismatched_stains_raise(self, stain_pair):
        with pytest.raises(ValueError, match="does not match"):
            reconstruct_rgb(np.zeros((4, 3)), stain_pair)


# ---------------------------------------------------------------------------
# UnmixingTransform
# ---------------------------------------------------------------------------


class TestUnmixingTransform:
    """Tests for the per-tile display kernel."""

    def test_output_is_uint8_rgb(self, two_stain_image, stain_pair):
        image, _ = two_stain_image
        tile = UnmixingTransform(stain_pair)(image[:16, :16])
        assert tile.shape == (16, 16, 3)
        assert tile.dtype == np.uint8

    def test_white_stays_white(self, stain_pair):
        tile = UnmixingTransform(stain_pair)(np.full((8, 8, 3), 255, dtype=np.uint8))
        assert np.all(tile == 255)

    def test_renders_selected_stain(self, two_stain_image, stain_pair):
        """A pure-hematoxylin pixel keeps its colour in the first channel view."""
        image, c = two_stain_image
        pixel = image[:1, :1]
        h_view = UnmixingTransform(stain_pair, stain_index=0)(pixel)
        expected = np.rint(255.0 * np.power(10.0, -c[0, 0, 0] * stain_pair[0]))
        np.testing.assert_array_equal(h_view[0, 0], expected.astype(np.uint8))

    def test_other_stain_is_blank(self, two_stain_image, stain_pair):
        image, _ = two_stain_image
        e_view = UnmixingTransform(stain_pair, stain_index=1)(image[:8])
        assert np.all(e_view == 255)

    def test_contributions_non_negative(self, sample_rgb_image, stain_pair):
        c = UnmixingTransform(stain_pair).contributions(sample_rgb_image)
        assert c.shape == (64, 64, 2)
        assert np.all(c >= 0.0)

    def test_threshold_zeroes_small_contributions(self, two_stain_image, stain_pair):
        image, c = two_stain_image
        result = UnmixingTransform(stain_pair, threshold=0.6).contributions(image)
        assert np.all((result == 0.0) | (result >= 0.6))
        assert np.all(result[c > 0.6 + 1e-9] > 0.0)

    def test_threshold_above_all_gives_white(self, two_stain_image, stain_pair):
        image, _ = two_stain_image
        tile = UnmixingTransform(stain_pair, threshold=10.0)(image)
        assert np.all(tile == 255)

    def test_passthrough_flag(self):
        transform = UnmixingTransform(np.vstack([HEMATOXYLIN, HEMATOXYLIN]))
        assert transform.is_passthrough
        tile = transform(np.full((4, 4, 3), 100, dtype=np.uint8))
        assert tile.dtype == np.uint8

    def test_well_conditioned_is_not_passthrough(self, stain_pair):
        assert not UnmixingTransform(stain_pair).is_passthrough

    def test_stain_matrix_normalized(self):
        transform = UnmixingTransform(np.vstack([2.0 * HEMATOXYLIN, EOSIN]))
        np.testing.assert_allclose(np.linalg.norm(transform.stain_matrix, axis=1), 1.0)

    @pytest.mark.parametrize("index", [-1, 2])
    def test_bad_stain_index_raises(self, stain_pair, index):
        with pytest.raises(ValueError, match="stain_index"):
            UnmixingTransform(stain_pair, stain_index=index)


# ---------------------------------------------------------------------------
# dtype handling
# ---------------------------------------------------------------------------


class TestDtypeDispatch:
    """Verify that float32 and integer inputs are dispatched correctly."""

    def test_f32_stays_f32(self, sample_rgb_image, stain_pair):
        result = rgb_color_deconvolution(sample_rgb_image.astype(np.float32), stain_pair)
        assert result.dtype == np.float32

    def test_f16_promoted(self, sample_rgb_image, stain_pair):
        result = rgb_color_deconvolution(sample_rgb_image.astype(np.float16), stain_pair)
        assert result.dtype == np.float32

    def test_uint8_promoted_to_f64(self, stain_pair):
        im = np.full((4, 4, 3), 128, dtype=np.uint8)
        assert rgb_color_deconvolution(im, stain_pair).dtype == np.float64

    def test_reconstruct_f32(self, stain_pair):
        result = reconstruct_rgb(np.zeros((4, 2), dtype=np.float32), stain_pair)
        assert result.dtype == np.float32

    def test_f32_close_to_f64(self, sample_rgb_image, stain_pair):
        r64 = rgb_color_deconvolution(sample_rgb_image, stain_pair)
        r32 = rgb_color_deconvolution(sample_rgb_image.astype(np.float32), stain_pair)
        np.testing.assert_allclose(r32, r64, atol=1e-4)
