"""Tests for 3D histograms and back projection."""
import pytest
import numpy as np

from spmerge.histogram import (
    back_project,
    backproject_percent,
    compare_histograms,
    count_above,
    parse_3d_histogram,
)


def solid_pixels(color, n):
    return np.tile(np.array(color, dtype=np.uint8), (n, 1))


class TestParse3DHistogram:
    """Test histogram construction."""

    def test_shape_and_peak(self):
        """Test bin layout and that the largest bin is normalized to 1."""
        pixels = np.vstack([solid_pixels((0, 0, 255), 30), solid_pixels((255, 0, 0), 10)])

        hist = parse_3d_histogram(pixels, 0, 8)

        assert hist.shape == (8, 8, 8)
        assert hist.max() == pytest.approx(1.0)
        assert hist[0, 0, 7] == pytest.approx(1.0)
        assert hist[7, 0, 0] == pytest.approx(10.0 / 30.0)

    def test_default_bins(self):
        """Test that a negative bin count selects 16 bins."""
        hist = parse_3d_histogram(solid_pixels((1, 2, 3), 4))
        assert hist.shape == (16, 16, 16)

    def test_image_input(self):
        """Test that HxWx3 input is accepted."""
        image = np.zeros((4, 5, 3), dtype=np.uint8)
        hist = parse_3d_histogram(image, 0, 4)
        assert hist[0, 0, 0] == pytest.approx(1.0)

    def test_invalid_input(self):
        """Test the error cases."""
        with pytest.raises(ValueError):
            parse_3d_histogram(solid_pixels((0, 0, 0), 4), 0, 0)

        with pytest.raises(ValueError):
            parse_3d_histogram(np.zeros((0, 3), dtype=np.uint8))

        with pytest.raises(ValueError):
            parse_3d_histogram(np.zeros((4, 3), dtype=np.float32))


class TestBackProject:
    """Test back projection and thresholds."""

    def test_single_color_projects_to_peak(self):
        """Test that a one color region back projects to 255 everywhere."""
        pixels = solid_pixels((10, 200, 30), 25)
        hist = parse_3d_histogram(pixels)

        projection = back_project(hist, pixels)

        assert projection.shape == (1, 25)
        assert np.all(projection == 255)
        assert count_above(projection, 255) == 25
        assert count_above(projection, 255, strict=True) == 0

    def test_backproject_percent(self):
        """Test fraction of pixels passing the gray level."""
        pixels = solid_pixels((10, 200, 30), 25)
        hist = parse_3d_histogram(pixels)

        assert backproject_percent(hist, pixels, 200) == pytest.approx(1.0)
        assert backproject_percent(hist, pixels, 255) == pytest.approx(1.0)
        assert backproject_percent(hist, pixels, 255, strict=True) == pytest.approx(0.0)

    def test_absent_color_projects_to_zero(self):
        """Test that colors missing from the histogram score 0."""
        hist = parse_3d_histogram(solid_pixels((0, 0, 255), 10))

        projection = back_project(hist, solid_pixels((255, 0, 0), 10))

        assert np.all(projection == 0)

    def test_mixed_neighbor(self):
        """Test a neighbor where half the pixels match."""
        hist = parse_3d_histogram(solid_pixels((0, 0, 255), 10))
        neighbor = np.vstack([solid_pixels((0, 0, 255), 5), solid_pixels((255, 0, 0), 5)])

        assert backproject_percent(hist, neighbor, 128) == pytest.approx(0.5)

    def test_projection_scales_with_bin_height(self):
        """Test that each pixel reads its own bin of a multi bin histogram."""
        pixels = np.vstack([solid_pixels((0, 0, 255), 30), solid_pixels((255, 0, 0), 10)])
        hist = parse_3d_histogram(pixels)

        projection = back_project(hist, pixels)

        assert projection.shape == (1, 40)
        assert np.all(projection[0, :30] == 255)
        assert np.all(np.abs(projection[0, 30:].astype(int) - 85) <= 1)
        assert backproject_percent(hist, pixels, 200) == pytest.approx(0.75)


class TestCompareHistograms:
    """Test Bhattacharyya distance."""

    def test_identical(self):
        """Test that identical histograms have distance 0."""
        hist = parse_3d_histogram(solid_pixels((40, 80, 120), 9))
        assert compare_histograms(hist, hist.copy()) == pytest.approx(0.0, abs=1e-6)

    def test_disjoint(self):
        """Test that disjoint histograms have distance close to 1."""
        hist_a = parse_3d_histogram(solid_pixels((0, 0, 255), 9))
        hist_b = parse_3d_histogram(solid_pixels((255, 0, 0), 9))
        assert compare_histograms(hist_a, hist_b) > 0.99

    def test_partial_overlap(self):
        """Test a single color against an even two color mix."""
        hist_a = parse_3d_histogram(solid_pixels((0, 0, 255), 10))
        hist_b = parse_3d_histogram(
            np.vstack([solid_pixels((0, 0, 255), 5), solid_pixels((255, 0, 0), 5)])
        )

        distance = compare_histograms(hist_a, hist_b)

        assert distance == pytest.approx(0.541, abs=0.01)
