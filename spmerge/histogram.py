"""3D color histograms and back projection with OpenCV."""
import cv2
import numpy as np

DEFAULT_NUM_BINS = 16

# Pixel range per channel, 0 <= val < 256
_RANGES = [0, 256, 0, 256, 0, 256]
_CHANNELS = [0, 1, 2]


def _convert(pixels: np.ndarray, conversion: int) -> np.ndarray:
    if conversion == 0:
        return pixels
    return cv2.cvtColor(pixels, conversion)


def _as_pixel_row(pixels: np.ndarray) -> np.ndarray:
    pixels = np.asarray(pixels)
    if pixels.ndim == 2:
        pixels = pixels[np.newaxis, ...]
    if pixels.ndim != 3 or pixels.shape[2] != 3:
        raise ValueError(f"Expected Nx3 or HxWx3 pixels, got shape {pixels.shape}")
    if pixels.dtype != np.uint8:
        raise ValueError("Pixels must be uint8")
    return np.ascontiguousarray(pixels)


def _as_hist_mat(hist: np.ndarray):
    # A bins^3 array would otherwise bind as a 2D Mat with bins channels
    return cv2.Mat(np.ascontiguousarray(hist, dtype=np.float32), wrap_channels=False)


def parse_3d_histogram(pixels: np.ndarray, conversion: int = 0, num_bins: int = -1) -> np.ndarray:
    """
    Build a joint 3D histogram normalized so that the peak bin is 1.0.

    The normalization divides by the largest bin count, not by the total,
    and never by less than 1.

    Args:
        pixels: Nx3 or HxWx3 uint8 pixels
        conversion: OpenCV cvtColor code applied first, 0 for none
        num_bins: Bins per channel, negative selects 16

    Returns:
        num_bins x num_bins x num_bins float32 histogram

    Raises:
        ValueError: If there are no pixels or num_bins is zero
    """
    if num_bins == 0:
        raise ValueError("num_bins must be non-zero")
    bin_dim = DEFAULT_NUM_BINS if num_bins < 0 else num_bins

    src = _convert(_as_pixel_row(pixels), conversion)
    if src.size == 0:
        raise ValueError("Cannot build a histogram from zero pixels")

    hist = cv2.calcHist([src], _CHANNELS, None, [bin_dim, bin_dim, bin_dim], _RANGES)

    max_value = max(1.0, float(hist.max()))
    hist *= (1.0 / max_value)
    return hist


def back_project(hist: np.ndarray, pixels: np.ndarray, conversion: int = 0) -> np.ndarray:
    """
    Map each pixel through a normalized histogram.

    Returns:
        uint8 array shaped like the pixel rows (1xN for Nx3 input) where a
        pixel falling in the peak bin scores 255
    """
    src = _convert(_as_pixel_row(pixels), conversion)
    return cv2.calcBackProject([src], _CHANNELS, _as_hist_mat(hist), _RANGES, 255.0)


def compare_histograms(hist_a: np.ndarray, hist_b: np.ndarray) -> float:
    """Bhattacharyya distance, 0.0 for identical histograms and 1.0 for disjoint ones."""
    return float(cv2.compareHist(
        _as_hist_mat(hist_a), _as_hist_mat(hist_b), cv2.HISTCMP_BHATTACHARYYA
    ))


def count_above(back_projection: np.ndarray, min_graylevel: int, strict: bool = False) -> int:
    """Number of back projected values at or above (or strictly above) min_graylevel."""
    if strict:
        return int(np.count_nonzero(back_projection > min_graylevel))
    return int(np.count_nonzero(back_projection >= min_graylevel))


def backproject_percent(
    hist: np.ndarray,
    pixels: np.ndarray,
    min_graylevel: int,
    conversion: int = 0,
    strict: bool = False
) -> float:
    """Fraction of pixels whose back projected value passes min_graylevel."""
    back_projection = back_project(hist, pixels, conversion)
    n = back_projection.size
    if n == 0:
        return 0.0
    return count_above(back_projection, min_graylevel, strict) / float(n)
