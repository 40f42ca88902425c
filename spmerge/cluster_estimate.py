"""
Cluster count estimation from block color votes.

Blocks that quantize to the same color as their 8-connected neighbors vote
for that color. Voted colors are ordered by a walk through the color cube
and the peaks of the resulting vote curve give the number of visually
distinct colors.
"""
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from scipy.signal import find_peaks

from spmerge.quantization import pixels_to_rgb
from spmerge.segmentation import bgr_to_uid
from spmerge.types import PeakCapacityError

logger = logging.getLogger(__name__)

MAX_PEAKS = 256
PEAK_DELTA = 1e-6

# Each peak may hold several sub clusters
CLUSTERS_PER_PEAK = 4

_NEIGHBOR_OFFSETS = (
    (-1, -1), (-1, 0), (-1, 1),
    (0, -1), (0, 1),
    (1, -1), (1, 0), (1, 1),
)


def vote_for_identical_neighbors(
    image: np.ndarray,
    mask: Optional[np.ndarray] = None,
    votes: Optional[Dict[int, int]] = None
) -> Dict[int, int]:
    """
    Count identical 8-connected neighbors for every masked pixel.

    A pixel votes once for each neighbor inside the mask that has exactly
    its value. Votes are summed per pixel value.

    Args:
        image: HxWx3 BGR image, usually the block image
        mask: HxW array, non-zero entries are included. None includes all
        votes: Existing table to accumulate into

    Returns:
        Table mapping pixel value (R << 16) | (G << 8) | B to vote count
    """
    if votes is None:
        votes = {}

    uids = bgr_to_uid(image)
    height, width = uids.shape

    if mask is None:
        mask_on = np.ones((height, width), dtype=bool)
    else:
        if mask.shape[:2] != (height, width):
            raise ValueError(f"Mask shape {mask.shape} does not match image shape {uids.shape}")
        mask_on = np.asarray(mask) != 0

    counts = np.zeros((height, width), dtype=np.int64)

    for dy, dx in _NEIGHBOR_OFFSETS:
        y0, y1 = max(0, -dy), height - max(0, dy)
        x0, x1 = max(0, -dx), width - max(0, dx)
        if y1 <= y0 or x1 <= x0:
            continue

        center = uids[y0:y1, x0:x1]
        neighbor = uids[y0 + dy:y1 + dy, x0 + dx:x1 + dx]
        neighbor_on = mask_on[y0 + dy:y1 + dy, x0 + dx:x1 + dx]
        counts[y0:y1, x0:x1] += (center == neighbor) & neighbor_on

    counts[~mask_on] = 0
    voted = counts > 0

    if np.any(voted):
        keys, inverse = np.unique(uids[voted], return_inverse=True)
        totals = np.bincount(inverse, weights=counts[voted])
        for key, total in zip(keys.tolist(), totals.tolist()):
            votes[key] = votes.get(key, 0) + int(total)

    return votes


def sort_keys_by_count(table: Dict[int, int], descending: bool = True) -> List[int]:
    """Keys ordered by count, ties in ascending key order."""
    if descending:
        return sorted(table, key=lambda k: (-table[k], k))
    return sorted(table, key=lambda k: (table[k], k))


def generate_cluster_walk_on_center_dist(pixels: List[int]) -> List[int]:
    """
    Order colors so that each step moves to the closest unvisited color.

    The walk starts at the color closest to black. Ties go to the earlier
    entry.

    Returns:
        Offsets into pixels in walk order
    """
    num_pixels = len(pixels)
    if num_pixels == 0:
        return []

    rgb = pixels_to_rgb(np.asarray(pixels, dtype=np.uint32))

    current = int(np.argmin(np.sum(rgb * rgb, axis=1)))
    visited = np.zeros(num_pixels, dtype=bool)
    visited[current] = True
    walk = [current]

    while len(walk) < num_pixels:
        delta = rgb - rgb[current]
        dist = np.sum(delta * delta, axis=1)
        dist[visited] = np.inf
        current = int(np.argmin(dist))
        visited[current] = True
        walk.append(current)

    return walk


def build_vote_curve(
    block_image: np.ndarray,
    mask: Optional[np.ndarray] = None
) -> Tuple[List[int], np.ndarray]:
    """
    Voted colors in walk order with a zero padded vote curve.

    Returns:
        Tuple of (colortable, curve) where curve has len(colortable) + 2
        entries and curve[i + 1] holds the votes of colortable[i]
    """
    votes = vote_for_identical_neighbors(block_image, mask)

    sorted_keys = sort_keys_by_count(votes, True)
    offsets = generate_cluster_walk_on_center_dist(sorted_keys)
    colortable = [sorted_keys[i] for i in offsets]

    curve = np.zeros(len(colortable) + 2, dtype=np.float64)
    for i, pixel in enumerate(colortable):
        curve[i + 1] = votes[pixel]

    return colortable, curve


def detect_peaks(curve: np.ndarray, delta: float = PEAK_DELTA, max_peaks: int = MAX_PEAKS) -> List[int]:
    """
    Find local maxima that rise at least delta above their surroundings.

    Args:
        curve: 1D vote curve, zero padded at both ends
        delta: Minimum peak prominence
        max_peaks: Peak capacity

    Returns:
        Offsets of the peaks in curve

    Raises:
        PeakCapacityError: If more than max_peaks peaks are found
    """
    curve = np.asarray(curve, dtype=np.float64)
    if curve.ndim != 1:
        raise ValueError(f"Vote curve must be 1D, got shape {curve.shape}")

    peaks, _ = find_peaks(curve, prominence=delta)

    if len(peaks) > max_peaks:
        raise PeakCapacityError(f"Found {len(peaks)} peaks, capacity is {max_peaks}")

    return peaks.tolist()


def estimate_cluster_count(
    block_image: np.ndarray,
    mask: Optional[np.ndarray] = None,
    delta: float = PEAK_DELTA,
    max_peaks: int = MAX_PEAKS
) -> int:
    """
    Estimate how many clusters a palette reduction should use.

    Args:
        block_image: Block quantized BGR image
        mask: Optional block mask, non-zero entries are included
        delta: Peak prominence
        max_peaks: Peak capacity

    Returns:
        4 times the number of vote curve peaks, 0 when nothing was voted for

    Raises:
        PeakCapacityError: If the curve has more than max_peaks peaks
    """
    colortable, curve = build_vote_curve(block_image, mask)

    if not colortable:
        logger.warning("No block has an identical neighbor, cannot estimate cluster count")
        return 0

    peaks = detect_peaks(curve, delta, max_peaks)

    logger.info(f"Found {len(peaks)} peaks in votes for {len(colortable)} colors")
    for offset in peaks:
        logger.debug(f"peak at {offset}: 0x{colortable[offset - 1]:06X} votes {int(curve[offset])}")

    return len(peaks) * CLUSTERS_PER_PEAK


def expand_white_in_region(mask: np.ndarray, expand_num_pixels: int = 1) -> np.ndarray:
    """Grow the white area of a mask by an elliptical dilation."""
    size = expand_num_pixels * 2 + 1
    element = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (size, size))
    return cv2.dilate(mask, element)


def capture_region_mask(
    coords: Sequence[Tuple[int, int]],
    block_shape: Tuple[int, int],
    superpixel_dim: int,
    expand_num: int = 2
) -> Optional[np.ndarray]:
    """
    Block mask covering a region and a small border around it.

    Every block holding a region pixel is set to 255, then the mask is
    dilated up to expand_num times, stopping once every block is white.

    Args:
        coords: (x, y) pixel coordinates of the region
        block_shape: (block_height, block_width) of the block image
        superpixel_dim: Block edge length in pixels
        expand_num: Number of dilation steps

    Returns:
        block_height x block_width uint8 mask, None when the region is no
        larger than one block
    """
    if len(coords) <= superpixel_dim * superpixel_dim:
        return None

    arr = np.asarray(coords, dtype=np.intp)
    mask = np.zeros(block_shape, dtype=np.uint8)
    mask[arr[:, 1] // superpixel_dim, arr[:, 0] // superpixel_dim] = 255

    for _ in range(expand_num):
        if np.all(mask == 255):
            break
        mask = expand_white_in_region(mask, 1)

    return mask
