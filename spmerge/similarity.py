"""
Neighbor similarity queries over a superpixel graph.

Every query rebuilds histograms from the current coordinates of the
superpixels involved, since merges change region contents.
"""
import logging
import math
from typing import AbstractSet, List, Optional

import numpy as np

from spmerge.histogram import (
    backproject_percent,
    compare_histograms,
    parse_3d_histogram,
)
from spmerge.superpixel_image import SuperpixelImage
from spmerge.types import BackprojectRange, CompareNeighborTuple

logger = logging.getLogger(__name__)


def sort_ascending(results: List[CompareNeighborTuple]) -> List[CompareNeighborTuple]:
    """Ascending score, ties put the larger neighbor first."""
    return sorted(results, key=lambda t: (t[0], -t[1]))


def sort_descending(results: List[CompareNeighborTuple]) -> List[CompareNeighborTuple]:
    """Descending score, ties put the larger neighbor first."""
    return sorted(results, key=lambda t: (-t[0], -t[1]))


def _all_neighbors_locked(sp_image: SuperpixelImage, tag: int, locked: AbstractSet[int]) -> bool:
    for neighbor_tag in sp_image.edge_table.get_neighbors_set(tag):
        if neighbor_tag not in locked:
            return False
    return True


def compare_neighbor_superpixels(
    sp_image: SuperpixelImage,
    image: np.ndarray,
    tag: int,
    locked: Optional[AbstractSet[int]] = None
) -> List[CompareNeighborTuple]:
    """
    Rank unlocked neighbors by Bhattacharyya distance to a superpixel.

    Args:
        sp_image: Superpixel graph
        image: BGR image the graph was parsed for
        tag: Superpixel to compare against
        locked: Tags that are skipped

    Returns:
        (distance, num_pixels, neighbor_tag) tuples, most alike first
    """
    src_pixels = sp_image.fill_matrix_from_coords(image, tag)
    src_hist = parse_3d_histogram(src_pixels)

    results = []
    for neighbor_tag in sp_image.edge_table.get_neighbors(tag):
        if locked is not None and neighbor_tag in locked:
            continue

        neighbor_pixels = sp_image.fill_matrix_from_coords(image, neighbor_tag)
        neighbor_hist = parse_3d_histogram(neighbor_pixels)

        distance = compare_histograms(src_hist, neighbor_hist)
        results.append((distance, neighbor_pixels.shape[1], neighbor_tag))

    return sort_ascending(results)


def backproject_neighbor_superpixels(
    sp_image: SuperpixelImage,
    image: np.ndarray,
    tag: int,
    locked: AbstractSet[int],
    conversion: int = 0,
    num_percent_ranges: int = 20,
    num_top_percent: int = 2,
    round_percent: bool = False,
    min_graylevel: int = 200,
    num_bins: int = 16
) -> List[CompareNeighborTuple]:
    """
    Rank unlocked neighbors by how well they back project onto a superpixel.

    The histogram of tag is back projected onto each neighbor and the
    fraction of neighbor pixels scoring at least min_graylevel is the
    neighbor's percent. The range 0..1 is split into num_percent_ranges
    slots and a neighbor is kept only when its percent falls inside the
    top num_top_percent slots.

    Args:
        sp_image: Superpixel graph
        image: BGR image the graph was parsed for
        tag: Superpixel whose histogram is back projected
        locked: Tags that are skipped
        conversion: OpenCV cvtColor code applied before histograms
        num_percent_ranges: Number of uniform percent slots
        num_top_percent: Number of accepted slots counted from 100%
        round_percent: Round each percent to the slot width
        min_graylevel: Back projected value a pixel must reach
        num_bins: Histogram bins per channel

    Returns:
        (percent, num_pixels, neighbor_tag) tuples, best match first
    """
    if _all_neighbors_locked(sp_image, tag, locked):
        return []

    src_pixels = sp_image.fill_matrix_from_coords(image, tag)
    src_hist = parse_3d_histogram(src_pixels, conversion, num_bins)

    one_range = 1.0 / num_percent_ranges
    min_percent = 1.0 - (one_range * num_top_percent)

    results = []
    for neighbor_tag in sp_image.edge_table.get_neighbors(tag):
        if neighbor_tag in locked:
            continue

        neighbor_pixels = sp_image.fill_matrix_from_coords(image, neighbor_tag)
        n = neighbor_pixels.shape[1]
        per = backproject_percent(src_hist, neighbor_pixels, min_graylevel, conversion)

        if per >= min_percent:
            if round_percent:
                # Half away from zero
                per = math.floor((per / one_range) + 0.5) * one_range
            results.append((per, n, neighbor_tag))

    return sort_descending(results)


def backproject_range_neighbors(
    sp_image: SuperpixelImage,
    image: np.ndarray,
    tag: int,
    locked: AbstractSet[int],
    backproject_range: BackprojectRange,
    conversion: int = 0
) -> List[CompareNeighborTuple]:
    """backproject_neighbor_superpixels() with the thresholds of a preset."""
    return backproject_neighbor_superpixels(
        sp_image, image, tag, locked,
        conversion=conversion,
        num_percent_ranges=backproject_range.num_percent_ranges,
        num_top_percent=backproject_range.num_top_percent,
        round_percent=False,
        min_graylevel=backproject_range.min_graylevel,
        num_bins=backproject_range.num_bins,
    )


def backproject_depth_first_recurse_into_neighbors(
    sp_image: SuperpixelImage,
    image: np.ndarray,
    tag: int,
    locked: AbstractSet[int],
    conversion: int = 0,
    num_percent_ranges: int = 20,
    num_top_percent: int = 10,
    min_graylevel: int = 128,
    num_bins: int = 16
) -> List[int]:
    """
    Flood fill outward from a superpixel through alike neighbors.

    The histogram of tag is back projected onto each candidate. A candidate
    whose fraction of pixels strictly above min_graylevel is strictly above
    the accepted percent joins the result and its unseen neighbors become
    candidates. Each tag is tested at most once.

    Returns:
        Accepted tags in acceptance order
    """
    if _all_neighbors_locked(sp_image, tag, locked):
        return []

    src_pixels = sp_image.fill_matrix_from_coords(image, tag)
    src_hist = parse_3d_histogram(src_pixels, conversion, num_bins)

    one_range = 1.0 / num_percent_ranges
    min_percent = 1.0 - (one_range * num_top_percent)

    seen = {tag}
    stack = []
    for neighbor_tag in sp_image.edge_table.get_neighbors(tag):
        stack.append(neighbor_tag)
        seen.add(neighbor_tag)

    results = []
    while stack:
        neighbor_tag = stack.pop()

        if neighbor_tag in locked:
            continue

        neighbor_pixels = sp_image.fill_matrix_from_coords(image, neighbor_tag)
        per = backproject_percent(src_hist, neighbor_pixels, min_graylevel, conversion, strict=True)

        if per > min_percent:
            results.append(neighbor_tag)
            for next_tag in sp_image.edge_table.get_neighbors(neighbor_tag):
                if next_tag not in seen:
                    seen.add(next_tag)
                    stack.append(next_tag)

    logger.debug(f"depth first fill from {tag} accepted {len(results)} superpixels")

    return results
