"""
Edge weights between neighboring superpixels.

The weight of an edge is the Bhattacharyya distance between the colors on
either side of the shared boundary, so it is small for a soft edge and
approaches 1.0 for a hard edge. Weights are cached in the edge table and
dropped whenever a merge touches either side.
"""
import logging
from typing import AbstractSet, Iterable, List, Optional

import numpy as np

from spmerge.histogram import compare_histograms, parse_3d_histogram
from spmerge.similarity import sort_ascending
from spmerge.superpixel_image import SuperpixelImage, coords_to_arrays
from spmerge.types import CompareNeighborTuple

logger = logging.getLogger(__name__)

EDGE_NUM_BINS = 16


def calculate_edge_weight(sp_image: SuperpixelImage, image: np.ndarray, tag: int, neighbor_tag: int) -> float:
    """Bhattacharyya distance between the boundary pixels on each side of an edge."""
    edge_coords, neighbor_edge_coords = sp_image.filter_edge_coords(tag, neighbor_tag)

    # Regions that are neighbors but do not touch in the current coords
    # fall back to comparing the whole regions.
    if not edge_coords or not neighbor_edge_coords:
        edge_coords = sp_image.get_superpixel(tag).coords
        neighbor_edge_coords = sp_image.get_superpixel(neighbor_tag).coords

    xs, ys = coords_to_arrays(edge_coords)
    hist = parse_3d_histogram(image[ys, xs], 0, EDGE_NUM_BINS)

    xs, ys = coords_to_arrays(neighbor_edge_coords)
    neighbor_hist = parse_3d_histogram(image[ys, xs], 0, EDGE_NUM_BINS)

    return compare_histograms(hist, neighbor_hist)


def get_edge_weight(sp_image: SuperpixelImage, image: np.ndarray, tag: int, neighbor_tag: int) -> float:
    """Cached edge weight, computed and stored on a miss."""
    weight = sp_image.edge_table.get_edge_strength(tag, neighbor_tag)
    if weight is None:
        weight = calculate_edge_weight(sp_image, image, tag, neighbor_tag)
        sp_image.edge_table.set_edge_strength(tag, neighbor_tag, weight)
    return weight


def check_neighbor_edge_weights(
    sp_image: SuperpixelImage,
    image: np.ndarray,
    tag: int,
    neighbors: Optional[Iterable[int]] = None
) -> int:
    """
    Make sure an edge weight is cached for every neighbor of tag.

    Returns:
        Number of weights that had to be computed
    """
    if neighbors is None:
        neighbors = sp_image.edge_table.get_neighbors(tag)

    num_computed = 0
    for neighbor_tag in neighbors:
        if sp_image.edge_table.get_edge_strength(tag, neighbor_tag) is None:
            weight = calculate_edge_weight(sp_image, image, tag, neighbor_tag)
            sp_image.edge_table.set_edge_strength(tag, neighbor_tag, weight)
            num_computed += 1
    return num_computed


def compare_neighbor_edges(
    sp_image: SuperpixelImage,
    image: np.ndarray,
    tag: int,
    locked: Optional[AbstractSet[int]] = None
) -> List[CompareNeighborTuple]:
    """
    Rank unlocked neighbors by edge weight.

    Returns:
        (edge_weight, num_pixels, neighbor_tag) tuples, softest edge first
    """
    results = []
    for neighbor_tag in sp_image.edge_table.get_neighbors(tag):
        if locked is not None and neighbor_tag in locked:
            continue
        weight = get_edge_weight(sp_image, image, tag, neighbor_tag)
        num_coords = len(sp_image.get_superpixel(neighbor_tag).coords)
        results.append((weight, num_coords, neighbor_tag))
    return sort_ascending(results)


def add_merged_edge_weight(sp_image: SuperpixelImage, tag: int, edge_weight: float):
    sp = sp_image.get_superpixel(tag)
    sp.merged_edge_weights.append(edge_weight)


def add_unmerged_edge_weights(sp_image: SuperpixelImage, tag: int, edge_weights: Iterable[float]):
    sp = sp_image.get_superpixel(tag)
    sp.unmerged_edge_weights.extend(edge_weights)
