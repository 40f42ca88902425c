"""Palette reduction and block quantization with K-means clustering."""
import logging
from typing import Dict, List, Tuple

import numpy as np
from sklearn.cluster import KMeans
from sklearn.metrics import pairwise_distances_argmin

from spmerge.segmentation import bgr_to_uid, uid_to_bgr

logger = logging.getLogger(__name__)

# Evenly spaced points along each axis of the color cube
SUBDIVIDED_VALUES = (0, 63, 127, 191, 255)


def get_subdivided_colors() -> List[int]:
    """
    Color cube divided into 5 points along each axis.

    Returns:
        125 pixels encoded as (R << 16) | (G << 8) | B, R varies slowest
    """
    pixels = []
    for r in SUBDIVIDED_VALUES:
        for g in SUBDIVIDED_VALUES:
            for b in SUBDIVIDED_VALUES:
                pixels.append((r << 16) | (g << 8) | b)
    return pixels


def pixels_to_rgb(pixels: np.ndarray) -> np.ndarray:
    pixels = np.asarray(pixels, dtype=np.uint32)
    r = (pixels >> 16) & 0xFF
    g = (pixels >> 8) & 0xFF
    b = pixels & 0xFF
    return np.stack([r, g, b], axis=-1).astype(np.float64)


def map_colors(pixels: np.ndarray, colortable: np.ndarray) -> np.ndarray:
    """
    Map every pixel to the nearest colortable entry.

    Args:
        pixels: Array of pixels encoded as (R << 16) | (G << 8) | B
        colortable: 1D array of encoded colortable pixels

    Returns:
        Array shaped like pixels holding the nearest colortable pixel

    Raises:
        ValueError: If the colortable is empty
    """
    colortable = np.asarray(colortable, dtype=np.uint32)
    if colortable.size == 0:
        raise ValueError("Colortable must contain at least one color")

    pixels = np.asarray(pixels, dtype=np.uint32)
    flat = pixels.ravel()
    if flat.size == 0:
        return pixels.copy()

    # Only unique colors need a distance lookup
    unique_pixels, inverse = np.unique(flat, return_inverse=True)
    nearest = pairwise_distances_argmin(pixels_to_rgb(unique_pixels), pixels_to_rgb(colortable))
    return colortable[nearest][inverse].reshape(pixels.shape)


def reduce_colors(
    pixels: np.ndarray,
    num_clusters: int,
    random_state: int = 42
) -> Tuple[np.ndarray, np.ndarray, int]:
    """
    Reduce pixels to at most num_clusters colors.

    When the input already holds no more unique colors than requested,
    the unique colors become the colortable directly. Otherwise K-means
    centers are rounded to 8 bit and duplicate centers collapsed, so the
    actual count can come back smaller than requested.

    Args:
        pixels: Array of pixels encoded as (R << 16) | (G << 8) | B
        num_clusters: Desired number of colors
        random_state: Random seed for reproducible results

    Returns:
        Tuple of (reduced_pixels, colortable, actual_num_clusters):
        - reduced_pixels: pixels mapped to the colortable, same shape
        - colortable: sorted 1D uint32 array of encoded colors
        - actual_num_clusters: len(colortable)

    Raises:
        ValueError: If num_clusters < 1 or there are no pixels
    """
    if num_clusters < 1:
        raise ValueError(f"num_clusters must be at least 1, got {num_clusters}")

    pixels = np.asarray(pixels, dtype=np.uint32)
    if pixels.size == 0:
        raise ValueError("Cannot reduce colors of zero pixels")

    unique_pixels = np.unique(pixels)

    if len(unique_pixels) <= num_clusters:
        logger.info(f"Image has {len(unique_pixels)} colors, no reduction needed")
        colortable = unique_pixels
    else:
        logger.info(f"Running K-means with {num_clusters} clusters on {len(unique_pixels)} colors")

        kmeans = KMeans(n_clusters=num_clusters, random_state=random_state, n_init=4)
        kmeans.fit(pixels_to_rgb(pixels.ravel()))

        centers = np.clip(np.rint(kmeans.cluster_centers_), 0, 255).astype(np.uint32)
        encoded = (centers[:, 0] << 16) | (centers[:, 1] << 8) | centers[:, 2]
        colortable = np.unique(encoded)

        if len(colortable) < num_clusters:
            logger.debug(f"Collapsed {num_clusters - len(colortable)} duplicate cluster centers")

    reduced = map_colors(pixels, colortable)
    return reduced, colortable.astype(np.uint32), int(len(colortable))


def reduce_image_colors(
    image: np.ndarray,
    num_clusters: int,
    random_state: int = 42
) -> Tuple[np.ndarray, np.ndarray, int]:
    """
    reduce_colors() for a BGR image.

    Returns:
        Tuple of (reduced BGR image, colortable, actual_num_clusters)
    """
    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError("Input must be HxWx3 array")

    reduced, colortable, actual = reduce_colors(bgr_to_uid(image), num_clusters, random_state)
    return uid_to_bgr(reduced), colortable, actual


def gen_histograms_for_blocks(
    image: np.ndarray,
    superpixel_dim: int = 4
) -> Tuple[np.ndarray, Dict[Tuple[int, int], Dict[int, int]]]:
    """
    Quantize each block of the image to one color of the subdivided cube.

    Pixels are first mapped to the nearest of the 125 subdivided colors,
    then each superpixel_dim square block is represented by its most
    frequent quantized color. Blocks on the right and bottom edges may be
    partial. Ties go to the color that appears first in the block.

    Args:
        image: HxWx3 uint8 BGR image
        superpixel_dim: Block edge length in pixels

    Returns:
        Tuple of (block_image, block_histograms):
        - block_image: ceil(H/dim) x ceil(W/dim) x 3 BGR image of block colors
        - block_histograms: (bx, by) -> {quant pixel: count}

    Raises:
        ValueError: If the image is not HxWx3 uint8 or superpixel_dim < 1
    """
    if not isinstance(image, np.ndarray):
        raise ValueError("Input must be a numpy array")

    if image.ndim != 3 or image.shape[2] != 3:
        raise ValueError("Input must be HxWx3 array")

    if image.dtype != np.uint8:
        raise ValueError("Input must be uint8 array")

    if superpixel_dim < 1:
        raise ValueError(f"superpixel_dim must be at least 1, got {superpixel_dim}")

    height, width = image.shape[:2]
    block_height = (height + superpixel_dim - 1) // superpixel_dim
    block_width = (width + superpixel_dim - 1) // superpixel_dim

    colortable = np.array(get_subdivided_colors(), dtype=np.uint32)
    quant = map_colors(bgr_to_uid(image), colortable)

    block_pixels = np.zeros((block_height, block_width), dtype=np.uint32)
    block_histograms: Dict[Tuple[int, int], Dict[int, int]] = {}

    for by in range(block_height):
        for bx in range(block_width):
            y0 = by * superpixel_dim
            x0 = bx * superpixel_dim
            block = quant[y0:y0 + superpixel_dim, x0:x0 + superpixel_dim].ravel().tolist()

            counts: Dict[int, int] = {}
            for pixel in block:
                counts[pixel] = counts.get(pixel, 0) + 1

            max_pixel = block[0]
            max_count = 0
            for pixel, count in counts.items():
                if count > max_count:
                    max_count = count
                    max_pixel = pixel

            block_histograms[(bx, by)] = counts
            block_pixels[by, bx] = max_pixel

    logger.debug(f"Generated {block_width}x{block_height} block histograms")

    return uid_to_bgr(block_pixels), block_histograms


def generate_block_tags(image: np.ndarray, superpixel_dim: int = 4) -> np.ndarray:
    """
    Tag image where each superpixel_dim square block has its own tag.

    Returns:
        HxWx3 BGR tag image, block tags count up from 0 in row-major order
    """
    if image.ndim < 2:
        raise ValueError("Input must be at least 2D")

    if superpixel_dim < 1:
        raise ValueError(f"superpixel_dim must be at least 1, got {superpixel_dim}")

    height, width = image.shape[:2]
    block_width = (width + superpixel_dim - 1) // superpixel_dim

    ys, xs = np.mgrid[0:height, 0:width]
    tags = (ys // superpixel_dim) * block_width + (xs // superpixel_dim)
    return uid_to_bgr(tags.astype(np.uint32))
