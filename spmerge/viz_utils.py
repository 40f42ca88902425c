"""Tag image writers and visualization utilities for pipeline stage debugging."""
from pathlib import Path
from typing import Dict, Optional
import numpy as np
from skimage.segmentation import mark_boundaries

from spmerge.raster_ingest import save_image
from spmerge.segmentation import uid_to_bgr
from spmerge.superpixel_image import SuperpixelImage, coords_to_arrays


class VisualizationContext:
    """
    Random colortable for one rendering call.

    Each superpixel tag maps to an offset into a colortable of random
    colors. The table is owned by the context, so two renders never
    share colors unless they share the context.
    """

    def __init__(self, seed: int = 42):
        self.rng = np.random.default_rng(seed)
        self.colortable: list = []
        self.tag_to_offset: Dict[int, int] = {}

    def generate_static_colortable(self, sp_image: SuperpixelImage):
        """Assign a random color to every live superpixel."""
        num_superpixels = len(sp_image.superpixels)
        channels = self.rng.integers(0, 256, size=(num_superpixels, 3))

        self.colortable = [
            (int(r) << 16) | (int(g) << 8) | int(b) for r, g, b in channels
        ]
        self.tag_to_offset = {
            tag: offset for offset, tag in enumerate(sp_image.superpixels)
        }

    def color_for_tag(self, tag: int) -> int:
        return self.colortable[self.tag_to_offset[tag]]


def write_tags_with_static_colortable(
    sp_image: SuperpixelImage,
    context: VisualizationContext
) -> np.ndarray:
    """
    Render each superpixel in its colortable color.

    Superpixels created after the colortable was generated are drawn black.
    """
    tag_to_color = {
        tag: context.color_for_tag(tag)
        for tag in sp_image.superpixels if tag in context.tag_to_offset
    }
    return write_tags_with_dynamic_colortable(sp_image, tag_to_color)


def write_tags_with_dynamic_colortable(
    sp_image: SuperpixelImage,
    tag_to_color: Dict[int, int]
) -> np.ndarray:
    """Render each superpixel with a caller supplied (R << 16) | (G << 8) | B color."""
    pixels = np.zeros((sp_image.height, sp_image.width), dtype=np.uint32)
    for tag in sp_image.superpixels:
        color = tag_to_color.get(tag)
        if color is None:
            continue
        xs, ys = coords_to_arrays(sp_image.get_superpixel(tag).coords)
        pixels[ys, xs] = color
    return uid_to_bgr(pixels)


def write_tags_with_graytable(sp_image: SuperpixelImage) -> np.ndarray:
    """
    Render superpixels as 8 bit gray levels ranked by size.

    The largest superpixel is 0, the next largest 1 and so on.

    Raises:
        ValueError: If there are more than 256 superpixels
    """
    if len(sp_image.superpixels) > 256:
        raise ValueError(f"Graytable holds 256 superpixels, got {len(sp_image.superpixels)}")

    result = np.zeros((sp_image.height, sp_image.width), dtype=np.uint8)
    for gray, tag in enumerate(sp_image.sort_superpixels_by_size()):
        xs, ys = coords_to_arrays(sp_image.get_superpixel(tag).coords)
        result[ys, xs] = gray
    return result


def write_tags_with_min_colortable(sp_image: SuperpixelImage) -> np.ndarray:
    """Render superpixels as their size rank encoded in 24 bit BGR, largest is 0."""
    ranks = np.zeros((sp_image.height, sp_image.width), dtype=np.uint32)
    for rank, tag in enumerate(sp_image.sort_superpixels_by_size()):
        xs, ys = coords_to_arrays(sp_image.get_superpixel(tag).coords)
        ranks[ys, xs] = rank
    return uid_to_bgr(ranks)


def mean_color_image(image: np.ndarray, sp_image: SuperpixelImage) -> np.ndarray:
    """Fill every superpixel with the mean BGR color of its pixels."""
    result = np.zeros_like(image)
    for tag in sp_image.superpixels:
        pixels = sp_image.fill_matrix_from_coords(image, tag)
        mean = np.rint(pixels.reshape(-1, pixels.shape[-1]).mean(axis=0))
        sp_image.reverse_fill_matrix_from_coords(
            np.tile(mean.astype(image.dtype), (1, pixels.shape[1], 1)), tag, result
        )
    return result


def visualize_boundaries(
    image: np.ndarray,
    sp_image: SuperpixelImage,
    output_path: Optional[Path] = None,
    color=(1, 0, 0)
) -> np.ndarray:
    """
    Mark superpixel boundaries over a BGR image.

    Args:
        image: HxWx3 BGR uint8 image
        sp_image: Superpixel graph for the same image
        output_path: Save the visualization here when given
        color: RGB boundary color in [0, 1]

    Returns:
        HxWx3 BGR uint8 visualization
    """
    labels = sp_image.write_tags()

    rgb = image[..., ::-1].astype(np.float64) / 255.0
    marked = mark_boundaries(rgb, labels, color=color, mode='thick')
    visualization = np.clip(np.rint(marked * 255.0), 0, 255).astype(np.uint8)[..., ::-1]
    visualization = np.ascontiguousarray(visualization)

    if output_path is not None:
        save_image(visualization, output_path)

    return visualization
