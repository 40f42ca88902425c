"""Superpixel segmentation and region merging."""
from spmerge.merge_superpixel_image import MergeSuperpixelImage
from spmerge.superpixel_image import SuperpixelImage
from spmerge.types import (
    Superpixel,
    BackprojectRange,
    MergeStrategy,
    MergeConfig,
    SegmentationError,
    TagParseError,
    GraphInvariantError,
    PeakCapacityError,
)

__all__ = [
    "MergeSuperpixelImage",
    "SuperpixelImage",
    "Superpixel",
    "BackprojectRange",
    "MergeStrategy",
    "MergeConfig",
    "SegmentationError",
    "TagParseError",
    "GraphInvariantError",
    "PeakCapacityError",
]
