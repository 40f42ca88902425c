"""Core types for superpixel parsing and merging."""
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import List, Optional, Tuple


# (score, num_pixels, neighbor_tag) produced by the similarity functions
CompareNeighborTuple = Tuple[float, int, int]

Coord = Tuple[int, int]  # (x, y)


class AllSame(Enum):
    """Tri-state cache for the all-same-color test."""
    UNKNOWN = auto()
    ALL_SAME = auto()
    NOT_ALL_SAME = auto()


@dataclass
class Superpixel:
    """A region of pixels identified by a positive tag."""
    tag: int
    coords: List[Coord] = field(default_factory=list)
    all_same: AllSame = AllSame.UNKNOWN
    merged_edge_weights: List[float] = field(default_factory=list)
    unmerged_edge_weights: List[float] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.coords)

    @property
    def num_coords(self) -> int:
        return len(self.coords)

    def is_all_same(self) -> bool:
        return self.all_same is AllSame.ALL_SAME

    def is_not_all_same(self) -> bool:
        return self.all_same is AllSame.NOT_ALL_SAME

    def set_all_same(self):
        self.all_same = AllSame.ALL_SAME

    def set_not_all_same(self):
        self.all_same = AllSame.NOT_ALL_SAME


class BackprojectRange(Enum):
    """
    Backprojection threshold presets.

    Each value is (num_percent_ranges, num_top_percent, min_graylevel, num_bins).
    With 20 ranges each slot covers 5%, so HIGH_TEN accepts neighbors where
    at least 90% of the pixels back project at or above min_graylevel.
    """
    HIGH_FIVE = (20, 1, 200, 16)
    HIGH_FIVE8 = (20, 2, 200, 8)
    HIGH_TEN = (20, 2, 200, 16)
    HIGH_15 = (20, 3, 200, 16)
    HIGH_20 = (20, 4, 200, 16)
    HIGH_50 = (20, 10, 128, 8)
    HIGH_50_16 = (20, 10, 128, 16)

    @property
    def num_percent_ranges(self) -> int:
        return self.value[0]

    @property
    def num_top_percent(self) -> int:
        return self.value[1]

    @property
    def min_graylevel(self) -> int:
        return self.value[2]

    @property
    def num_bins(self) -> int:
        return self.value[3]


class MergeStrategy(Enum):
    """Merge passes that can be scheduled by the pipeline."""
    IDENTICAL = "identical"
    ALIKE = "alike"
    BACKPROJECT = "backproject"
    BACKPROJECT_SMALLEST = "backproject-smallest"
    FILL = "fill"
    BREADTH_FIRST = "breadth-first"
    EDGY = "edgy"
    SMALL = "small"


def _default_strategies() -> List[MergeStrategy]:
    return [
        MergeStrategy.IDENTICAL,
        MergeStrategy.BREADTH_FIRST,
        MergeStrategy.EDGY,
        MergeStrategy.SMALL,
    ]


@dataclass
class MergeConfig:
    """Configuration for the clustering segmentation pipeline."""
    # Block tagging
    superpixel_dim: int = 4

    # Initial region proposal, "srm" or "blocks"
    initial_segmentation: str = "srm"
    srm_q: float = 128.0

    # Histogram parameters
    num_bins: int = 16
    colorspace: int = 0  # OpenCV cvtColor code, 0 = use BGR pixels directly
    backproject_range: BackprojectRange = BackprojectRange.HIGH_50

    # Merge schedule
    strategies: List[MergeStrategy] = field(default_factory=_default_strategies)
    min_small_pixels: int = 10

    # Cluster estimation
    default_cluster_count: int = 32
    max_peaks: int = 256
    peak_delta: float = 1e-6

    # Output
    emit_intermediate_artifacts: bool = False
    debug_dir: Optional[Path] = None
    random_seed: int = 42


class SegmentationError(Exception):
    """Base exception for segmentation errors."""
    pass


class TagParseError(SegmentationError):
    """Raised when a tag buffer cannot be parsed."""
    pass


class GraphInvariantError(SegmentationError):
    """Raised when the superpixel graph is found in an inconsistent state."""
    pass


class PeakCapacityError(SegmentationError):
    """Raised when peak detection finds more peaks than it can hold."""
    pass
