"""
Clustering segmentation pipeline

Pipeline stages:
1. Ingest image as BGR
2. Estimate cluster count from block votes
3. Reduce colors to the estimated cluster count
4. Initial region proposal parsed into a superpixel graph, with a
   cluster estimate and palette reduction per proposed region
5. Merge strategies in configured order
6. Output tag image
"""
import logging
import traceback
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from spmerge.cluster_estimate import (
    build_vote_curve,
    capture_region_mask,
    detect_peaks,
    estimate_cluster_count,
)
from spmerge.debug_utils import audit_superpixel_image
from spmerge.debug_visualization import visualize_merge_stages, visualize_vote_curve
from spmerge.merge_superpixel_image import MergeSuperpixelImage
from spmerge.quantization import (
    gen_histograms_for_blocks,
    generate_block_tags,
    reduce_colors,
    reduce_image_colors,
)
from spmerge.raster_ingest import ingest, save_image
from spmerge.segmentation import bgr_to_uid, segment, uid_to_bgr
from spmerge.superpixel_image import coords_to_arrays
from spmerge.types import MergeConfig, MergeStrategy, PeakCapacityError, SegmentationError
from spmerge.viz_utils import (
    VisualizationContext,
    visualize_boundaries,
    write_tags_with_graytable,
    write_tags_with_static_colortable,
)

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("tags", "gray", "color")


class ClusteringPipeline:
    """
    Segment an image into superpixels and merge them into large regions.
    """

    def __init__(self, config: Optional[MergeConfig] = None):
        self.config = config or MergeConfig()
        self.debug_dir: Optional[Path] = None

        # Stage outputs
        self.image: Optional[np.ndarray] = None
        self.block_image: Optional[np.ndarray] = None
        self.cluster_count: int = 0
        self.reduced_image: Optional[np.ndarray] = None
        self.colortable: Optional[np.ndarray] = None
        self.region_cluster_counts: Dict[int, int] = {}
        self.region_quant_image: Optional[np.ndarray] = None
        self.sp_image: Optional[MergeSuperpixelImage] = None
        self.merge_step: int = 0
        self.stage_counts: List[Tuple[str, int]] = []

    def process(
        self,
        input_path: Union[str, Path],
        output_path: Optional[Union[str, Path]] = None,
        output_format: str = "tags"
    ) -> MergeSuperpixelImage:
        """Process an image file, optionally writing the result image."""
        print("Stage 1/6: Ingesting image...")
        image = ingest(input_path)
        print(f"  Loaded {image.shape[1]}x{image.shape[0]}")

        sp_image = self.process_image(image)

        if output_path:
            print(f"Stage 6/6: Writing {output_format} output...")
            result = self.render(output_format)
            save_image(result, output_path)
            print(f"  Saved: {output_path}")

        return sp_image

    def process_image(self, image: np.ndarray) -> MergeSuperpixelImage:
        """Run stages 2-5 on a BGR uint8 image."""
        if image.ndim != 3 or image.shape[2] != 3 or image.dtype != np.uint8:
            raise ValueError("Input must be HxWx3 uint8 array")

        self.image = image
        self.merge_step = 0
        self.stage_counts = []

        if self.config.emit_intermediate_artifacts and self.config.debug_dir:
            self.debug_dir = Path(self.config.debug_dir)
            self.debug_dir.mkdir(parents=True, exist_ok=True)
        else:
            self.debug_dir = None

        try:
            print("Stage 2/6: Estimating cluster count...")
            self.cluster_count = self._stage2_estimate_clusters()
            print(f"  Clusters: {self.cluster_count}")

            print(f"Stage 3/6: Reducing to {self.cluster_count} colors...")
            self.reduced_image, self.colortable, actual = reduce_image_colors(
                image, self.cluster_count, self.config.random_seed
            )
            print(f"  Palette: {actual} colors")
            self._save_stage_image(self.reduced_image, "stage3_reduced.png")

            print("Stage 4/6: Initial region proposal...")
            self.sp_image = self._stage4_initial_regions()
            print(f"  Superpixels: {len(self.sp_image.superpixels)}")
            self._save_stage_boundaries("stage4_initial.png")

            self.region_cluster_counts = self._estimate_region_clusters()
            print(
                f"  Region estimates: {len(self.region_cluster_counts)} of "
                f"{len(self.sp_image.superpixels)} regions"
            )
            self.region_quant_image = self._quantize_regions()
            self._save_stage_image(self.region_quant_image, "stage4_region_quant.png")

            print("Stage 5/6: Merging superpixels...")
            self._stage5_merge()
            print(f"  Superpixels: {len(self.sp_image.superpixels)}")

            return self.sp_image

        except Exception as e:
            if self.debug_dir:
                error_file = self.debug_dir / "stage_error.txt"
                with open(error_file, 'w') as f:
                    f.write(f"Error: {e}\n\n")
                    f.write(traceback.format_exc())
            raise

    def _stage2_estimate_clusters(self) -> int:
        """
        Stage 2: Cluster count from peaks of the block vote curve.

        Falls back to the configured default when the curve has no votes,
        no peaks or too many peaks.
        """
        config = self.config
        self.block_image, _ = gen_histograms_for_blocks(self.image, config.superpixel_dim)
        self._save_stage_image(self.block_image, "stage2_blocks.png")

        try:
            count = estimate_cluster_count(self.block_image, None, config.peak_delta, config.max_peaks)
        except PeakCapacityError as e:
            logger.warning(f"{e}, using default cluster count {config.default_cluster_count}")
            return config.default_cluster_count

        if self.debug_dir:
            colortable, curve = build_vote_curve(self.block_image)
            if colortable:
                peaks = detect_peaks(curve, config.peak_delta, config.max_peaks)
                visualize_vote_curve(colortable, curve, peaks, self.debug_dir / "stage2_votes.png")

        if count == 0:
            logger.warning(f"No cluster estimate, using default cluster count {config.default_cluster_count}")
            return config.default_cluster_count

        return count

    def _estimate_region_clusters(self) -> Dict[int, int]:
        """
        Estimate a cluster count for each proposed region.

        Votes are limited to the blocks of the region plus a two block
        border. Regions no larger than one block, regions without votes and
        regions whose vote curve overflows the peak capacity get no entry.

        Returns:
            Region tag -> cluster count
        """
        config = self.config
        block_shape = self.block_image.shape[:2]
        counts = {}

        for tag in self.sp_image.superpixels:
            sp = self.sp_image.get_superpixel(tag)
            mask = capture_region_mask(sp.coords, block_shape, config.superpixel_dim)
            if mask is None:
                continue

            try:
                count = estimate_cluster_count(self.block_image, mask, config.peak_delta, config.max_peaks)
            except PeakCapacityError as e:
                logger.warning(f"Skipping cluster estimate for region {tag}: {e}")
                continue

            if count > 0:
                counts[tag] = count

        logger.info(f"Estimated clusters for {len(counts)} of {len(self.sp_image.superpixels)} regions")
        return counts

    def _quantize_regions(self) -> np.ndarray:
        """Reduce each estimated region of the input to its own cluster count."""
        result = self.reduced_image.copy()
        uids = bgr_to_uid(self.image)

        for tag, count in self.region_cluster_counts.items():
            xs, ys = coords_to_arrays(self.sp_image.get_superpixel(tag).coords)
            reduced, _, _ = reduce_colors(uids[ys, xs], count, self.config.random_seed)
            result[ys, xs] = uid_to_bgr(reduced)

        return result

    def _stage4_initial_regions(self) -> MergeSuperpixelImage:
        """Stage 4: Tag the reduced image and parse the tags."""
        method = self.config.initial_segmentation
        if method == "srm":
            tags = segment(self.reduced_image, self.config.srm_q)
        elif method == "blocks":
            tags = generate_block_tags(self.reduced_image, self.config.superpixel_dim)
        else:
            raise SegmentationError(f"Unknown initial segmentation: {method}")

        return MergeSuperpixelImage.parse(tags)

    def _stage5_merge(self):
        """Stage 5: Run each configured merge strategy in order."""
        stage_images = []
        for i, strategy in enumerate(self.config.strategies):
            self.merge_step = self.run_strategy(strategy, self.merge_step)
            self.stage_counts.append((strategy.value, len(self.sp_image.superpixels)))
            print(f"  {strategy.value}: {len(self.sp_image.superpixels)} superpixels")

            if self.debug_dir:
                audit_superpixel_image(self.sp_image, phase=strategy.value)
                stage_images.append(
                    self._save_stage_boundaries(f"stage5_{i + 1}_{strategy.value}.png")
                )

        if self.debug_dir and stage_images:
            visualize_merge_stages(
                self.image, stage_images,
                [strategy.value for strategy in self.config.strategies],
                self.debug_dir / "stage5_merge_stages.png"
            )

    def run_strategy(self, strategy: MergeStrategy, merge_step: int = 0) -> int:
        """
        Run one merge strategy on the current superpixel graph.

        Returns:
            Merge step counter after the strategy
        """
        config = self.config
        sp_image = self.sp_image
        image = self.image

        if strategy is MergeStrategy.IDENTICAL:
            return merge_step + sp_image.merge_identical_superpixels(image)

        if strategy is MergeStrategy.ALIKE:
            return merge_step + sp_image.merge_alike_superpixels(image)

        if strategy is MergeStrategy.BACKPROJECT:
            return sp_image.merge_backproject_superpixels(
                image, config.colorspace, merge_step, config.backproject_range
            )

        if strategy is MergeStrategy.BACKPROJECT_SMALLEST:
            return sp_image.merge_backproject_smallest_superpixels(
                image, config.colorspace, merge_step, config.backproject_range
            )

        if strategy is MergeStrategy.FILL:
            return sp_image.fill_merge_backproject_superpixels(image, config.colorspace, merge_step)

        if strategy is MergeStrategy.BREADTH_FIRST:
            large = sp_image.scan_largest_superpixels(config.min_small_pixels)
            return sp_image.merge_bredth_first_recursive(
                image, config.colorspace, merge_step, large, config.num_bins
            )

        if strategy is MergeStrategy.EDGY:
            large = sp_image.scan_largest_superpixels(config.min_small_pixels)
            return sp_image.merge_edgy_superpixels(image, config.colorspace, merge_step, large)

        if strategy is MergeStrategy.SMALL:
            return sp_image.merge_small_superpixels(
                image, config.colorspace, merge_step, config.min_small_pixels
            )

        raise SegmentationError(f"Unknown merge strategy: {strategy}")

    def render(self, output_format: str = "tags") -> np.ndarray:
        """
        Render the merged superpixels.

        Args:
            output_format: "tags" for a BGR tag image, "gray" for an 8 bit
                size ranked image, "color" for random region colors

        Raises:
            ValueError: If output_format is unknown
        """
        if self.sp_image is None:
            raise SegmentationError("No superpixels to render, run process() first")

        if output_format == "tags":
            return self.sp_image.write_tag_image()
        if output_format == "gray":
            return write_tags_with_graytable(self.sp_image)
        if output_format == "color":
            context = VisualizationContext(self.config.random_seed)
            context.generate_static_colortable(self.sp_image)
            return write_tags_with_static_colortable(self.sp_image, context)

        raise ValueError(f"Unknown output format: {output_format}, expected one of {OUTPUT_FORMATS}")

    def _save_stage_image(self, image: np.ndarray, name: str):
        if self.debug_dir:
            save_image(image, self.debug_dir / name)

    def _save_stage_boundaries(self, name: str) -> Optional[np.ndarray]:
        if self.debug_dir:
            return visualize_boundaries(self.image, self.sp_image, self.debug_dir / name)
        return None
