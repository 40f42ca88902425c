"""Integration tests for the clustering pipeline."""
import pytest
import numpy as np

from spmerge.debug_utils import audit_superpixel_image
from spmerge.pipeline import ClusteringPipeline
from spmerge.raster_ingest import ingest, save_image
from spmerge.superpixel_image import SuperpixelImage
from spmerge.types import MergeConfig, MergeStrategy, SegmentationError


def blocks_config(**kwargs):
    return MergeConfig(
        initial_segmentation="blocks",
        strategies=[MergeStrategy.IDENTICAL],
        **kwargs
    )


class TestClusteringPipeline:
    """Test the staged pipeline end to end."""

    def test_default_run(self, two_color_image):
        """Test the default schedule on a two color image."""
        pipeline = ClusteringPipeline()

        sp_image = pipeline.process_image(two_color_image)

        stats = audit_superpixel_image(sp_image)
        assert stats["ok"], f"Audit failed: {stats}"
        assert stats["total_pixels"] == 24 * 24
        assert len(sp_image.superpixels) >= 2, "Red and blue never merge"
        assert pipeline.cluster_count == 4
        assert [name for name, _ in pipeline.stage_counts] == [
            "identical", "breadth-first", "edgy", "small"
        ]

    def test_render_formats(self, two_color_image):
        """Test every output format."""
        pipeline = ClusteringPipeline()
        pipeline.process_image(two_color_image)

        tags = pipeline.render("tags")
        assert tags.shape == (24, 24, 3)
        reparsed = SuperpixelImage.parse(tags)
        assert reparsed.superpixels == pipeline.sp_image.superpixels

        gray = pipeline.render("gray")
        assert gray.shape == (24, 24)
        assert np.unique(gray).tolist() == list(range(len(pipeline.sp_image.superpixels)))

        color = pipeline.render("color")
        assert color.shape == (24, 24, 3)

        with pytest.raises(ValueError):
            pipeline.render("svg")

    def test_render_before_process(self):
        """Test that rendering without a graph fails."""
        with pytest.raises(SegmentationError):
            ClusteringPipeline().render()

    def test_block_proposal_uniform(self):
        """Test that identical blocks of a uniform image collapse to one region."""
        image = np.full((16, 16, 3), 40, dtype=np.uint8)
        pipeline = ClusteringPipeline(blocks_config())

        sp_image = pipeline.process_image(image)

        assert len(sp_image.superpixels) == 1
        assert pipeline.merge_step == 15

    def test_block_proposal_halves(self, two_color_image):
        """Test that blocks merge per color."""
        pipeline = ClusteringPipeline(blocks_config())

        sp_image = pipeline.process_image(two_color_image)

        assert len(sp_image.superpixels) == 2
        for tag in sp_image.superpixels:
            assert len(sp_image.get_superpixel(tag).coords) == 288

    def test_peak_capacity_falls_back(self, two_color_image):
        """Test that too many peaks use the default cluster count."""
        pipeline = ClusteringPipeline(blocks_config(max_peaks=0))

        pipeline.process_image(two_color_image)

        assert pipeline.cluster_count == 32

    def test_default_chain_uniform(self):
        """Test that the default strategies reduce a uniform block proposal to one region."""
        image = np.full((16, 16, 3), 40, dtype=np.uint8)
        pipeline = ClusteringPipeline(MergeConfig(initial_segmentation="blocks"))

        sp_image = pipeline.process_image(image)

        assert len(sp_image.superpixels) == 1
        assert pipeline.stage_counts == [
            ("identical", 1), ("breadth-first", 1), ("edgy", 1), ("small", 1)
        ]

    def test_region_cluster_estimates(self, two_color_image):
        """Test that proposed regions get their own cluster estimate."""
        pipeline = ClusteringPipeline()

        pipeline.process_image(two_color_image)

        assert pipeline.region_cluster_counts, "Both halves are larger than one block"
        assert set(pipeline.region_cluster_counts.values()) == {4}
        assert pipeline.region_quant_image.shape == two_color_image.shape
        assert np.array_equal(pipeline.region_quant_image, two_color_image)

    def test_block_regions_not_estimated(self, two_color_image):
        """Test that regions no larger than one block are skipped."""
        pipeline = ClusteringPipeline(blocks_config())

        pipeline.process_image(two_color_image)

        assert pipeline.region_cluster_counts == {}

    def test_region_peak_capacity_skipped(self, two_color_image):
        """Test that a peak overflow drops only the region estimate."""
        pipeline = ClusteringPipeline(MergeConfig(max_peaks=0))

        sp_image = pipeline.process_image(two_color_image)

        assert pipeline.cluster_count == 32
        assert pipeline.region_cluster_counts == {}
        assert audit_superpixel_image(sp_image)["ok"]

    def test_unknown_initial_segmentation(self, two_color_image, tmp_path):
        """Test that an unknown proposal fails and writes the error file."""
        config = MergeConfig(
            initial_segmentation="watershed",
            emit_intermediate_artifacts=True,
            debug_dir=tmp_path
        )

        with pytest.raises(SegmentationError):
            ClusteringPipeline(config).process_image(two_color_image)

        assert (tmp_path / "stage_error.txt").exists()

    def test_invalid_image(self):
        """Test that non uint8 images are rejected."""
        with pytest.raises(ValueError):
            ClusteringPipeline().process_image(np.zeros((4, 4, 3), dtype=np.float32))

    def test_stage_artifacts(self, two_color_image, tmp_path):
        """Test that stage images are written when enabled."""
        config = MergeConfig(emit_intermediate_artifacts=True, debug_dir=tmp_path)

        ClusteringPipeline(config).process_image(two_color_image)

        assert (tmp_path / "stage2_blocks.png").exists()
        assert (tmp_path / "stage2_votes.png").exists()
        assert (tmp_path / "stage3_reduced.png").exists()
        assert (tmp_path / "stage4_initial.png").exists()
        assert (tmp_path / "stage4_region_quant.png").exists()
        assert (tmp_path / "stage5_merge_stages.png").exists()

    def test_no_artifacts_by_default(self, two_color_image, tmp_path):
        """Test that a debug dir alone does not enable artifacts."""
        config = MergeConfig(debug_dir=tmp_path)

        ClusteringPipeline(config).process_image(two_color_image)

        assert list(tmp_path.iterdir()) == []

    def test_process_file(self, two_color_image, tmp_path):
        """Test processing from and to files."""
        input_path = tmp_path / "input.png"
        output_path = tmp_path / "out" / "tags.png"
        save_image(two_color_image, input_path)

        sp_image = ClusteringPipeline(blocks_config()).process(input_path, output_path)

        assert output_path.exists()
        reparsed = SuperpixelImage.parse(ingest(output_path))
        assert reparsed.superpixels == sp_image.superpixels
