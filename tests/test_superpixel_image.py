"""Tests for superpixel graph parsing and merge_edge."""
import pytest
import numpy as np

from spmerge.debug_utils import audit_superpixel_image
from spmerge.segmentation import uid_to_bgr
from spmerge.superpixel_image import SuperpixelImage
from spmerge.types import AllSame, GraphInvariantError, TagParseError


def parse_labels(labels):
    return SuperpixelImage.parse(uid_to_bgr(np.asarray(labels)))


class TestParse:
    """Test building the graph from a tag buffer."""

    def test_tags_are_offset_by_one(self):
        """Test that tag 0 becomes superpixel 1."""
        sp_image = parse_labels([[0, 0], [4, 4]])

        assert sp_image.superpixels == [1, 5]
        assert sp_image.get_superpixel(0) is None
        assert len(sp_image.get_superpixel(1).coords) == 2

    def test_coords_in_row_major_order(self):
        """Test that coordinates are appended row by row."""
        sp_image = parse_labels([[0, 1, 0], [1, 1, 0]])

        assert sp_image.get_superpixel(1).coords == [(0, 0), (2, 0), (2, 1)]
        assert sp_image.get_superpixel(2).coords == [(1, 0), (0, 1), (1, 1)]

    def test_diagonal_adjacency(self):
        """Test that diagonal neighbors count as adjacent."""
        sp_image = parse_labels([
            [1, 0, 0],
            [0, 2, 0],
            [0, 0, 3],
        ])

        assert 3 in sp_image.edge_table.get_neighbors_set(2)
        assert 4 in sp_image.edge_table.get_neighbors_set(3)
        assert 4 not in sp_image.edge_table.get_neighbors_set(2), "Corners do not touch"
        assert sp_image.edge_table.is_symmetric()

    def test_single_superpixel_has_no_neighbors(self):
        """Test that a one region image parses with zero neighbors."""
        sp_image = parse_labels(np.full((3, 3), 5))

        assert sp_image.superpixels == [6]
        assert sp_image.edge_table.get_neighbors(6) == []

    def test_reserved_tag_rejected(self):
        """Test that the all white tag fails the parse."""
        tags = np.full((2, 2, 3), 255, dtype=np.uint8)

        with pytest.raises(TagParseError):
            SuperpixelImage.parse(tags)

    def test_wrong_channel_count_rejected(self):
        """Test that non 3 channel buffers fail the parse."""
        with pytest.raises(TagParseError):
            SuperpixelImage.parse(np.zeros((2, 2), dtype=np.uint8))

        with pytest.raises(TagParseError):
            SuperpixelImage.parse(np.zeros((2, 2, 4), dtype=np.uint8))

    def test_empty_buffer_rejected(self):
        """Test that a zero sized buffer fails the parse."""
        with pytest.raises(TagParseError):
            SuperpixelImage.parse(np.zeros((0, 4, 3), dtype=np.uint8))

    def test_parse_is_idempotent(self):
        """Test that parsing the same tags twice gives identical graphs."""
        labels = np.random.default_rng(3).integers(0, 6, size=(8, 8))
        first = parse_labels(labels)
        second = parse_labels(labels)

        assert first.superpixels == second.superpixels
        for tag in first.superpixels:
            assert first.get_superpixel(tag).coords == second.get_superpixel(tag).coords
            assert first.edge_table.get_neighbors(tag) == second.edge_table.get_neighbors(tag)

    def test_write_tag_image_round_trip(self):
        """Test that the written tag image parses back to the same graph."""
        sp_image = parse_labels([[0, 0, 1], [2, 2, 1], [2, 2, 1]])
        sp_image.merge_edge(1, 2)

        reparsed = SuperpixelImage.parse(sp_image.write_tag_image())

        assert reparsed.superpixels == sp_image.superpixels
        for tag in sp_image.superpixels:
            assert sorted(reparsed.get_superpixel(tag).coords) == sorted(sp_image.get_superpixel(tag).coords)


class TestMergeEdge:
    """Test the merge_edge contraction."""

    def test_larger_absorbs_smaller(self):
        """Test that the larger superpixel survives regardless of argument order."""
        sp_image = parse_labels([[0, 0, 0, 1]])

        dst = sp_image.merge_edge(2, 1)

        assert dst == 1
        assert sp_image.superpixels == [1]
        assert sp_image.get_superpixel(2) is None
        assert len(sp_image.get_superpixel(1).coords) == 4

    def test_tie_keeps_first_argument(self):
        """Test that equal sizes keep the first tag."""
        sp_image = parse_labels([[0, 1]])

        assert sp_image.merge_edge(2, 1) == 2
        assert sp_image.superpixels == [2]

    def test_neighbors_rewired(self):
        """Test that neighbors of the absorbed superpixel move to the survivor."""
        sp_image = parse_labels([[0, 0, 1, 2]])

        sp_image.merge_edge(1, 2)

        assert sp_image.edge_table.get_neighbors(1) == [3]
        assert sp_image.edge_table.get_neighbors(3) == [1]
        assert 2 not in sp_image.edge_table

    def test_edge_strengths_invalidated(self):
        """Test that cached strengths touching either side are dropped."""
        sp_image = parse_labels([[0, 0, 1, 2, 3]])
        table = sp_image.edge_table
        table.set_edge_strength(1, 2, 0.1)
        table.set_edge_strength(2, 3, 0.2)
        table.set_edge_strength(3, 4, 0.3)

        sp_image.merge_edge(1, 2)

        assert table.get_edge_strength(1, 2) is None
        assert table.get_edge_strength(2, 3) is None
        assert table.get_edge_strength(3, 4) == 0.3

    def test_edge_weights_concatenated(self):
        """Test that weight histories are appended onto the survivor."""
        sp_image = parse_labels([[0, 0, 1]])
        sp_image.get_superpixel(1).merged_edge_weights = [0.1]
        sp_image.get_superpixel(2).merged_edge_weights = [0.2]
        sp_image.get_superpixel(2).unmerged_edge_weights = [0.9]

        sp_image.merge_edge(1, 2)

        survivor = sp_image.get_superpixel(1)
        assert survivor.merged_edge_weights == [0.1, 0.2]
        assert survivor.unmerged_edge_weights == [0.9]

    def test_all_same_flag(self):
        """Test that a known mixed side makes the survivor mixed."""
        sp_image = parse_labels([[0, 0, 1, 2]])
        sp_image.get_superpixel(1).set_all_same()
        sp_image.get_superpixel(2).set_not_all_same()
        sp_image.get_superpixel(3).set_all_same()

        sp_image.merge_edge(1, 2)
        assert sp_image.get_superpixel(1).is_not_all_same()

        sp_image = parse_labels([[0, 0, 1]])
        sp_image.get_superpixel(1).set_all_same()
        sp_image.get_superpixel(2).set_all_same()

        sp_image.merge_edge(1, 2)
        assert sp_image.get_superpixel(1).all_same is AllSame.UNKNOWN

    def test_unknown_tag_raises(self):
        """Test that merging a merged away tag is an invariant error."""
        sp_image = parse_labels([[0, 0, 1]])
        sp_image.merge_edge(1, 2)

        with pytest.raises(GraphInvariantError):
            sp_image.merge_edge(1, 2)

        with pytest.raises(GraphInvariantError):
            sp_image.merge_edge(1, 1)

    def test_randomized_merges_keep_invariants(self):
        """Test symmetry and pixel conservation over random merge sequences."""
        rng = np.random.default_rng(7)
        labels = rng.integers(0, 20, size=(12, 12))
        sp_image = parse_labels(labels)
        num_pixels = labels.size
        removed = set()

        while len(sp_image.superpixels) > 1:
            tag = int(rng.choice(sp_image.superpixels))
            neighbors = sp_image.edge_table.get_neighbors(tag)
            assert neighbors, f"Superpixel {tag} lost all neighbors"

            neighbor = int(rng.choice(neighbors))
            sp_image.edge_table.set_edge_strength(tag, neighbor, 0.5)

            dst = sp_image.merge_edge(tag, neighbor)
            src = neighbor if dst == tag else tag
            removed.add(src)

            stats = audit_superpixel_image(sp_image)
            assert stats["ok"], f"Audit failed after merging {src} into {dst}: {stats}"
            assert sp_image.num_pixels() == num_pixels

            for dead in removed:
                assert sp_image.get_superpixel(dead) is None
                assert dead not in sp_image.superpixels

        assert sp_image.edge_table.get_neighbors(sp_image.superpixels[0]) == []

    def test_merge_is_deterministic(self):
        """Test that the same merge sequence gives identical graphs."""
        labels = np.random.default_rng(11).integers(0, 8, size=(10, 10))
        first = parse_labels(labels)
        second = parse_labels(labels)

        for sp_image in (first, second):
            for _ in range(4):
                tag = sp_image.superpixels[0]
                sp_image.merge_edge(tag, sp_image.edge_table.get_neighbors(tag)[0])

        assert first.superpixels == second.superpixels
        for tag in first.superpixels:
            assert first.get_superpixel(tag).coords == second.get_superpixel(tag).coords


class TestIdenticalMerge:
    """Test merging of single color superpixels."""

    def test_uniform_four_pixels_collapse(self):
        """Test that four one pixel regions of one color become one region."""
        sp_image = parse_labels([[0, 1], [2, 3]])
        image = np.full((2, 2, 3), (10, 20, 30), dtype=np.uint8)

        num_merges = sp_image.merge_identical_superpixels(image)

        assert num_merges == 3
        assert len(sp_image.superpixels) == 1
        survivor = sp_image.superpixels[0]
        assert len(sp_image.get_superpixel(survivor).coords) == 4
        assert sp_image.edge_table.get_neighbors(survivor) == []

    def test_different_colors_kept(self):
        """Test that regions of different colors are not merged."""
        sp_image = parse_labels([[0, 1]])
        image = np.array([[(0, 0, 255), (255, 0, 0)]], dtype=np.uint8)

        assert sp_image.merge_identical_superpixels(image) == 0
        assert len(sp_image.superpixels) == 2
        assert sp_image.get_superpixel(1).is_all_same()

    def test_mixed_region_not_merged(self):
        """Test that a region with two colors is flagged and kept apart."""
        sp_image = parse_labels([[0, 0, 1]])
        image = np.array([[(0, 0, 255), (0, 0, 254), (0, 0, 255)]], dtype=np.uint8)

        assert sp_image.merge_identical_superpixels(image) == 0
        assert sp_image.get_superpixel(1).is_not_all_same()


class TestSuperpixelQueries:
    """Test size sorting, scans and pixel access."""

    def test_sort_by_size_ties_ascending(self):
        """Test decreasing size with ascending tag on ties."""
        sp_image = parse_labels([[2, 2, 0, 1, 3, 3]])

        assert sp_image.sort_superpixels_by_size() == [3, 4, 1, 2]

    def test_scan_largest_flat_sizes(self):
        """Test that similar sizes report no large superpixel."""
        sp_image = parse_labels(np.repeat(np.arange(4), 25).reshape(10, 10))

        assert sp_image.scan_largest_superpixels() == []

    def test_scan_largest_finds_outlier(self):
        """Test that one very large region stands out among small blocks."""
        labels = np.zeros((40, 40), dtype=np.int64)
        block = 1
        for by in range(24, 40, 4):
            for bx in range(0, 40, 4):
                labels[by:by + 4, bx:bx + 4] = block
                block += 1
        sp_image = parse_labels(labels)

        assert sp_image.scan_largest_superpixels() == [1]

    def test_filter_edge_coords(self):
        """Test boundary coordinates on both sides of an edge."""
        sp_image = parse_labels([[0, 0, 1, 1]])

        edge_a, edge_b = sp_image.filter_edge_coords(1, 2)

        assert edge_a == [(1, 0)]
        assert edge_b == [(2, 0)]

    def test_filter_edge_coords_offset_pair(self):
        """Test an edge whose bounding box does not start at the origin."""
        sp_image = parse_labels([
            [0, 0, 0, 0, 0],
            [0, 0, 0, 0, 0],
            [0, 0, 1, 2, 0],
            [0, 0, 1, 2, 0],
            [0, 0, 0, 0, 0],
        ])

        edge_a, edge_b = sp_image.filter_edge_coords(2, 3)

        assert edge_a == [(2, 2), (2, 3)]
        assert edge_b == [(3, 2), (3, 3)]

    def test_fill_matrix_from_coords(self):
        """Test gathering pixels into a single row."""
        sp_image = parse_labels([[0, 1, 0]])
        image = np.array([[(1, 2, 3), (4, 5, 6), (7, 8, 9)]], dtype=np.uint8)

        pixels = sp_image.fill_matrix_from_coords(image, 1)

        assert pixels.shape == (1, 2, 3)
        assert pixels[0].tolist() == [[1, 2, 3], [7, 8, 9]]

    def test_reverse_fill_matrix_from_coords(self):
        """Test scattering values back to the superpixel coords."""
        sp_image = parse_labels([[0, 1, 0]])
        output = np.zeros((1, 3), dtype=np.uint8)

        sp_image.reverse_fill_matrix_from_coords(np.array([[7, 9]], dtype=np.uint8), 1, output)

        assert output.tolist() == [[7, 0, 9]]

    def test_bbox(self):
        """Test the bounding box of a coordinate list."""
        assert SuperpixelImage.bbox([(2, 3), (5, 1), (4, 4)]) == (2, 1, 4, 4)
