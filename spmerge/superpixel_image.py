"""
Superpixel graph.

SuperpixelImage owns every Superpixel by tag, keeps the live tags in
ascending order and maintains the EdgeTable. All merge strategies mutate
the graph only through merge_edge.
"""
import bisect
import logging
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from spmerge.edge_table import EdgeTable
from spmerge.segmentation import RESERVED_TAG, bgr_to_uid, uid_to_bgr
from spmerge.stats import mean_and_stddev
from spmerge.types import (
    AllSame,
    Coord,
    GraphInvariantError,
    Superpixel,
    TagParseError,
)

logger = logging.getLogger(__name__)

# Superpixels smaller than this are ignored by size statistics
MAX_SMALL_NUM_PIXELS = 10

# Neighbor offsets that cover the 8-neighborhood when applied in both directions
_HALF_NEIGHBORHOOD = ((0, 1), (1, 0), (1, 1), (1, -1))


def coords_to_arrays(coords: List[Coord]) -> Tuple[np.ndarray, np.ndarray]:
    """Split (x, y) coords into x and y index arrays."""
    if len(coords) == 0:
        empty = np.zeros(0, dtype=np.intp)
        return empty, empty
    arr = np.asarray(coords, dtype=np.intp)
    return arr[:, 0], arr[:, 1]


class SuperpixelImage:
    """Region graph parsed from a tag buffer."""

    def __init__(self):
        self.superpixels: List[int] = []
        self.tag_to_superpixel: Dict[int, Superpixel] = {}
        self.edge_table = EdgeTable()
        self.width = 0
        self.height = 0

    def __len__(self) -> int:
        return len(self.superpixels)

    @classmethod
    def parse(cls, tags: np.ndarray) -> "SuperpixelImage":
        """
        Build a superpixel graph from a BGR tag image.

        Every tag is stored as tag + 1 so that zero never names a
        superpixel. Coordinates are appended in row-major order and
        adjacency is taken from the 8-neighborhood of every pixel.

        Args:
            tags: HxWx3 tag image where tag = (R << 16) | (G << 8) | B

        Returns:
            Parsed SuperpixelImage

        Raises:
            TagParseError: If the buffer is not a non-empty 3 channel image
                or contains the reserved tag 0xFFFFFF
            GraphInvariantError: If a superpixel has no neighbors while
                more than one superpixel exists
        """
        if not isinstance(tags, np.ndarray):
            raise TagParseError("Tag buffer must be a numpy array")

        if tags.ndim != 3 or tags.shape[2] != 3:
            raise TagParseError(f"Tag buffer must be HxWx3, got shape {tags.shape}")

        height, width = tags.shape[:2]
        if height == 0 or width == 0:
            raise TagParseError("Tag buffer is empty")

        uids = bgr_to_uid(tags)
        if np.any(uids == RESERVED_TAG):
            raise TagParseError("Tag pixel has the value 0xFFFFFF which is not supported")
        uids = uids + 1

        sp_image = cls()
        sp_image.width = width
        sp_image.height = height

        flat = uids.ravel()
        order = np.argsort(flat, kind='stable')
        unique_tags, starts, counts = np.unique(flat[order], return_index=True, return_counts=True)
        xs = (order % width).tolist()
        ys = (order // width).tolist()

        for tag, start, count in zip(unique_tags.tolist(), starts.tolist(), counts.tolist()):
            end = start + count
            coords = list(zip(xs[start:end], ys[start:end]))
            sp_image.tag_to_superpixel[tag] = Superpixel(tag=tag, coords=coords)

        sp_image.superpixels = unique_tags.tolist()

        sp_image._parse_superpixel_edges(uids)

        logger.debug(f"Parsed {len(sp_image.superpixels)} superpixels from {width}x{height} tags")

        return sp_image

    def _parse_superpixel_edges(self, uids: np.ndarray):
        pairs = []
        for dy, dx in _HALF_NEIGHBORHOOD:
            h, w = uids.shape
            if dx >= 0:
                a = uids[0:h - dy, 0:w - dx]
                b = uids[dy:h, dx:w]
            else:
                a = uids[0:h - dy, -dx:w]
                b = uids[dy:h, 0:w + dx]
            differ = a != b
            if np.any(differ):
                pairs.append(np.stack([a[differ], b[differ]], axis=1))

        neighbor_map: Dict[int, set] = {tag: set() for tag in self.superpixels}
        if pairs:
            all_pairs = np.unique(np.sort(np.concatenate(pairs), axis=1), axis=0)
            for a, b in all_pairs.tolist():
                neighbor_map[a].add(b)
                neighbor_map[b].add(a)

        multiple = len(self.superpixels) > 1
        for tag in self.superpixels:
            neighbors = neighbor_map[tag]
            if multiple and len(neighbors) == 0:
                raise GraphInvariantError(f"Superpixel {tag} has no neighbors")
            self.edge_table.set_neighbors(tag, neighbors)

    def get_superpixel(self, tag: int) -> Optional[Superpixel]:
        """Return the superpixel for a tag or None if it was merged away."""
        return self.tag_to_superpixel.get(tag)

    def merge_edge(self, a: int, b: int) -> int:
        """
        Merge two superpixels, the smaller one is absorbed by the larger.

        When both have the same size b is merged into a.

        Args:
            a: Tag of first superpixel
            b: Tag of second superpixel

        Returns:
            Tag of the surviving superpixel

        Raises:
            GraphInvariantError: If either tag is unknown or a == b
        """
        if a == b:
            raise GraphInvariantError(f"Cannot merge superpixel {a} with itself")

        sp_a = self.tag_to_superpixel.get(a)
        sp_b = self.tag_to_superpixel.get(b)
        if sp_a is None or sp_b is None:
            raise GraphInvariantError(f"Merge of unknown superpixel in edge ({a}, {b})")

        if len(sp_a.coords) >= len(sp_b.coords):
            dst, src = sp_a, sp_b
        else:
            dst, src = sp_b, sp_a

        logger.debug(f"merge {src.tag} (N={len(src.coords)}) into {dst.tag} (N={len(dst.coords)})")

        dst.coords.extend(src.coords)
        src.coords = []

        index = bisect.bisect_left(self.superpixels, src.tag)
        if index == len(self.superpixels) or self.superpixels[index] != src.tag:
            raise GraphInvariantError(f"Superpixel {src.tag} missing from live tags")
        del self.superpixels[index]

        edge_table = self.edge_table
        src_neighbors = set(edge_table.get_neighbors_set(src.tag))
        dst_neighbors = set(edge_table.get_neighbors_set(dst.tag))

        edge_table.invalidate_edges(src.tag, src_neighbors)
        edge_table.invalidate_edges(dst.tag, dst_neighbors)

        edge_table.remove_neighbor(dst.tag, src.tag)
        for neighbor in src_neighbors:
            if neighbor == dst.tag:
                continue
            edge_table.remove_neighbor(neighbor, src.tag)
            edge_table.add_neighbor(neighbor, dst.tag)
            edge_table.add_neighbor(dst.tag, neighbor)
        edge_table.remove_tag(src.tag)

        dst.merged_edge_weights.extend(src.merged_edge_weights)
        dst.unmerged_edge_weights.extend(src.unmerged_edge_weights)

        if src.is_not_all_same() or dst.is_not_all_same():
            dst.set_not_all_same()
        else:
            dst.all_same = AllSame.UNKNOWN

        del self.tag_to_superpixel[src.tag]

        return dst.tag

    def sort_superpixels_by_size(self) -> List[int]:
        """Tags by decreasing size, ties in ascending tag order."""
        return sorted(
            self.superpixels,
            key=lambda tag: (-len(self.tag_to_superpixel[tag].coords), tag)
        )

    def num_pixels(self) -> int:
        return sum(len(sp.coords) for sp in self.tag_to_superpixel.values())

    def fill_matrix_from_coords(self, image: np.ndarray, tag: int) -> np.ndarray:
        """
        Gather the pixels of one superpixel from an image.

        Returns:
            1xNxC array of pixels in coordinate order
        """
        sp = self.tag_to_superpixel[tag]
        xs, ys = coords_to_arrays(sp.coords)
        return np.ascontiguousarray(image[ys, xs][np.newaxis, ...])

    def reverse_fill_matrix_from_coords(self, values: np.ndarray, tag: int, output: np.ndarray):
        """Scatter a 1xN row of values back into output at the superpixel coords."""
        sp = self.tag_to_superpixel[tag]
        xs, ys = coords_to_arrays(sp.coords)
        output[ys, xs] = values.reshape((len(sp.coords),) + output.shape[2:])

    def write_tags(self) -> np.ndarray:
        """Label map where each pixel holds the tag of the superpixel owning it."""
        labels = np.zeros((self.height, self.width), dtype=np.int32)
        for tag in self.superpixels:
            xs, ys = coords_to_arrays(self.tag_to_superpixel[tag].coords)
            labels[ys, xs] = tag
        return labels

    def write_tag_image(self) -> np.ndarray:
        """
        BGR tag image in the format parse() reads.

        Each pixel holds the tag of its superpixel minus one, so parsing
        the result reproduces the live tags.
        """
        return uid_to_bgr(self.write_tags().astype(np.int64) - 1)

    def is_all_same_pixels(self, image: np.ndarray, tag: int) -> bool:
        """True if every pixel of the superpixel has the color of its first pixel."""
        sp = self.tag_to_superpixel[tag]
        x, y = sp.coords[0]
        return _is_all_same_pixels(image, image[y, x], sp.coords)

    def is_all_same_as(self, image: np.ndarray, sp: Superpixel, other_tag: int) -> bool:
        """
        True if every pixel of other_tag equals the color of sp.

        sp must be known to contain identical pixels. A merged away other_tag
        is never the same.
        """
        other = self.tag_to_superpixel.get(other_tag)
        if other is None:
            return False

        if other.is_not_all_same():
            return False

        x, y = sp.coords[0]
        known_first_pixel = image[y, x]

        if other.is_all_same():
            ox, oy = other.coords[0]
            return bool(np.array_equal(image[oy, ox], known_first_pixel))

        return _is_all_same_pixels(image, known_first_pixel, other.coords)

    def merge_identical_superpixels(self, image: np.ndarray) -> int:
        """
        Merge neighboring superpixels that contain exactly the same color.

        Returns:
            Number of merges performed
        """
        identical = []
        for tag in self.superpixels:
            sp = self.tag_to_superpixel[tag]
            if self.is_all_same_pixels(image, tag):
                sp.set_all_same()
                identical.append(tag)
            else:
                sp.set_not_all_same()

        num_merges = 0
        i = 0
        while i < len(identical):
            tag = identical[i]
            sp = self.get_superpixel(tag)
            if sp is None:
                i += 1
                continue

            merged_neighbor = False
            for neighbor_tag in self.edge_table.get_neighbors(tag):
                if not self.is_all_same_as(image, sp, neighbor_tag):
                    continue

                dst_tag = self.merge_edge(tag, neighbor_tag)
                num_merges += 1
                self.tag_to_superpixel[dst_tag].set_all_same()

                if self.get_superpixel(tag) is None:
                    # Absorbed by the neighbor, its neighbor list is stale now
                    break
                merged_neighbor = True

            if not merged_neighbor:
                i += 1

        logger.info(f"Identical merge: {num_merges} merges, {len(self.superpixels)} superpixels remain")
        return num_merges

    def scan_largest_superpixels(self, min_num_pixels: int = MAX_SMALL_NUM_PIXELS) -> List[int]:
        """
        Find superpixels that are much larger than the rest.

        Superpixels smaller than min_num_pixels are left out of the stats.
        When the stddev of sizes is below 100 nothing stands out.

        Returns:
            Tags with size above mean + 1.5 * stddev, in live tag order
        """
        sizes = []
        tags = []
        for tag in self.superpixels:
            num_coords = len(self.tag_to_superpixel[tag].coords)
            if num_coords >= min_num_pixels:
                sizes.append(float(num_coords))
                tags.append(tag)

        mean, stddev = mean_and_stddev(sizes)
        if stddev < 100.0:
            return []

        upper_limit = mean + (stddev * 0.5 * 3.0)
        return [tag for tag, size in zip(tags, sizes) if size > upper_limit]

    def filter_edge_coords(self, tag_a: int, tag_b: int) -> Tuple[List[Coord], List[Coord]]:
        """
        Coordinates along the boundary between two superpixels.

        Returns:
            (coords of a touching b, coords of b touching a), both in the
            original coordinate order
        """
        sp_a = self.tag_to_superpixel[tag_a]
        sp_b = self.tag_to_superpixel[tag_b]
        xs_a, ys_a = coords_to_arrays(sp_a.coords)
        xs_b, ys_b = coords_to_arrays(sp_b.coords)

        min_x, min_y, w, h = self.bbox(sp_a.coords + sp_b.coords)
        shape = (h, w)

        mask_a = np.zeros(shape, dtype=np.uint8)
        mask_b = np.zeros(shape, dtype=np.uint8)
        mask_a[ys_a - min_y, xs_a - min_x] = 255
        mask_b[ys_b - min_y, xs_b - min_x] = 255

        kernel = np.ones((3, 3), dtype=np.uint8)
        grown_a = cv2.dilate(mask_a, kernel)
        grown_b = cv2.dilate(mask_b, kernel)

        on_a = grown_b[ys_a - min_y, xs_a - min_x] != 0
        on_b = grown_a[ys_b - min_y, xs_b - min_x] != 0

        edge_a = [c for c, keep in zip(sp_a.coords, on_a.tolist()) if keep]
        edge_b = [c for c, keep in zip(sp_b.coords, on_b.tolist()) if keep]
        return edge_a, edge_b

    @staticmethod
    def bbox(coords: List[Coord]) -> Tuple[int, int, int, int]:
        """Bounding box (x, y, w, h) of a coordinate list."""
        xs, ys = coords_to_arrays(coords)
        min_x, max_x = int(xs.min()), int(xs.max())
        min_y, max_y = int(ys.min()), int(ys.max())
        return min_x, min_y, max_x - min_x + 1, max_y - min_y + 1


def _is_all_same_pixels(image: np.ndarray, known_first_pixel: np.ndarray, coords: List[Coord]) -> bool:
    xs, ys = coords_to_arrays(coords)
    pixels = image[ys, xs]
    return bool(np.all(pixels == known_first_pixel))
