"""
Merge strategies over a superpixel graph.

Every strategy follows the same locking discipline: a per call set of
locked tags marks superpixels that are no longer merge candidates. A
superpixel is locked when no acceptable merge is found for it and the
strategy ends once no unlocked superpixel remains. Tag lists held across
iterations may go stale, get_superpixel() returns None for those.
"""
import logging
from typing import Dict, Iterable, List, Optional, Set

import numpy as np

from spmerge.edge_weights import (
    add_merged_edge_weight,
    add_unmerged_edge_weights,
    check_neighbor_edge_weights,
    compare_neighbor_edges,
)
from spmerge.similarity import (
    backproject_depth_first_recurse_into_neighbors,
    backproject_neighbor_superpixels,
    backproject_range_neighbors,
    compare_neighbor_superpixels,
    sort_ascending,
)
from spmerge.stats import mean_and_stddev, pos_sample_within_bound
from spmerge.stats import should_merge_edge as _should_merge_edge
from spmerge.superpixel_image import MAX_SMALL_NUM_PIXELS, SuperpixelImage
from spmerge.types import BackprojectRange, CompareNeighborTuple

logger = logging.getLogger(__name__)

# Fraction of edge pixels above which a superpixel counts as edgy
EDGY_PERCENT = 0.90


def split_into_bins(results: List[CompareNeighborTuple]) -> List[List[CompareNeighborTuple]]:
    """Group consecutive tuples that share the same score."""
    bins: List[List[CompareNeighborTuple]] = []
    for result in results:
        if bins and bins[-1][0][0] == result[0]:
            bins[-1].append(result)
        else:
            bins.append([result])
    return bins


class MergeSuperpixelImage(SuperpixelImage):
    """Superpixel graph with the merge strategies attached."""

    def _largest_unlocked(self, locked: Set[int]) -> Optional[int]:
        max_tag = None
        max_size = -1
        for tag in self.superpixels:
            num_coords = len(self.tag_to_superpixel[tag].coords)
            if num_coords > max_size and tag not in locked:
                max_size = num_coords
                max_tag = tag
        return max_tag

    def should_merge_edge(self, tag: int, edge_weight: float) -> bool:
        sp = self.get_superpixel(tag)
        return _should_merge_edge(sp.merged_edge_weights, sp.unmerged_edge_weights, edge_weight)

    def merge_alike_superpixels(self, image: np.ndarray) -> int:
        """
        Grow the largest unlocked superpixel into its most alike neighbor.

        The best neighbor by Bhattacharyya distance is merged as long as
        its distance stays inside the positive delta window built from
        the distances already accepted for this superpixel.

        Returns:
            Number of merges performed
        """
        locked: Set[int] = set()
        hist_weights: Dict[int, List[float]] = {}
        num_merges = 0

        while True:
            max_tag = self._largest_unlocked(locked)
            if max_tag is None:
                break

            while max_tag not in locked:
                results = compare_neighbor_superpixels(self, image, max_tag, locked)

                if not results:
                    locked.add(max_tag)
                    break

                min_weight, _, min_neighbor = results[0]

                # Zero weights are left out since only positive deltas matter
                weights = hist_weights.setdefault(max_tag, [])

                if pos_sample_within_bound(weights, min_weight):
                    if min_weight != 0.0:
                        weights.append(min_weight)
                    logger.debug(f"alike merge {min_neighbor} into {max_tag} weight {min_weight:.4f}")
                    self.merge_edge(max_tag, min_neighbor)
                    num_merges += 1
                else:
                    locked.add(max_tag)

        logger.info(f"Alike merge: {num_merges} merges, {len(self.superpixels)} superpixels remain")
        return num_merges

    def merge_backproject_superpixels(
        self,
        image: np.ndarray,
        colorspace: int = 0,
        start_step: int = 0,
        backproject_range: BackprojectRange = BackprojectRange.HIGH_50
    ) -> int:
        """
        Merge alike neighbors into superpixels visited largest first.

        Superpixels are visited from a list sorted by size. When the list
        is exhausted only the superpixels that merged since the last pass
        are unlocked and the list is sorted again. The strategy ends after
        a pass without merges.

        Returns:
            Merge step counter after the last merge
        """
        merge_iter = start_step
        num_lock_clear = 0
        merges_since_lock_clear: Dict[int, bool] = {}
        locked: Set[int] = set()

        sorted_superpixels = self.sort_superpixels_by_size()
        pos = 0

        while True:
            max_tag = None
            while pos < len(sorted_superpixels):
                next_tag = sorted_superpixels[pos]
                pos += 1
                if self.get_superpixel(next_tag) is None:
                    locked.add(next_tag)
                if next_tag not in locked:
                    max_tag = next_tag
                    break

            if max_tag is None:
                if not merges_since_lock_clear:
                    break

                # Only superpixels that grew can have new merge candidates
                for merged in merges_since_lock_clear:
                    locked.discard(merged)
                merges_since_lock_clear.clear()
                sorted_superpixels = self.sort_superpixels_by_size()
                pos = 0
                num_lock_clear += 1
                continue

            while self.get_superpixel(max_tag) is not None:
                results = backproject_range_neighbors(
                    self, image, max_tag, locked, backproject_range, colorspace
                )

                if not results:
                    locked.add(max_tag)
                    break

                for _, _, merge_neighbor in results:
                    if self.get_superpixel(max_tag) is None:
                        break
                    self.merge_edge(max_tag, merge_neighbor)
                    merge_iter += 1
                    merges_since_lock_clear[max_tag] = True

        logger.info(
            f"Backproject merge ({backproject_range.name}): {merge_iter - start_step} merges, "
            f"{num_lock_clear} lock clears, {len(self.superpixels)} superpixels remain"
        )
        return merge_iter

    def merge_bredth_first_recursive(
        self,
        image: np.ndarray,
        colorspace: int = 0,
        start_step: int = 0,
        large_superpixels: Optional[Iterable[int]] = None,
        num_bins: int = 16
    ) -> int:
        """
        Expand superpixels largest first through alike neighbors until a hard edge.

        For each seed, neighbors that back project well are grouped into
        bins of equal rounded percent. Only the best bin is merged, in
        order of increasing edge weight, and each edge must pass
        should_merge_edge(). The first rejected edge locks the seed, and
        its weight along with the rest of the bin is recorded as unmerged.
        Large superpixels start locked so that expansion moves toward them
        without swallowing them.

        Returns:
            Merge step counter after the last merge
        """
        merge_iter = start_step
        locked: Set[int] = set(large_superpixels or ())
        edge_table = self.edge_table

        for max_tag in self.sort_superpixels_by_size():
            if max_tag in locked:
                continue
            if self.get_superpixel(max_tag) is None:
                locked.add(max_tag)
                continue

            while self.get_superpixel(max_tag) is not None:
                result_tuples = backproject_neighbor_superpixels(
                    self, image, max_tag, locked, colorspace, 20, 10, True, 128, num_bins
                )

                # Neighbors can change after every merge so refresh the cache each time
                neighbors = edge_table.get_neighbors(max_tag)
                check_neighbor_edge_weights(self, image, max_tag, neighbors)

                sp = self.get_superpixel(max_tag)

                if not result_tuples:
                    if not sp.unmerged_edge_weights:
                        add_unmerged_edge_weights(
                            self, max_tag,
                            [edge_table.get_edge_strength(max_tag, n) for n in neighbors]
                        )
                    locked.add(max_tag)
                    break

                bins = split_into_bins(result_tuples)

                might_merge = {t[2] for t in result_tuples}
                not_mergeable = [
                    edge_table.get_edge_strength(max_tag, n)
                    for n in neighbors if n not in might_merge
                ]
                if not_mergeable:
                    add_unmerged_edge_weights(self, max_tag, not_mergeable)

                # Merge one bin, then back project again with the grown histogram
                edge_weight_sorted = sort_ascending([
                    (edge_table.get_edge_strength(max_tag, t[2]), t[1], t[2]) for t in bins[0]
                ])

                unmerged_edge_weights = []
                for edge_weight, _, merge_neighbor in edge_weight_sorted:
                    if unmerged_edge_weights:
                        unmerged_edge_weights.append(edge_weight)
                        continue

                    if not self.should_merge_edge(max_tag, edge_weight):
                        logger.debug(f"hard edge {edge_weight:.4f} between {max_tag} and {merge_neighbor}")
                        unmerged_edge_weights.append(edge_weight)
                        locked.add(max_tag)
                        continue

                    add_merged_edge_weight(self, max_tag, edge_weight)
                    self.merge_edge(max_tag, merge_neighbor)
                    merge_iter += 1

                    if self.get_superpixel(max_tag) is None:
                        break

                if unmerged_edge_weights:
                    if self.get_superpixel(max_tag) is not None:
                        add_unmerged_edge_weights(self, max_tag, unmerged_edge_weights)
                    break

        logger.info(
            f"Breadth first merge: {merge_iter - start_step} merges, "
            f"{len(self.superpixels)} superpixels remain"
        )
        return merge_iter

    def merge_backproject_smallest_superpixels(
        self,
        image: np.ndarray,
        colorspace: int = 0,
        start_step: int = 0,
        backproject_range: BackprojectRange = BackprojectRange.HIGH_50
    ) -> int:
        """
        Merge the smallest unlocked superpixel into its best neighbor.

        The largest superpixel is locked before the first merge so that
        the background is not grown by this pass.

        Returns:
            Merge step counter after the last merge
        """
        merge_iter = start_step
        merges_since_lock_clear: Dict[int, bool] = {}
        locked: Set[int] = set()
        max_num_coords = -1
        max_tag = None
        do_lock_max_tag = True

        while True:
            min_tag = None
            min_this_iter = None
            for tag in self.superpixels:
                num_coords = len(self.tag_to_superpixel[tag].coords)
                if num_coords > max_num_coords:
                    max_num_coords = num_coords
                    max_tag = tag
                if (min_this_iter is None or num_coords < min_this_iter) and tag not in locked:
                    min_this_iter = num_coords
                    min_tag = tag

            if min_tag is None:
                if not merges_since_lock_clear:
                    break
                for merged in merges_since_lock_clear:
                    locked.discard(merged)
                merges_since_lock_clear.clear()
                continue

            if do_lock_max_tag:
                locked.add(max_tag)
                do_lock_max_tag = False

            while min_tag not in locked and self.get_superpixel(min_tag) is not None:
                results = backproject_range_neighbors(
                    self, image, min_tag, locked, backproject_range, colorspace
                )

                if not results:
                    locked.add(min_tag)
                    break

                merge_neighbor = results[0][2]
                self.merge_edge(min_tag, merge_neighbor)
                merge_iter += 1
                merges_since_lock_clear[merge_neighbor] = True

        logger.info(
            f"Smallest first merge ({backproject_range.name}): {merge_iter - start_step} merges, "
            f"{len(self.superpixels)} superpixels remain"
        )
        return merge_iter

    def fill_merge_backproject_superpixels(
        self,
        image: np.ndarray,
        colorspace: int = 0,
        start_step: int = 0
    ) -> int:
        """
        Flood fill from the largest unlocked superpixel and merge everything reached.

        Each seed is locked after its fill and nothing is ever unlocked.

        Returns:
            Merge step counter after the last merge
        """
        merge_iter = start_step
        locked: Set[int] = set()

        while True:
            max_tag = self._largest_unlocked(locked)
            if max_tag is None:
                break

            results = backproject_depth_first_recurse_into_neighbors(
                self, image, max_tag, locked, colorspace, 20, 10, 128, 16
            )

            for merge_neighbor in results:
                if self.get_superpixel(max_tag) is None:
                    break
                if self.get_superpixel(merge_neighbor) is None:
                    continue
                self.merge_edge(max_tag, merge_neighbor)
                merge_iter += 1

            locked.add(max_tag)

        logger.info(
            f"Fill merge: {merge_iter - start_step} merges, "
            f"{len(self.superpixels)} superpixels remain"
        )
        return merge_iter

    def filter_out_very_large_neighbors(self, tag: int) -> List[int]:
        """
        Find neighbors that are much larger than the other neighbors.

        The largest neighbor is set aside while its size exceeds
        mean + 0.5 * stddev of the remaining neighbor sizes. Very small
        spreads never set anything aside.

        Returns:
            Tags of the large neighbors, largest first
        """
        tuples = [
            (neighbor_tag, len(self.tag_to_superpixel[neighbor_tag].coords))
            for neighbor_tag in self.edge_table.get_neighbors(tag)
        ]
        tuples.sort(key=lambda t: (-t[1], t[0]))

        large_neighbors = []
        while len(tuples) > 1:
            sizes = [float(size) for _, size in tuples]
            mean, stddev = mean_and_stddev(sizes)
            max_size = sizes[0]

            if stddev < 1.0 or stddev < MAX_SMALL_NUM_PIXELS:
                stddev_min = max_size
            else:
                stddev_min = mean + (stddev * 0.5)

            if max_size > stddev_min:
                large_neighbors.append(tuples.pop(0)[0])
            else:
                break

        return large_neighbors

    def merge_small_superpixels(
        self,
        image: np.ndarray,
        colorspace: int = 0,
        start_step: int = 0,
        max_small_num: int = MAX_SMALL_NUM_PIXELS
    ) -> int:
        """
        Absorb superpixels smaller than max_small_num into their most alike neighbor.

        Very large neighbors are excluded from the comparison. On a tie
        in distance the smallest of the tied neighbors is chosen.

        Returns:
            Merge step counter after the last merge
        """
        merge_step = start_step

        small_superpixels = [
            tag for tag in self.superpixels
            if len(self.tag_to_superpixel[tag].coords) < max_small_num
        ]

        i = 0
        while i < len(small_superpixels):
            tag = small_superpixels[i]
            sp = self.get_superpixel(tag)

            if sp is None or len(sp.coords) >= max_small_num:
                i += 1
                continue

            large_neighbors = self.filter_out_very_large_neighbors(tag)
            locked = set(large_neighbors) if large_neighbors else None

            results = compare_neighbor_superpixels(self, image, tag, locked)
            if not results:
                i += 1
                continue

            # Ties are sorted by decreasing size, take the last tied entry
            tie = results[0][0]
            min_neighbor = results[0][2]
            for result in results[1:]:
                if result[0] != tie:
                    break
                min_neighbor = result[2]

            self.merge_edge(tag, min_neighbor)
            merge_step += 1

            sp = self.get_superpixel(tag)
            if sp is None or len(sp.coords) >= max_small_num:
                i += 1

        logger.info(
            f"Small merge: {merge_step - start_step} merges, "
            f"{len(self.superpixels)} superpixels remain"
        )
        return merge_step

    def scan_edgy_superpixels(self, large_superpixels: Optional[Iterable[int]] = None) -> List[int]:
        """
        Find superpixels made up mostly of pixels that touch another superpixel.

        Large superpixels and superpixels contained in a single neighbor are
        skipped.
        """
        largest_locked = set(large_superpixels or ())
        edgy_superpixels = []

        for tag in self.superpixels:
            if tag in largest_locked:
                continue

            neighbors = self.edge_table.get_neighbors(tag)
            if len(neighbors) == 1:
                continue

            edge_coords = set()
            for neighbor_tag in neighbors:
                edge_src, _ = self.filter_edge_coords(tag, neighbor_tag)
                edge_coords.update(edge_src)

            num_src_coords = len(self.tag_to_superpixel[tag].coords)
            per = len(edge_coords) / float(num_src_coords)

            if per > EDGY_PERCENT:
                edgy_superpixels.append(tag)

        return edgy_superpixels

    def merge_edgy_superpixels(
        self,
        image: np.ndarray,
        colorspace: int = 0,
        start_step: int = 0,
        large_superpixels: Optional[Iterable[int]] = None
    ) -> int:
        """
        Merge edgy superpixels with other edgy neighbors.

        Edgy superpixels only merge with each other, softest edge first,
        while should_merge_edge() accepts the edge weight. The rejected
        edge and any harder ones are recorded as unmerged weights.

        Returns:
            Merge step counter after the last merge
        """
        merge_step = start_step

        edgy_table = dict.fromkeys(self.scan_edgy_superpixels(large_superpixels), True)
        logger.debug(f"found {len(edgy_table)} edgy superpixels")

        while edgy_table:
            tag = next(iter(edgy_table))

            # Neighbors that are not edgy are never merged here
            locked_neighbors = {
                neighbor_tag for neighbor_tag in self.edge_table.get_neighbors_set(tag)
                if neighbor_tag not in edgy_table
            }

            results = compare_neighbor_edges(self, image, tag, locked_neighbors)
            if not results:
                del edgy_table[tag]
                continue

            merge_step_at_results_start = merge_step
            for i, (edge_weight, _, merge_neighbor) in enumerate(results):
                if not self.should_merge_edge(tag, edge_weight):
                    add_unmerged_edge_weights(self, tag, [result[0] for result in results[i:]])
                    break

                self.merge_edge(tag, merge_neighbor)
                merge_step += 1

                if self.get_superpixel(tag) is None:
                    edgy_table.pop(tag, None)
                    break

                edgy_table.pop(merge_neighbor, None)

            if merge_step == merge_step_at_results_start:
                edgy_table.pop(tag, None)

        logger.info(
            f"Edgy merge: {merge_step - start_step} merges, "
            f"{len(self.superpixels)} superpixels remain"
        )
        return merge_step

    def recurse_touching_superpixels(
        self,
        root_tag: int,
        root_value: int = 0,
        touching_table: Optional[Dict[int, int]] = None
    ) -> Dict[int, int]:
        """
        Map superpixel tags to small integers that differ between neighbors.

        Starting at root_tag, every reached superpixel gets the smallest
        integer not used by an already labeled neighbor.
        """
        if touching_table is None:
            touching_table = {}

        stack = [root_tag]
        while stack:
            tag = stack.pop()
            if tag in touching_table:
                continue

            neighbors = self.edge_table.get_neighbors(tag)

            if tag == root_tag:
                value = root_value
            else:
                used = {touching_table[n] for n in neighbors if n in touching_table}
                value = 0
                while value in used:
                    value += 1
            touching_table[tag] = value

            for neighbor_tag in reversed(neighbors):
                if neighbor_tag not in touching_table:
                    stack.append(neighbor_tag)

        return touching_table

    def generate_touching_table(self) -> Dict[int, int]:
        """Touching table that covers every live superpixel."""
        touching_table: Dict[int, int] = {}
        for tag in self.superpixels:
            if tag not in touching_table:
                self.recurse_touching_superpixels(tag, 0, touching_table)
        return touching_table
