"""Adjacency table between superpixels with a cached edge strength per pair."""
from typing import Dict, Iterable, List, Optional, Set, Tuple

EdgeKey = Tuple[int, int]


def edge_key(a: int, b: int) -> EdgeKey:
    """Unordered pair key, smaller tag first."""
    if a < b:
        return (a, b)
    return (b, a)


class EdgeTable:
    """
    Symmetric neighbor sets keyed by superpixel tag.

    edge_strength caches the last computed weight for an unordered pair of
    tags. Entries touching a superpixel are removed whenever that
    superpixel takes part in a merge.
    """

    def __init__(self):
        self.neighbors: Dict[int, Set[int]] = {}
        self.edge_strength: Dict[EdgeKey, float] = {}

    def __contains__(self, tag: int) -> bool:
        return tag in self.neighbors

    def __len__(self) -> int:
        return len(self.neighbors)

    def set_neighbors(self, tag: int, neighbors: Iterable[int]):
        self.neighbors[tag] = set(neighbors)

    def get_neighbors_set(self, tag: int) -> Set[int]:
        """Live neighbor set, an empty set for an unknown tag."""
        return self.neighbors.get(tag, set())

    def get_neighbors(self, tag: int) -> List[int]:
        """Copy of the neighbors in ascending tag order."""
        return sorted(self.neighbors.get(tag, ()))

    def add_neighbor(self, tag: int, neighbor: int):
        self.neighbors.setdefault(tag, set()).add(neighbor)

    def remove_neighbor(self, tag: int, neighbor: int):
        neighbors = self.neighbors.get(tag)
        if neighbors is not None:
            neighbors.discard(neighbor)

    def remove_tag(self, tag: int):
        self.neighbors.pop(tag, None)

    def get_edge_strength(self, a: int, b: int) -> Optional[float]:
        return self.edge_strength.get(edge_key(a, b))

    def set_edge_strength(self, a: int, b: int, weight: float):
        self.edge_strength[edge_key(a, b)] = weight

    def invalidate_edges(self, tag: int, neighbors: Iterable[int]):
        """Drop cached strengths for every edge between tag and neighbors."""
        for neighbor in neighbors:
            self.edge_strength.pop(edge_key(tag, neighbor), None)

    def is_symmetric(self) -> bool:
        for tag, neighbors in self.neighbors.items():
            for neighbor in neighbors:
                if tag not in self.neighbors.get(neighbor, ()):
                    return False
        return True
