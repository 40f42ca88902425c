"""Tests for the superpixel adjacency table."""
from spmerge.edge_table import EdgeTable, edge_key


class TestEdgeKey:
    """Test unordered pair keys."""

    def test_smaller_tag_first(self):
        """Test that both orders map to the same key."""
        assert edge_key(5, 2) == (2, 5)
        assert edge_key(2, 5) == (2, 5)


class TestEdgeTable:
    """Test neighbor bookkeeping and the edge strength cache."""

    def test_get_neighbors_sorted_copy(self):
        """Test that get_neighbors returns a sorted copy."""
        table = EdgeTable()
        table.set_neighbors(1, [7, 3, 5])

        neighbors = table.get_neighbors(1)
        assert neighbors == [3, 5, 7]

        neighbors.append(99)
        assert 99 not in table.get_neighbors_set(1), "Copy must not alias the table"

    def test_unknown_tag_has_no_neighbors(self):
        """Test that lookups of unknown tags return empty results."""
        table = EdgeTable()
        assert table.get_neighbors(42) == []
        assert table.get_neighbors_set(42) == set()
        assert 42 not in table

    def test_add_and_remove_neighbor(self):
        """Test adding and removing single links."""
        table = EdgeTable()
        table.add_neighbor(1, 2)
        table.add_neighbor(2, 1)
        assert table.is_symmetric()

        table.remove_neighbor(1, 2)
        assert table.get_neighbors(1) == []
        assert not table.is_symmetric(), "2 still lists 1"

        table.remove_tag(2)
        assert 2 not in table
        assert len(table) == 1

    def test_edge_strength_is_unordered(self):
        """Test that strengths are shared by both directions of an edge."""
        table = EdgeTable()
        table.set_edge_strength(4, 1, 0.25)

        assert table.get_edge_strength(1, 4) == 0.25
        assert table.get_edge_strength(4, 1) == 0.25
        assert table.get_edge_strength(1, 5) is None

    def test_invalidate_edges(self):
        """Test that invalidation removes only edges of the given tag."""
        table = EdgeTable()
        table.set_edge_strength(1, 2, 0.1)
        table.set_edge_strength(1, 3, 0.2)
        table.set_edge_strength(2, 3, 0.3)

        table.invalidate_edges(1, [2, 3])

        assert table.get_edge_strength(1, 2) is None
        assert table.get_edge_strength(1, 3) is None
        assert table.get_edge_strength(2, 3) == 0.3
