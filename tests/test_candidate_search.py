"""Tests for proximity and fingerprint candidate search."""

import numpy as np
import pytest

from loop_closing import (
    CandidateSearch,
    FingerprintIndex,
    FingerprintTable,
    LoopClosureHistory,
)


class FakeGraph:
    """Pose graph returning a fixed neighbour list."""

    def __init__(self, neighbors: list[int]) -> None:
        self.neighbors = neighbors
        self.calls: list[tuple[int, int, int, int]] = []

    def find_closest_vertices(self, anchor_id, reference_id, discard_window, k):
        self.calls.append((anchor_id, reference_id, discard_window, k))
        return list(self.neighbors)


# Scores against the query (id 19, fingerprint 0.0)
SCORES = [
    7.0, 3.0, 9.5, 1.0, 4.0, 8.0, 2.0, 6.5, 0.5, 5.0,
    2.0, 3.5, 9.0, 1.5, 4.5, 0.1, 0.2, 0.3, 0.4, 0.0,
]


@pytest.fixture
def table() -> FingerprintTable:
    """20 entries whose distance to entry 19 is SCORES[id]."""
    table = FingerprintTable()
    for cluster_id, score in enumerate(SCORES):
        table.append(cluster_id, np.array([score], dtype=np.float32))
    return table


def make_search(graph, table, history=None, discard_window=3) -> CandidateSearch:
    return CandidateSearch(
        graph=graph,
        table=table,
        history=history if history is not None else LoopClosureHistory(),
        index=FingerprintIndex(),
        discard_window=discard_window,
    )


class TestSearchByProximity:
    """Test suite for proximity search."""

    def test_asks_graph_with_discard_window(self):
        """The graph is queried around the cluster itself for 3 vertices."""
        graph = FakeGraph([2])
        search = make_search(graph, FingerprintTable(), discard_window=5)

        search.search_by_proximity(20)

        assert graph.calls == [(20, 20, 5, 3)]

    def test_never_returns_discard_window(self):
        """Ids in [id-W, id+W] are dropped even if the graph returns them."""
        graph = FakeGraph([5, 15, 20, 21, 25, 26, 30])
        search = make_search(graph, FingerprintTable(), discard_window=5)

        assert search.search_by_proximity(20) == [5, 26, 30]

    def test_graph_miss_is_empty(self):
        """A graph that knows nothing yields no candidates."""
        search = make_search(FakeGraph([]), FingerprintTable())

        assert search.search_by_proximity(3) == []


class TestSearchByHash:
    """Test suite for fingerprint search."""

    def test_top_five_ascending(self, table):
        """The 5 lowest eligible scores are returned, most similar first."""
        search = make_search(FakeGraph([]), table, discard_window=4)

        candidates = search.search_by_hash(19)

        # 15..19 are inside the discard window of 19
        assert [c.cluster_id for c in candidates] == [8, 3, 13, 6, 10]
        assert [c.score for c in candidates] == pytest.approx([0.5, 1.0, 1.5, 2.0, 2.0])

    def test_ties_keep_table_order(self, table):
        """Equal scores keep their table order."""
        search = make_search(FakeGraph([]), table, discard_window=4)

        ids = [c.cluster_id for c in search.search_by_hash(19)]

        assert ids.index(6) < ids.index(10)

    def test_never_returns_discard_window(self, table):
        """No candidate lies within the discard window of the query."""
        search = make_search(FakeGraph([]), table, discard_window=4)

        for query_id in range(20):
            for candidate in search.search_by_hash(query_id):
                assert abs(candidate.cluster_id - query_id) > 4

    def test_history_exclusion(self, table):
        """Clusters already closed with the query are skipped, in both roles."""
        history = LoopClosureHistory()
        history.add(19, 8)
        history.add(3, 19)
        search = make_search(FakeGraph([]), table, history=history, discard_window=4)

        ids = [c.cluster_id for c in search.search_by_hash(19)]

        assert 8 not in ids
        assert 3 not in ids
        assert ids == [13, 6, 10, 1, 11]

    def test_history_exclusion_is_symmetric(self, table):
        """A recorded pair excludes each id from the other's search."""
        history = LoopClosureHistory()
        search = make_search(FakeGraph([]), table, history=history, discard_window=3)
        assert search.search_by_hash(19)[0].cluster_id == 15

        history.add(19, 15)

        assert 19 not in [c.cluster_id for c in search.search_by_hash(15)]
        assert 15 not in [c.cluster_id for c in search.search_by_hash(19)]

    def test_insufficient_history(self):
        """With fewer than W+1 entries nothing is returned."""
        table = FingerprintTable()
        for cluster_id in range(10):
            table.append(cluster_id, np.array([float(cluster_id)]))
        search = make_search(FakeGraph([]), table, discard_window=10)

        assert search.search_by_hash(9) == []

    def test_excludes_query_itself(self, table):
        """The query is never its own candidate, even with no window."""
        search = make_search(FakeGraph([]), table, discard_window=0)

        ids = [c.cluster_id for c in search.search_by_hash(19)]

        assert 19 not in ids
        assert ids == [15, 16, 17, 18, 8]

    def test_unknown_query(self, table):
        """A cluster without fingerprint has no candidates."""
        search = make_search(FakeGraph([]), table)

        assert search.search_by_hash(99) == []


class TestFingerprintTable:
    """Test suite for FingerprintTable."""

    def test_append_only(self):
        """A cluster is fingerprinted once."""
        table = FingerprintTable()
        table.append(1, np.zeros(3))

        with pytest.raises(ValueError, match="already"):
            table.append(1, np.ones(3))

    def test_insertion_order(self):
        """Iteration follows processing order."""
        table = FingerprintTable()
        for cluster_id in [4, 5, 6]:
            table.append(cluster_id, np.zeros(1))

        assert [cluster_id for cluster_id, _ in table] == [4, 5, 6]
        assert table.ids == [4, 5, 6]
        assert 5 in table


class TestLoopClosureHistory:
    """Test suite for LoopClosureHistory."""

    def test_pairs_are_unordered(self):
        """(a, b) and (b, a) are the same loop."""
        history = LoopClosureHistory()
        history.add(60, 10)

        assert history.contains(60, 10)
        assert history.contains(10, 60)
        assert history.partners(10) == {60}
        assert history.pairs == [(60, 10)]
        assert len(history) == 1

    def test_repeated_pair_recorded_once(self):
        """Closing the same loop again doesn't add a second entry."""
        history = LoopClosureHistory()
        history.add(60, 10)
        history.add(60, 10)
        history.add(10, 60)
        history.add(61, 11)

        assert history.pairs == [(60, 10), (61, 11)]
        assert len(history) == 2
