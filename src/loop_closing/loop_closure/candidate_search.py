"""Loop closure candidate search.

Two independent strategies propose candidate clusters for a query
cluster:
- proximity: vertices the pose graph considers close to the query
- hash: clusters whose fingerprint is most similar to the query's

Both skip the discard window, the ids temporally adjacent to the query,
which would trivially look alike.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator

import numpy as np

from .fingerprint import FingerprintIndex

if TYPE_CHECKING:
    from ..graph import PoseGraphInterface


@dataclass
class HashCandidate:
    """Result of a fingerprint query.

    Attributes:
        cluster_id: Candidate cluster id
        score: Fingerprint distance to the query (lower is more similar)
    """

    cluster_id: int
    score: float


class FingerprintTable:
    """Append-only sequence of (cluster id, fingerprint) pairs."""

    def __init__(self) -> None:
        self._ids: list[int] = []
        self._fingerprints: list[np.ndarray] = []
        self._index: dict[int, int] = {}

    def append(self, cluster_id: int, fingerprint: np.ndarray) -> None:
        if cluster_id in self._index:
            raise ValueError(f"Cluster {cluster_id} already has a fingerprint")
        self._index[cluster_id] = len(self._ids)
        self._ids.append(cluster_id)
        self._fingerprints.append(np.asarray(fingerprint))

    def get(self, cluster_id: int) -> np.ndarray | None:
        idx = self._index.get(cluster_id)
        return None if idx is None else self._fingerprints[idx]

    @property
    def ids(self) -> list[int]:
        return list(self._ids)

    def __iter__(self) -> Iterator[tuple[int, np.ndarray]]:
        return iter(zip(self._ids, self._fingerprints))

    def __contains__(self, cluster_id: int) -> bool:
        return cluster_id in self._index

    def __len__(self) -> int:
        return len(self._ids)


class LoopClosureHistory:
    """Set of cluster pairs already joined by a loop edge.

    Pairs are unordered: (a, b) and (b, a) are the same loop and are
    recorded once, in the order first added.
    """

    def __init__(self) -> None:
        self._pairs: list[tuple[int, int]] = []
        self._partners: dict[int, set[int]] = {}

    def add(self, cluster_a: int, cluster_b: int) -> None:
        if self.contains(cluster_a, cluster_b):
            return
        self._pairs.append((cluster_a, cluster_b))
        self._partners.setdefault(cluster_a, set()).add(cluster_b)
        self._partners.setdefault(cluster_b, set()).add(cluster_a)

    def contains(self, cluster_a: int, cluster_b: int) -> bool:
        return cluster_b in self._partners.get(cluster_a, ())

    def partners(self, cluster_id: int) -> set[int]:
        """Ids already closed with ``cluster_id``, in either role."""
        return set(self._partners.get(cluster_id, ()))

    @property
    def pairs(self) -> list[tuple[int, int]]:
        return list(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)


class CandidateSearch:
    """Proposes loop closure candidates for a processed cluster."""

    def __init__(
        self,
        graph: PoseGraphInterface,
        table: FingerprintTable,
        history: LoopClosureHistory,
        index: FingerprintIndex,
        discard_window: int = 10,
        proximity_candidates: int = 3,
        max_hash_candidates: int = 5,
    ) -> None:
        """Initialize candidate search.

        Args:
            graph: Pose graph collaborator
            table: Fingerprints of all processed clusters
            history: Loop closures found so far
            index: Fingerprint index used to score table entries
            discard_window: Ids within this distance are never candidates
            proximity_candidates: Vertices requested from the graph
            max_hash_candidates: Fingerprint candidates returned
        """
        self._graph = graph
        self._table = table
        self._history = history
        self._index = index
        self._discard_window = discard_window
        self._proximity_candidates = proximity_candidates
        self._max_hash_candidates = max_hash_candidates

    def in_discard_window(self, cluster_id: int, other_id: int) -> bool:
        return abs(other_id - cluster_id) <= self._discard_window

    def search_by_proximity(self, cluster_id: int) -> list[int]:
        """Graph vertices close to the cluster, outside its discard window."""
        neighbors = self._graph.find_closest_vertices(
            cluster_id,
            cluster_id,
            self._discard_window,
            self._proximity_candidates,
        )
        return [
            vid
            for vid in neighbors or []
            if not self.in_discard_window(cluster_id, vid)
        ]

    def search_by_hash(self, cluster_id: int) -> list[HashCandidate]:
        """Most similar clusters by fingerprint.

        Returns:
            Up to ``max_hash_candidates`` candidates sorted by ascending
            score; ties keep table order
        """
        # Not enough history to look beyond the temporal neighbours
        if len(self._table) < self._discard_window + 1:
            return []

        query = self._table.get(cluster_id)
        if query is None:
            return []

        excluded = self._history.partners(cluster_id)

        matchings = []
        for order, (other_id, fingerprint) in enumerate(self._table):
            if other_id == cluster_id:
                continue
            if self.in_discard_window(cluster_id, other_id):
                continue
            if other_id in excluded:
                continue
            score = self._index.similarity(query, fingerprint)
            matchings.append((score, order, other_id))

        matchings.sort()
        return [
            HashCandidate(cluster_id=other_id, score=score)
            for score, _, other_id in matchings[: self._max_hash_candidates]
        ]
