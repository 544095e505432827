"""Thread-safe FIFO between the tracking pipeline and the loop closing worker."""

from __future__ import annotations

import threading
from collections import deque

from ..cluster import Cluster


class ClusterQueue:
    """Unbounded FIFO of clusters.

    A single lock guards push, pop and size; it is held only for the
    container operation itself.
    """

    def __init__(self) -> None:
        self._items: deque[Cluster] = deque()
        self._lock = threading.Lock()

    def push(self, cluster: Cluster) -> None:
        """Append a cluster (producer side)."""
        with self._lock:
            self._items.append(cluster)

    def pop(self) -> Cluster | None:
        """Remove and return the oldest cluster, or None if empty."""
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def empty(self) -> bool:
        with self._lock:
            return not self._items

    @property
    def size(self) -> int:
        """Snapshot of the queue depth (monitoring only)."""
        with self._lock:
            return len(self._items)

    def __len__(self) -> int:
        return self.size
