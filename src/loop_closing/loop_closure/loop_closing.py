"""Loop closing worker.

The tracking pipeline pushes clusters into a queue; a single worker
thread pops them one at a time and, for each cluster:

1. stores it and appends its fingerprint to the table
2. verifies the graph vertices close to it (proximity search)
3. verifies the clusters with the most similar fingerprints (hash search)

Only the queue is shared between threads. The pose graph is shared with
its optimiser and guarded by the graph's own lock.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

from ..cluster import Cluster
from ..config import LoopClosingConfig
from ..visualization import LoopImageBuilder, no_loop_closures_image
from .candidate_search import CandidateSearch, FingerprintTable, LoopClosureHistory
from .cluster_queue import ClusterQueue
from .cluster_store import ClusterStore, DiskClusterStore, MemoryClusterStore
from .fingerprint import FingerprintIndex
from .loop_verifier import LoopVerifier, VerificationResult

if TYPE_CHECKING:
    from ..graph import PoseGraphInterface
    from ..visualization import RerunTelemetry

logger = logging.getLogger(__name__)


class LoopClosing:
    """Consumes clusters and closes loops in the pose graph.

    Call ``start()`` to run the worker thread, or ``process_next()`` to
    drive it synchronously.
    """

    def __init__(
        self,
        graph: PoseGraphInterface,
        config: LoopClosingConfig | None = None,
        store: ClusterStore | None = None,
        telemetry: RerunTelemetry | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            graph: Pose graph collaborator
            config: Parameters; defaults if None
            store: Cluster store. Defaults to a DiskClusterStore in the
                working directory, or a MemoryClusterStore without one.
            telemetry: Telemetry sink; None disables publishing
        """
        self._graph = graph
        self._config = config if config is not None else LoopClosingConfig()
        self._telemetry = telemetry

        if store is None:
            cluster_dir = self._config.cluster_directory
            store = DiskClusterStore(cluster_dir) if cluster_dir else MemoryClusterStore()
        self._store = store

        self._queue = ClusterQueue()
        self._index = FingerprintIndex(
            num_projections=self._config.num_projections,
            seed=self._config.hash_seed,
        )
        self._table = FingerprintTable()
        self._history = LoopClosureHistory()
        self._search = CandidateSearch(
            graph=graph,
            table=self._table,
            history=self._history,
            index=self._index,
            discard_window=self._config.discard_window,
            proximity_candidates=self._config.proximity_candidates,
            max_hash_candidates=self._config.max_hash_candidates,
        )

        image_builder = None
        if self._config.loop_closures_directory is not None:
            image_builder = LoopImageBuilder(
                keyframes_dir=self._config.keyframes_path,
                output_dir=self._config.loop_closures_directory,
            )
        self._verifier = LoopVerifier(
            graph=graph,
            store=self._store,
            history=self._history,
            config=self._config,
            image_builder=image_builder,
        )

        self._num_processed = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def add_cluster_to_queue(self, cluster: Cluster) -> None:
        """Enqueue a cluster (called from the tracking thread)."""
        self._queue.push(cluster)

    def process_next(self) -> bool:
        """Process the oldest queued cluster, if any.

        Returns:
            True if a cluster was processed
        """
        cluster = self._queue.pop()
        if cluster is None:
            return False

        self._process_new_cluster(cluster)
        self._search_by_proximity(cluster)
        self._search_by_hash(cluster)
        return True

    def _process_new_cluster(self, cluster: Cluster) -> None:
        # A cluster that can't be fingerprinted is neither stored nor indexed
        descriptors = cluster.fingerprint_descriptors
        if not self._index.is_initialized:
            self._index.initialize(descriptors)
        fingerprint = self._index.fingerprint(descriptors)

        self._store.put(cluster)
        self._table.append(cluster.id, fingerprint)
        self._num_processed += 1

        if cluster.camera_pose is None:
            cluster.camera_pose = self._graph.get_vertex_camera_pose(cluster.id)

    def _search_by_proximity(self, cluster: Cluster) -> None:
        for candidate_id in self._search.search_by_proximity(cluster.id):
            result = self._close_loop(cluster, candidate_id)
            if result is not None and result.is_valid:
                logger.info("[LoopClosing] By proximity")

    def _search_by_hash(self, cluster: Cluster) -> None:
        for candidate in self._search.search_by_hash(cluster.id):
            result = self._close_loop(cluster, candidate.cluster_id)
            if result is not None and result.is_valid:
                logger.info("[LoopClosing] By hash (score=%.3f)", candidate.score)

    def _close_loop(self, cluster: Cluster, candidate_id: int) -> VerificationResult | None:
        candidate = self._verifier.read_cluster(candidate_id)
        if candidate.is_empty:
            return None

        result = self._verifier.verify(cluster, candidate)
        if result.is_valid and result.image is not None and self._telemetry is not None:
            self._telemetry.log_loop_image(result.image)
        return result

    def _publish(self) -> None:
        if self._telemetry is None:
            return
        self._telemetry.log_counters(
            num_keyframes=self._graph.get_frame_num(),
            num_loop_closures=len(self._history),
            queue_size=self._queue.size,
        )

    def _run(self) -> None:
        logger.info("[LoopClosing] Worker started")
        if self._telemetry is not None:
            self._telemetry.log_loop_image(no_loop_closures_image())

        period = 1.0 / self._config.poll_rate_hz
        while not self._stop_event.is_set():
            tick_start = time.monotonic()
            try:
                self.process_next()
                self._publish()
            except Exception:
                logger.exception("[LoopClosing] Error while processing cluster")

            remaining = period - (time.monotonic() - tick_start)
            if remaining > 0:
                self._stop_event.wait(remaining)

        logger.info("[LoopClosing] Worker stopped")

    def start(self) -> None:
        """Start the worker thread.

        Does nothing while a previous worker is still running, including
        one that outlived the timeout of ``stop()``.
        """
        if self._thread is not None:
            if self._thread.is_alive():
                logger.warning("[LoopClosing] Worker still running, not started again")
                return
            self._thread = None

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="loop-closing", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker; an in-flight verification is allowed to finish."""
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("[LoopClosing] Worker did not stop within %.1fs", timeout)
            return
        self._thread = None

    def finalize(self) -> None:
        """Remove the temporary cluster records.

        Skipped while the worker is still running.
        """
        if self.is_running:
            logger.warning("[LoopClosing] Worker still running, cluster records kept")
            return
        self._store.purge()

    def __enter__(self) -> LoopClosing:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()
        self.finalize()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def queue_size(self) -> int:
        return self._queue.size

    @property
    def num_processed(self) -> int:
        """Clusters dequeued and indexed so far."""
        return self._num_processed

    @property
    def num_loop_closures(self) -> int:
        return len(self._history)

    @property
    def loop_closures(self) -> list[tuple[int, int]]:
        """(frame cluster, candidate cluster) pairs joined by loop edges."""
        return self._history.pairs

    @property
    def history(self) -> LoopClosureHistory:
        return self._history

    @property
    def store(self) -> ClusterStore:
        return self._store

    @property
    def table(self) -> FingerprintTable:
        return self._table

    @property
    def search(self) -> CandidateSearch:
        return self._search

    @property
    def verifier(self) -> LoopVerifier:
        return self._verifier

    @property
    def config(self) -> LoopClosingConfig:
        return self._config
