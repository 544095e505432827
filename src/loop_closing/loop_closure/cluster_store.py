"""Write-once storage of processed clusters.

Verification reads candidate clusters (and their neighbours) back by id,
long after they left the queue. Records are immutable once written; a
second ``put`` for the same id is ignored.

Two backends share the same contract:
- MemoryClusterStore: dict keyed by cluster id
- DiskClusterStore: one .npz record per cluster in a working directory,
  removed on purge()
"""

from __future__ import annotations

import logging
import shutil
import zipfile
from pathlib import Path

import numpy as np

from ..cluster import Cluster

logger = logging.getLogger(__name__)


class ClusterStore:
    """Base class implementing the write-once policy.

    Subclasses provide ``_write``, ``_read`` and ``_clear``.
    """

    def __init__(self) -> None:
        self._ids: set[int] = set()

    def put(self, cluster: Cluster) -> bool:
        """Persist a cluster.

        Args:
            cluster: Cluster to store

        Returns:
            True if written, False if the id already exists or the backend
            refused the write
        """
        if cluster.id in self._ids:
            logger.debug("[ClusterStore] Cluster %d already stored, ignoring", cluster.id)
            return False

        if not self._write(cluster):
            return False

        self._ids.add(cluster.id)
        return True

    def get(self, cluster_id: int) -> Cluster:
        """Read a cluster back.

        Returns:
            The stored cluster (without camera pose), or the empty sentinel
            if the id is unknown or its record can't be read
        """
        if cluster_id not in self._ids:
            return Cluster.empty(cluster_id)

        cluster = self._read(cluster_id)
        if cluster is None:
            return Cluster.empty(cluster_id)
        return cluster

    def purge(self) -> None:
        """Delete every stored cluster."""
        self._clear()
        self._ids.clear()

    def __contains__(self, cluster_id: int) -> bool:
        return cluster_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def _write(self, cluster: Cluster) -> bool:
        raise NotImplementedError

    def _read(self, cluster_id: int) -> Cluster | None:
        raise NotImplementedError

    def _clear(self) -> None:
        raise NotImplementedError


class MemoryClusterStore(ClusterStore):
    """In-process store keyed by integer id."""

    def __init__(self) -> None:
        super().__init__()
        self._clusters: dict[int, Cluster] = {}

    def _write(self, cluster: Cluster) -> bool:
        # Only the persisted fields; the pose is owned by the pose graph
        self._clusters[cluster.id] = Cluster(
            id=cluster.id,
            frame_id=cluster.frame_id,
            keypoints=cluster.keypoints.copy(),
            descriptors=cluster.descriptors.copy(),
            world_points=cluster.world_points.copy(),
            hash_descriptors=(
                None
                if cluster.hash_descriptors is None
                else cluster.hash_descriptors.copy()
            ),
        )
        return True

    def _read(self, cluster_id: int) -> Cluster | None:
        return self._clusters.get(cluster_id)

    def _clear(self) -> None:
        self._clusters.clear()


class DiskClusterStore(ClusterStore):
    """One .npz record per cluster inside a working directory.

    The directory is cleared on construction. If it can't be created the
    store stays unusable: writes are refused and reads return sentinels.
    """

    def __init__(self, directory: str | Path) -> None:
        """Initialize the store and (re)create its directory.

        Args:
            directory: Working directory for cluster records
        """
        super().__init__()
        self._directory = Path(directory)
        self._usable = self._prepare_directory()

    def _prepare_directory(self) -> bool:
        try:
            if self._directory.is_dir():
                shutil.rmtree(self._directory)
            self._directory.mkdir(parents=True)
        except OSError as e:
            logger.error(
                "[ClusterStore] Impossible to create the working directory %s: %s",
                self._directory,
                e,
            )
            return False
        return True

    def _record_path(self, cluster_id: int) -> Path:
        return self._directory / f"{cluster_id}.npz"

    def _write(self, cluster: Cluster) -> bool:
        if not self._usable:
            logger.warning(
                "[ClusterStore] Working directory unusable, cluster %d not stored",
                cluster.id,
            )
            return False

        hash_descriptors = cluster.hash_descriptors
        try:
            np.savez(
                self._record_path(cluster.id),
                frame_id=np.int64(cluster.frame_id),
                keypoints=cluster.keypoints,
                descriptors=cluster.descriptors,
                world_points=cluster.world_points,
                has_hash=np.bool_(hash_descriptors is not None),
                hash_descriptors=(
                    hash_descriptors
                    if hash_descriptors is not None
                    else np.zeros((0, 0), dtype=np.float32)
                ),
            )
        except OSError as e:
            logger.error("[ClusterStore] Failed to write cluster %d: %s", cluster.id, e)
            return False
        return True

    def _read(self, cluster_id: int) -> Cluster | None:
        path = self._record_path(cluster_id)
        if not path.exists():
            return None

        try:
            with np.load(path) as data:
                return Cluster(
                    id=cluster_id,
                    frame_id=int(data["frame_id"]),
                    keypoints=data["keypoints"],
                    descriptors=data["descriptors"],
                    world_points=data["world_points"],
                    hash_descriptors=(
                        data["hash_descriptors"] if bool(data["has_hash"]) else None
                    ),
                )
        except (OSError, ValueError, KeyError, zipfile.BadZipFile) as e:
            logger.warning("[ClusterStore] Unreadable record for cluster %d: %s", cluster_id, e)
            return None

    def _clear(self) -> None:
        if self._directory.is_dir():
            shutil.rmtree(self._directory, ignore_errors=True)

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def is_usable(self) -> bool:
        """False if the working directory could not be prepared."""
        return self._usable
