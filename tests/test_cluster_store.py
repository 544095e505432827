"""Tests for the cluster stores."""

from pathlib import Path

import numpy as np
import pytest

from loop_closing import Cluster, DiskClusterStore, MemoryClusterStore


@pytest.fixture(params=["memory", "disk"])
def store(request, tmp_path: Path):
    """Both store backends."""
    if request.param == "memory":
        return MemoryClusterStore()
    return DiskClusterStore(tmp_path / "haloc")


class TestClusterStore:
    """Contract shared by every backend."""

    def test_round_trip(self, store, make_random_cluster):
        """A stored cluster reads back with the same features."""
        cluster = make_random_cluster(7, frame_id=3, n=40)

        assert store.put(cluster)
        loaded = store.get(7)

        assert loaded.id == 7
        assert loaded.frame_id == 3
        assert len(loaded.keypoints) == 40
        assert len(loaded.descriptors) == 40
        assert len(loaded.world_points) == 40
        np.testing.assert_array_equal(loaded.descriptors, cluster.descriptors)
        np.testing.assert_allclose(loaded.world_points, cluster.world_points)
        assert loaded.descriptors.dtype == np.uint8

    def test_unknown_id_returns_sentinel(self, store):
        """Unknown ids are an expected outcome, not an error."""
        loaded = store.get(123)

        assert loaded.is_empty
        assert loaded.id == 123
        assert loaded.num_features == 0

    def test_write_once(self, store, make_random_cluster):
        """A second put for the same id is ignored."""
        first = make_random_cluster(1, n=10)
        second = make_random_cluster(1, n=20)

        assert store.put(first)
        assert not store.put(second)
        assert store.get(1).num_features == 10
        assert len(store) == 1

    def test_hash_descriptors_persisted(self, store, make_random_cluster):
        """Separate fingerprint descriptors survive storage."""
        cluster = make_random_cluster(2, n=10)
        cluster.hash_descriptors = np.ones((10, 128), dtype=np.float32)

        store.put(cluster)

        np.testing.assert_array_equal(
            store.get(2).fingerprint_descriptors, cluster.hash_descriptors
        )

    def test_purge(self, store, make_random_cluster):
        """Purge forgets every cluster."""
        store.put(make_random_cluster(1, n=5))
        store.put(make_random_cluster(2, n=5))

        store.purge()

        assert len(store) == 0
        assert 1 not in store
        assert store.get(1).is_empty


class TestDiskClusterStore:
    """Disk specific behaviour."""

    def test_directory_is_cleared_on_start(self, tmp_path: Path):
        """Records from a previous run are removed."""
        directory = tmp_path / "haloc"
        directory.mkdir()
        (directory / "old.npz").write_bytes(b"stale")

        DiskClusterStore(directory)

        assert directory.is_dir()
        assert not (directory / "old.npz").exists()

    def test_one_record_per_cluster(self, tmp_path: Path, make_random_cluster):
        """Each cluster is a separate file named after its id."""
        store = DiskClusterStore(tmp_path / "haloc")
        store.put(make_random_cluster(4, n=5))
        store.put(make_random_cluster(5, n=5))

        assert sorted(p.name for p in store.directory.iterdir()) == ["4.npz", "5.npz"]

    def test_unreadable_record_returns_sentinel(self, tmp_path: Path, make_random_cluster):
        """A corrupted record reads as the empty cluster."""
        store = DiskClusterStore(tmp_path / "haloc")
        store.put(make_random_cluster(4, n=5))
        (store.directory / "4.npz").write_bytes(b"not a zip file")

        assert store.get(4).is_empty

    def test_unusable_directory_refuses_writes(self, tmp_path: Path, make_random_cluster):
        """A directory that can't be created degrades the store without raising."""
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")

        store = DiskClusterStore(blocker / "haloc")

        assert not store.is_usable
        assert not store.put(make_random_cluster(1, n=5))
        assert store.get(1).is_empty

    def test_purge_removes_directory(self, tmp_path: Path, make_random_cluster):
        """Shutdown purge deletes the working directory."""
        store = DiskClusterStore(tmp_path / "haloc")
        store.put(make_random_cluster(1, n=5))

        store.purge()

        assert not (tmp_path / "haloc").exists()


class TestCluster:
    """Cluster validation."""

    def test_mismatched_lengths_raise(self):
        """Keypoints, descriptors and points must be index aligned."""
        with pytest.raises(ValueError, match="same length"):
            Cluster(
                id=1,
                frame_id=1,
                keypoints=np.zeros((3, 2)),
                descriptors=np.zeros((4, 32), dtype=np.uint8),
                world_points=np.zeros((3, 3)),
            )

    def test_empty_sentinel(self):
        """The sentinel has zero rows."""
        cluster = Cluster.empty(9)

        assert cluster.is_empty
        assert cluster.descriptors.shape[0] == 0
