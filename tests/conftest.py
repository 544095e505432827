"""Shared fixtures: a synthetic scene seen from two camera poses."""

from typing import Callable

import numpy as np
import pytest

from loop_closing import SE3, Cluster, PinholeCamera, PoseGraph


def rotation_y(degrees: float) -> np.ndarray:
    """Rotation about the camera Y axis."""
    a = np.deg2rad(degrees)
    return np.array(
        [[np.cos(a), 0.0, np.sin(a)], [0.0, 1.0, 0.0], [-np.sin(a), 0.0, np.cos(a)]]
    )


@pytest.fixture
def camera() -> PinholeCamera:
    """640x480 pinhole camera."""
    return PinholeCamera(fx=400.0, fy=400.0, cx=320.0, cy=240.0, width=640, height=480)


@pytest.fixture
def candidate_pose() -> SE3:
    """Camera pose of the revisited keyframe."""
    return SE3.identity()


@pytest.fixture
def current_pose() -> SE3:
    """True camera pose of the current keyframe (close to the candidate)."""
    return SE3(rotation=rotation_y(5.0), translation=np.array([0.3, -0.1, 0.2]))


@pytest.fixture
def random_descriptors() -> Callable[[int], np.ndarray]:
    """Factory of random 256-bit binary descriptors."""
    rng = np.random.default_rng(7)

    def _make(n: int) -> np.ndarray:
        return rng.integers(0, 256, size=(n, 32), dtype=np.uint8)

    return _make


@pytest.fixture
def world_points() -> Callable[[int], np.ndarray]:
    """Factory of 3D points in front of the identity camera."""
    rng = np.random.default_rng(3)

    def _make(n: int) -> np.ndarray:
        return np.column_stack(
            [rng.uniform(-2.0, 2.0, n), rng.uniform(-1.5, 1.5, n), rng.uniform(4.0, 8.0, n)]
        )

    return _make


@pytest.fixture
def project(camera: PinholeCamera) -> Callable[[SE3, np.ndarray], np.ndarray]:
    """Project world points into a camera at the given pose."""

    def _project(pose: SE3, points: np.ndarray) -> np.ndarray:
        return camera.project(pose.inverse().transform_points(points))

    return _project


@pytest.fixture
def make_random_cluster(
    random_descriptors, world_points, project
) -> Callable[..., Cluster]:
    """Factory of clusters with unrelated features."""

    def _make(cluster_id: int, frame_id: int | None = None, n: int = 100) -> Cluster:
        points = world_points(n)
        return Cluster(
            id=cluster_id,
            frame_id=cluster_id if frame_id is None else frame_id,
            camera_pose=SE3.identity(),
            keypoints=project(SE3.identity(), points),
            descriptors=random_descriptors(n),
            world_points=points,
        )

    return _make


@pytest.fixture
def make_loop_pair(
    random_descriptors, world_points, project, candidate_pose, current_pose
) -> Callable[..., tuple[Cluster, Cluster]]:
    """Factory of (current, candidate) clusters sharing ``n_shared`` features.

    Shared features have identical descriptors and world points; each
    cluster observes them from its own camera pose.
    """

    def _make(
        n_shared: int,
        n_total: int = 100,
        current_id: int = 60,
        candidate_id: int = 10,
    ) -> tuple[Cluster, Cluster]:
        shared_desc = random_descriptors(n_shared)
        shared_points = world_points(n_shared)
        n_own = n_total - n_shared

        candidate_points = np.vstack([shared_points, world_points(n_own)])
        candidate = Cluster(
            id=candidate_id,
            frame_id=candidate_id,
            camera_pose=candidate_pose,
            keypoints=project(candidate_pose, candidate_points),
            descriptors=np.vstack([shared_desc, random_descriptors(n_own)]),
            world_points=candidate_points,
        )

        current_points = np.vstack([shared_points, world_points(n_own)])
        current = Cluster(
            id=current_id,
            frame_id=current_id,
            camera_pose=current_pose,
            keypoints=project(current_pose, current_points),
            descriptors=np.vstack([shared_desc, random_descriptors(n_own)]),
            world_points=current_points,
        )
        return current, candidate

    return _make


@pytest.fixture
def loop_graph(camera, candidate_pose, current_pose) -> PoseGraph:
    """Pose graph with the candidate (10) and a drifted current vertex (60)."""
    graph = PoseGraph(camera)
    graph.add_vertex(10, 10, candidate_pose)
    drifted = SE3(
        rotation=current_pose.rotation,
        translation=current_pose.translation + np.array([0.5, 0.0, 0.0]),
    )
    graph.add_vertex(60, 60, drifted)
    return graph
