"""In-memory pose graph implementing PoseGraphInterface.

Each vertex is a cluster: its pose is the camera pose of its keyframe
composed with the cluster pose relative to that camera. Consecutive
vertices are linked by odometry edges; the loop closing engine adds
weighted loop edges. ``optimize()`` distributes the loop error over the
trajectory with a sparse least-squares problem over SE(3) poses.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

import cv2
import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from ..geometry import SE3, PinholeCamera


@dataclass
class PoseEdge:
    """An edge in the pose graph.

    Attributes:
        from_id: Source vertex id
        to_id: Target vertex id
        measurement: Measured relative transform T_from_to
        information: 6x6 information matrix
        is_loop: Whether this is a loop closure edge
        weight: Number of inliers supporting a loop edge
    """

    from_id: int
    to_id: int
    measurement: SE3
    information: np.ndarray = field(
        default_factory=lambda: np.eye(6, dtype=np.float64)
    )
    is_loop: bool = False
    weight: int = 1


@dataclass
class _Vertex:
    frame_id: int
    camera_pose: SE3  # T_world_camera
    pose_to_camera: SE3  # T_camera_cluster

    @property
    def pose(self) -> SE3:
        return self.camera_pose @ self.pose_to_camera


class PoseGraph:
    """Pose graph of cluster vertices with odometry and loop edges."""

    def __init__(self, camera: PinholeCamera) -> None:
        """Initialize an empty pose graph.

        Args:
            camera: Camera model of the rectified left image
        """
        self._camera = camera
        self._vertices: dict[int, _Vertex] = {}
        self._odometry_edges: list[PoseEdge] = []
        self._loop_edges: list[PoseEdge] = []
        self._last_vertex_id: int | None = None
        self._pending_update = False
        self._num_updates = 0

        self.lock = threading.RLock()

    def add_vertex(
        self,
        vertex_id: int,
        frame_id: int,
        camera_pose: SE3,
        pose_relative_to_camera: SE3 | None = None,
    ) -> None:
        """Insert a cluster vertex and its odometry edge to the previous one.

        Args:
            vertex_id: Cluster id
            frame_id: Keyframe id of the cluster
            camera_pose: Camera pose T_world_camera of the keyframe
            pose_relative_to_camera: Cluster pose in the camera frame
                (identity if None)
        """
        if pose_relative_to_camera is None:
            pose_relative_to_camera = SE3.identity()

        with self.lock:
            vertex = _Vertex(
                frame_id=frame_id,
                camera_pose=camera_pose.copy(),
                pose_to_camera=pose_relative_to_camera.copy(),
            )
            self._vertices[vertex_id] = vertex

            if self._last_vertex_id is not None:
                previous = self._vertices[self._last_vertex_id]
                self._odometry_edges.append(
                    PoseEdge(
                        from_id=self._last_vertex_id,
                        to_id=vertex_id,
                        measurement=previous.pose.inverse() @ vertex.pose,
                    )
                )
            self._last_vertex_id = vertex_id

    def find_closest_vertices(
        self,
        anchor_id: int,
        reference_id: int,
        discard_window: int,
        k: int,
    ) -> list[int]:
        with self.lock:
            anchor = self._vertices.get(anchor_id)
            if anchor is None or k <= 0:
                return []

            anchor_pose = anchor.pose
            distances = []
            for vertex_id, vertex in self._vertices.items():
                if vertex_id == anchor_id:
                    continue
                if abs(vertex_id - reference_id) <= discard_window:
                    continue
                distances.append((anchor_pose.distance_to(vertex.pose), vertex_id))

        distances.sort()
        return [vertex_id for _, vertex_id in distances[:k]]

    def get_frame_vertices(self, frame_id: int) -> list[int]:
        with self.lock:
            return sorted(
                vertex_id
                for vertex_id, vertex in self._vertices.items()
                if vertex.frame_id == frame_id
            )

    def get_vertex_pose(self, vertex_id: int) -> SE3 | None:
        with self.lock:
            vertex = self._vertices.get(vertex_id)
            return None if vertex is None else vertex.pose

    def get_vertex_pose_relative_to_camera(self, vertex_id: int) -> SE3 | None:
        with self.lock:
            vertex = self._vertices.get(vertex_id)
            return None if vertex is None else vertex.pose_to_camera.copy()

    def get_vertex_camera_pose(self, vertex_id: int) -> SE3 | None:
        with self.lock:
            vertex = self._vertices.get(vertex_id)
            return None if vertex is None else vertex.camera_pose.copy()

    def get_vertex_frame_id(self, vertex_id: int) -> int | None:
        with self.lock:
            vertex = self._vertices.get(vertex_id)
            return None if vertex is None else vertex.frame_id

    def get_camera_model(self) -> PinholeCamera:
        return self._camera

    def get_camera_matrix(self) -> np.ndarray:
        return self._camera.to_matrix()

    def get_frame_num(self) -> int:
        with self.lock:
            return len({vertex.frame_id for vertex in self._vertices.values()})

    def add_edge(self, from_id: int, to_id: int, transform: SE3, weight: int) -> None:
        """Add a loop closure edge weighted by its inlier votes."""
        with self.lock:
            if from_id not in self._vertices or to_id not in self._vertices:
                raise KeyError(f"Unknown vertex in edge {from_id} -> {to_id}")
            self._loop_edges.append(
                PoseEdge(
                    from_id=from_id,
                    to_id=to_id,
                    measurement=transform.copy(),
                    information=float(weight) * np.eye(6, dtype=np.float64),
                    is_loop=True,
                    weight=int(weight),
                )
            )

    def update(self) -> None:
        with self.lock:
            self._pending_update = True
            self._num_updates += 1

    def optimize(self, max_iterations: int = 50) -> bool:
        """Optimize all vertex poses, keeping the first vertex fixed.

        Only the camera poses are corrected; cluster poses relative to
        their camera are rigid.

        Returns:
            True if an optimisation pass was run
        """
        with self.lock:
            if not self._pending_update:
                return False
            self._pending_update = False

            vertex_ids = sorted(self._vertices)
            edges = self._odometry_edges + self._loop_edges
            if len(vertex_ids) < 2 or not edges:
                return False

            poses = self._solve(vertex_ids, edges, max_iterations)

            for vertex_id, pose in poses.items():
                vertex = self._vertices[vertex_id]
                vertex.camera_pose = pose @ vertex.pose_to_camera.inverse()
            return True

    def _solve(
        self,
        vertex_ids: list[int],
        edges: list[PoseEdge],
        max_iterations: int,
    ) -> dict[int, SE3]:
        id_to_idx = {vid: i for i, vid in enumerate(vertex_ids)}
        fixed_id = vertex_ids[0]
        fixed_pose = self._vertices[fixed_id].pose

        params = []
        for vid in vertex_ids[1:]:
            rvec, tvec = self._vertices[vid].pose.to_rvec_tvec()
            params.extend(rvec)
            params.extend(tvec)
        params = np.array(params, dtype=np.float64)

        # Each edge touches at most two free poses
        jac_sparsity = lil_matrix((len(edges) * 6, len(params)), dtype=np.int8)
        for e_idx, edge in enumerate(edges):
            for vid in (edge.from_id, edge.to_id):
                idx = id_to_idx[vid]
                if idx == 0:
                    continue
                start = (idx - 1) * 6
                jac_sparsity[e_idx * 6 : e_idx * 6 + 6, start : start + 6] = 1

        sqrt_infos = [np.sqrt(np.diag(edge.information)) for edge in edges]

        def unpack(x: np.ndarray) -> dict[int, SE3]:
            poses = {fixed_id: fixed_pose}
            for i, vid in enumerate(vertex_ids[1:]):
                offset = i * 6
                poses[vid] = SE3.from_rvec_tvec(x[offset : offset + 3], x[offset + 3 : offset + 6])
            return poses

        def residuals(x: np.ndarray) -> np.ndarray:
            poses = unpack(x)
            out = np.empty(len(edges) * 6, dtype=np.float64)
            for e_idx, edge in enumerate(edges):
                predicted = poses[edge.from_id].inverse() @ poses[edge.to_id]
                error = self._se3_log(predicted.inverse() @ edge.measurement)
                out[e_idx * 6 : e_idx * 6 + 6] = error * sqrt_infos[e_idx]
            return out

        result = least_squares(
            residuals,
            params,
            method="trf",
            jac_sparsity=jac_sparsity.tocsr(),
            ftol=1e-6,
            max_nfev=max_iterations * max(len(params), 1),
        )
        return unpack(result.x)

    @staticmethod
    def _se3_log(pose: SE3) -> np.ndarray:
        """6D error vector [rotation (axis-angle), translation]."""
        rvec, _ = cv2.Rodrigues(pose.rotation)
        return np.concatenate([rvec.flatten(), pose.translation])

    @property
    def num_vertices(self) -> int:
        return len(self._vertices)

    @property
    def num_loop_edges(self) -> int:
        return len(self._loop_edges)

    @property
    def loop_edges(self) -> list[PoseEdge]:
        with self.lock:
            return list(self._loop_edges)

    @property
    def num_updates(self) -> int:
        """How many times update() was called."""
        return self._num_updates
