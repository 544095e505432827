"""Cluster: the unit of data exchanged with the tracking pipeline.

A cluster is a group of features of one keyframe. Several clusters may
share the same keyframe (frame id); each one is a separate pose graph
vertex.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .geometry import SE3


@dataclass
class Cluster:
    """Features of a keyframe cluster.

    Attributes:
        id: Unique, increasing cluster id (pose graph vertex id)
        frame_id: Owning keyframe id
        camera_pose: Camera pose T_world_camera at creation time
        keypoints: 2D image coordinates (N, 2)
        descriptors: Feature descriptors (N, D), row-aligned with keypoints
        world_points: 3D points in the world frame (N, 3)
        hash_descriptors: Descriptors used for fingerprinting (M, D').
            Defaults to ``descriptors``.
    """

    id: int
    frame_id: int
    camera_pose: SE3 | None = None
    keypoints: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 2), dtype=np.float32)
    )
    descriptors: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 32), dtype=np.uint8)
    )
    world_points: np.ndarray = field(
        default_factory=lambda: np.zeros((0, 3), dtype=np.float32)
    )
    hash_descriptors: np.ndarray | None = None

    def __post_init__(self) -> None:
        self.keypoints = np.asarray(self.keypoints, dtype=np.float32).reshape(-1, 2)
        self.world_points = np.asarray(self.world_points, dtype=np.float32).reshape(
            -1, 3
        )
        self.descriptors = np.asarray(self.descriptors)
        if self.descriptors.ndim != 2:
            raise ValueError(
                f"Descriptors must be 2D (N, D), got shape {self.descriptors.shape}"
            )

        n = len(self.descriptors)
        if len(self.keypoints) != n or len(self.world_points) != n:
            raise ValueError(
                f"Cluster {self.id}: keypoints ({len(self.keypoints)}), descriptors "
                f"({n}) and world points ({len(self.world_points)}) must have "
                "the same length"
            )

        if self.hash_descriptors is not None:
            self.hash_descriptors = np.asarray(self.hash_descriptors)

    @classmethod
    def empty(cls, cluster_id: int, frame_id: int = -1) -> Cluster:
        """Sentinel for a missing or unreadable cluster (zero rows)."""
        return cls(id=cluster_id, frame_id=frame_id)

    @property
    def is_empty(self) -> bool:
        return len(self.descriptors) == 0

    @property
    def num_features(self) -> int:
        return len(self.descriptors)

    @property
    def fingerprint_descriptors(self) -> np.ndarray:
        """Descriptors fed to the fingerprint index."""
        if self.hash_descriptors is not None:
            return self.hash_descriptors
        return self.descriptors
