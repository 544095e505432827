"""SE(3) rigid transforms used for cluster poses and loop edges."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass
class SE3:
    """Rigid transform T_parent_local.

    Vertex poses map points from the cluster frame into the world frame
    (p_world = R @ p_cluster + t). Loop edges are relative transforms
    between two vertices, T_candidate_frame = T_world_candidate^-1 @
    T_world_frame.

    Attributes:
        rotation: 3x3 rotation matrix
        translation: Translation vector (3,)
    """

    rotation: np.ndarray
    translation: np.ndarray

    def __post_init__(self) -> None:
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).reshape(-1)

        if self.rotation.shape != (3, 3) or self.translation.shape != (3,):
            raise ValueError(
                f"Invalid SE3: rotation {self.rotation.shape}, "
                f"translation {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Build from an OpenCV (rvec, tvec) pair.

        Note that cv2.solvePnP yields T_camera_world; the camera pose is
        the inverse.
        """
        rotation, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(rotation=rotation, translation=tvec)

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.reshape(3), self.translation.copy()

    def to_matrix(self) -> np.ndarray:
        """4x4 homogeneous matrix."""
        matrix = np.eye(4)
        matrix[:3, :3] = self.rotation
        matrix[:3, 3] = self.translation
        return matrix

    def inverse(self) -> SE3:
        rotation_t = self.rotation.T
        return SE3(rotation=rotation_t, translation=-(rotation_t @ self.translation))

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Map (N, 3) local points into the parent frame."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return points @ self.rotation.T + self.translation

    def distance_to(self, other: SE3) -> float:
        """Distance between the origins of both frames."""
        return float(np.linalg.norm(other.translation - self.translation))

    def rotation_angle_to(self, other: SE3) -> float:
        """Relative rotation angle in radians."""
        relative = self.rotation.T @ other.rotation
        return float(np.arccos(np.clip(0.5 * (np.trace(relative) - 1.0), -1.0, 1.0)))

    def copy(self) -> SE3:
        return SE3(rotation=self.rotation.copy(), translation=self.translation.copy())

    def __matmul__(self, other: SE3) -> SE3:
        return SE3(
            rotation=self.rotation @ other.rotation,
            translation=self.rotation @ other.translation + self.translation,
        )

    def __repr__(self) -> str:
        x, y, z = self.translation
        return f"SE3(t=[{x:.3f}, {y:.3f}, {z:.3f}])"
