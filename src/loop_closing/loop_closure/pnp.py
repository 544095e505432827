"""Robust PnP used to verify loop closure candidates."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from ..geometry import SE3


@dataclass
class PnPResult:
    """Result of robust pose estimation.

    Attributes:
        success: True if a pose with at least 4 inliers was found
        rvec: Rodrigues rotation of T_camera_world
        tvec: Translation of T_camera_world
        inliers: Indices of inlier correspondences
        num_inliers: Number of inliers
        iterations: RANSAC iterations run
    """

    success: bool
    rvec: np.ndarray | None = None
    tvec: np.ndarray | None = None
    inliers: np.ndarray | None = None
    num_inliers: int = 0
    iterations: int = 0

    @property
    def camera_pose(self) -> SE3 | None:
        """Estimated camera pose T_world_camera."""
        if not self.success:
            return None
        return SE3.from_rvec_tvec(self.rvec, self.tvec).inverse()


class RobustPnP:
    """RANSAC over minimal P3P samples followed by iterative refinement.

    The search stops after ``max_iterations`` hypotheses or as soon as a
    hypothesis reaches ``max_inliers`` inliers.
    """

    def __init__(
        self,
        max_iterations: int = 100,
        reprojection_error: float = 5.0,
        max_inliers: int = 1000,
        seed: int = 0,
    ) -> None:
        """Initialize the estimator.

        Args:
            max_iterations: RANSAC iteration cap
            reprojection_error: Inlier threshold in pixels
            max_inliers: Early exit once this many inliers are found
            seed: Seed of the sampler (runs are deterministic)
        """
        self._max_iterations = max_iterations
        self._reprojection_error = reprojection_error
        self._max_inliers = max_inliers
        self._seed = seed

    def estimate(
        self,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
        camera_matrix: np.ndarray,
    ) -> PnPResult:
        """Estimate T_camera_world from 3D-2D correspondences.

        Args:
            points_3d: Nx3 points in the world frame
            points_2d: Nx2 observed pixels
            camera_matrix: 3x3 intrinsic matrix

        Returns:
            PnPResult
        """
        points_3d = np.ascontiguousarray(points_3d, dtype=np.float64).reshape(-1, 3)
        points_2d = np.ascontiguousarray(points_2d, dtype=np.float64).reshape(-1, 2)
        camera_matrix = np.asarray(camera_matrix, dtype=np.float64)
        n_points = len(points_3d)

        if n_points < 4:
            return PnPResult(success=False)

        rng = np.random.default_rng(self._seed)
        best_inliers = np.zeros(0, dtype=np.int64)
        best_rvec = best_tvec = None

        iterations = 0
        while iterations < self._max_iterations:
            iterations += 1
            sample = rng.choice(n_points, size=4, replace=False)
            try:
                ok, rvec, tvec = cv2.solvePnP(
                    points_3d[sample],
                    points_2d[sample],
                    camera_matrix,
                    None,
                    flags=cv2.SOLVEPNP_AP3P,
                )
            except cv2.error:
                continue
            if not ok or not np.isfinite(rvec).all() or not np.isfinite(tvec).all():
                continue

            inliers = self._find_inliers(points_3d, points_2d, rvec, tvec, camera_matrix)
            if len(inliers) > len(best_inliers):
                best_inliers, best_rvec, best_tvec = inliers, rvec, tvec
                if len(best_inliers) >= self._max_inliers:
                    break

        if len(best_inliers) < 4:
            return PnPResult(
                success=False,
                num_inliers=len(best_inliers),
                iterations=iterations,
            )

        rvec, tvec, inliers = self._refine(
            points_3d, points_2d, camera_matrix, best_rvec, best_tvec, best_inliers
        )

        return PnPResult(
            success=True,
            rvec=rvec.reshape(3),
            tvec=tvec.reshape(3),
            inliers=inliers,
            num_inliers=len(inliers),
            iterations=iterations,
        )

    def _refine(
        self,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
        camera_matrix: np.ndarray,
        rvec: np.ndarray,
        tvec: np.ndarray,
        inliers: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Iterative PnP on the inlier set; kept only if it doesn't lose inliers."""
        try:
            ok, rvec_refined, tvec_refined = cv2.solvePnP(
                points_3d[inliers],
                points_2d[inliers],
                camera_matrix,
                None,
                rvec=rvec.copy(),
                tvec=tvec.copy(),
                useExtrinsicGuess=True,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        except cv2.error:
            return rvec, tvec, inliers

        if not ok or not np.isfinite(rvec_refined).all() or not np.isfinite(tvec_refined).all():
            return rvec, tvec, inliers

        refined_inliers = self._find_inliers(
            points_3d, points_2d, rvec_refined, tvec_refined, camera_matrix
        )
        if len(refined_inliers) < len(inliers):
            return rvec, tvec, inliers
        return rvec_refined, tvec_refined, refined_inliers

    def _find_inliers(
        self,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
        rvec: np.ndarray,
        tvec: np.ndarray,
        camera_matrix: np.ndarray,
    ) -> np.ndarray:
        """Indices of points in front of the camera within the pixel tolerance."""
        R, _ = cv2.Rodrigues(rvec)
        points_camera = points_3d @ R.T + tvec.reshape(1, 3)
        depth = points_camera[:, 2]
        in_front = depth > 1e-9

        projected = np.full_like(points_2d, np.inf)
        projected[in_front] = (
            points_camera[in_front, :2] / depth[in_front, None]
        ) @ camera_matrix[:2, :2].T + camera_matrix[:2, 2]

        errors = np.linalg.norm(projected - points_2d, axis=1)
        return np.flatnonzero(errors < self._reprojection_error)
