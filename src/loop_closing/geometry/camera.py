"""Pinhole camera model used for PnP and frustum checks."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import yaml


@dataclass
class PinholeCamera:
    """Rectified pinhole camera (no distortion).

    Attributes:
        fx: Focal length x (pixels)
        fy: Focal length y (pixels)
        cx: Principal point x (pixels)
        cy: Principal point y (pixels)
        width: Full image width (pixels)
        height: Full image height (pixels)
    """

    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def project(self, points_camera: np.ndarray) -> np.ndarray:
        """Project Nx3 camera-frame points to Nx2 pixels.

        Points behind the camera project to NaN.
        """
        points_camera = np.asarray(points_camera, dtype=np.float64).reshape(-1, 3)
        z = points_camera[:, 2]
        pixels = np.full((len(points_camera), 2), np.nan, dtype=np.float64)
        in_front = z > 1e-9
        pixels[in_front, 0] = (
            self.fx * points_camera[in_front, 0] / z[in_front] + self.cx
        )
        pixels[in_front, 1] = (
            self.fy * points_camera[in_front, 1] / z[in_front] + self.cy
        )
        return pixels

    def in_image(self, pixels: np.ndarray) -> np.ndarray:
        """Boolean mask of pixels inside the full resolution (borders included)."""
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        with np.errstate(invalid="ignore"):
            return (
                (pixels[:, 0] >= 0)
                & (pixels[:, 0] <= self.width)
                & (pixels[:, 1] >= 0)
                & (pixels[:, 1] <= self.height)
            )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> PinholeCamera:
        """Load a EuRoC-style sensor.yaml (intrinsics: [fu, fv, cu, cv]).

        Raises:
            FileNotFoundError: If the calibration file doesn't exist
            ValueError: If intrinsics or resolution are missing/invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        intrinsics = data.get("intrinsics")
        if not intrinsics or len(intrinsics) != 4:
            raise ValueError(f"Invalid intrinsics in {yaml_path}")

        resolution = data.get("resolution")
        if not resolution or len(resolution) != 2:
            raise ValueError(f"Invalid resolution in {yaml_path}")

        fx, fy, cx, cy = (float(v) for v in intrinsics)
        return cls(
            fx=fx, fy=fy, cx=cx, cy=cy, width=int(resolution[0]), height=int(resolution[1])
        )
