"""Configuration for the loop closing engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path

import yaml


@dataclass
class LoopClosingConfig:
    """Tunable constants of loop closure detection and verification.

    Attributes:
        discard_window: Ids within this distance of a cluster are never
            loop candidates (temporal neighbours)
        neighbors: Number of candidate neighbours aggregated during
            verification
        min_inliers: Minimum matches and PnP inliers for a loop closure
        max_inliers: RANSAC stops early once this many inliers are found
        matching_ratio: Lowe's ratio test threshold
        match_percentage_gate: Candidates at or below this match
            percentage are rejected before neighbour expansion
        min_pair_votes: Inliers needed by a (frame, candidate) cluster pair
            to become a graph edge
        max_hash_candidates: Fingerprint candidates verified per cluster
        proximity_candidates: Graph neighbours verified per cluster
        pnp_iterations: RANSAC iteration cap
        reprojection_error: RANSAC inlier tolerance (pixels)
        num_projections: Random projections of the fingerprint basis
        hash_seed: Seed of the fingerprint basis
        frustum_filter: Drop candidate points outside the current view
        poll_rate_hz: Worker loop rate
        working_directory: Root for cluster records and loop closure images.
            None keeps clusters in memory and disables image output.
        keyframes_directory: Where keyframe images ({frame_id:05d}.jpg) are
            read from for visualization. Defaults to
            working_directory/keyframes.
    """

    discard_window: int = 10
    neighbors: int = 2
    min_inliers: int = 12
    max_inliers: int = 1000
    matching_ratio: float = 0.8
    match_percentage_gate: int = 35
    min_pair_votes: int = 5
    max_hash_candidates: int = 5
    proximity_candidates: int = 3
    pnp_iterations: int = 100
    reprojection_error: float = 5.0
    num_projections: int = 3
    hash_seed: int = 0
    frustum_filter: bool = False
    poll_rate_hz: float = 500.0
    working_directory: str | None = None
    keyframes_directory: str | None = None

    def __post_init__(self) -> None:
        if self.discard_window < 0:
            raise ValueError(f"discard_window must be >= 0, got {self.discard_window}")
        if self.neighbors < 0:
            raise ValueError(f"neighbors must be >= 0, got {self.neighbors}")
        if self.min_inliers < 4:
            raise ValueError(f"min_inliers must be >= 4, got {self.min_inliers}")
        if self.max_inliers < self.min_inliers:
            raise ValueError(
                f"max_inliers ({self.max_inliers}) must be >= "
                f"min_inliers ({self.min_inliers})"
            )
        if not 0.0 < self.matching_ratio <= 1.0:
            raise ValueError(
                f"matching_ratio must be in (0, 1], got {self.matching_ratio}"
            )
        if self.pnp_iterations < 1:
            raise ValueError(f"pnp_iterations must be >= 1, got {self.pnp_iterations}")
        if self.reprojection_error <= 0:
            raise ValueError(
                f"reprojection_error must be > 0, got {self.reprojection_error}"
            )
        if self.num_projections < 1:
            raise ValueError(
                f"num_projections must be >= 1, got {self.num_projections}"
            )
        if self.poll_rate_hz <= 0:
            raise ValueError(f"poll_rate_hz must be > 0, got {self.poll_rate_hz}")

    @property
    def cluster_directory(self) -> Path | None:
        """Directory holding one record per processed cluster."""
        if self.working_directory is None:
            return None
        return Path(self.working_directory) / "haloc"

    @property
    def loop_closures_directory(self) -> Path | None:
        """Directory accumulating loop closure images."""
        if self.working_directory is None:
            return None
        return Path(self.working_directory) / "loop_closures"

    @property
    def keyframes_path(self) -> Path | None:
        if self.keyframes_directory is not None:
            return Path(self.keyframes_directory)
        if self.working_directory is None:
            return None
        return Path(self.working_directory) / "keyframes"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> LoopClosingConfig:
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown loop closing parameters: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> LoopClosingConfig:
        """Load a config from YAML.

        The parameters may sit at the top level or under a
        ``loop_closing`` key. Missing keys keep their defaults.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file holds unknown or invalid parameters
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Invalid config in {yaml_path}: expected a mapping")

        if "loop_closing" in data:
            data = data["loop_closing"] or {}

        return cls.from_dict(data)
