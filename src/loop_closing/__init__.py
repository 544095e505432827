"""Loop closure detection for incremental visual mapping."""

__version__ = "0.1.0"

from .cluster import Cluster
from .config import LoopClosingConfig
from .geometry import SE3, PinholeCamera
from .graph import PoseEdge, PoseGraph, PoseGraphInterface
from .loop_closure import (
    CandidateSearch,
    ClusterQueue,
    ClusterStore,
    DiskClusterStore,
    FingerprintIndex,
    FingerprintTable,
    LoopClosing,
    LoopClosureHistory,
    LoopVerifier,
    MemoryClusterStore,
    VerificationResult,
)
from .visualization import LoopImageBuilder, RerunTelemetry

__all__ = [
    "__version__",
    # Data
    "Cluster",
    "LoopClosingConfig",
    # Geometry
    "SE3",
    "PinholeCamera",
    # Pose graph
    "PoseGraphInterface",
    "PoseGraph",
    "PoseEdge",
    # Loop closure
    "ClusterQueue",
    "ClusterStore",
    "MemoryClusterStore",
    "DiskClusterStore",
    "FingerprintIndex",
    "FingerprintTable",
    "LoopClosureHistory",
    "CandidateSearch",
    "LoopVerifier",
    "VerificationResult",
    "LoopClosing",
    # Visualization
    "LoopImageBuilder",
    "RerunTelemetry",
]
