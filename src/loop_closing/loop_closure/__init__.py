"""Loop closure detection and verification.

Key components:
- ClusterQueue: FIFO between the tracking pipeline and the worker
- ClusterStore: Write-once storage of processed clusters
- FingerprintIndex: Random projection hashing of descriptors
- CandidateSearch: Proximity and fingerprint candidate search
- LoopVerifier: Matching, robust PnP and consensus voting
- LoopClosing: Worker loop tying everything together
"""

from .candidate_search import (
    CandidateSearch,
    FingerprintTable,
    HashCandidate,
    LoopClosureHistory,
)
from .cluster_queue import ClusterQueue
from .cluster_store import ClusterStore, DiskClusterStore, MemoryClusterStore
from .fingerprint import FingerprintIndex
from .loop_closing import LoopClosing
from .loop_verifier import LoopEdge, LoopVerifier, VerificationResult, tally_cluster_pairs
from .matching import match_percentage, ratio_match
from .pnp import PnPResult, RobustPnP

__all__ = [
    # Queue / storage
    "ClusterQueue",
    "ClusterStore",
    "MemoryClusterStore",
    "DiskClusterStore",
    # Fingerprints
    "FingerprintIndex",
    "FingerprintTable",
    # Candidate search
    "CandidateSearch",
    "HashCandidate",
    "LoopClosureHistory",
    # Verification
    "LoopVerifier",
    "LoopEdge",
    "VerificationResult",
    "tally_cluster_pairs",
    "ratio_match",
    "match_percentage",
    "RobustPnP",
    "PnPResult",
    # Worker
    "LoopClosing",
]
