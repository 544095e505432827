"""Geometric verification of loop closure candidates.

A candidate cluster becomes one or more pose graph edges only after:

1. Gate: enough direct descriptor matches between the current cluster and
   the candidate (match percentage above the gate)
2. Expansion: the candidate is grown with its graph neighbours and the
   current cluster with the other clusters of its keyframe
3. Full match: enough matches between both aggregated feature sets
4. Robust PnP: enough inliers projecting candidate-side 3D points onto
   the current keyframe
5. Consensus: inliers are grouped by (frame cluster, candidate cluster);
   every pair with enough votes yields an edge

Each stage can reject the candidate; only stage 5 mutates the pose graph
and the loop closure history.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from ..cluster import Cluster
from ..config import LoopClosingConfig
from ..geometry import SE3
from .candidate_search import LoopClosureHistory
from .cluster_store import ClusterStore
from .matching import match_percentage, ratio_match
from .pnp import RobustPnP

if TYPE_CHECKING:
    from ..graph import PoseGraphInterface
    from ..visualization import LoopImageBuilder

logger = logging.getLogger(__name__)


@dataclass
class LoopEdge:
    """A loop constraint inserted into the pose graph.

    Attributes:
        frame_cluster_id: Cluster of the current keyframe
        candidate_cluster_id: Revisited cluster
        transform: Relative transform T_candidate_frame
        votes: Inliers supporting this pair
    """

    frame_cluster_id: int
    candidate_cluster_id: int
    transform: SE3
    votes: int


@dataclass
class VerificationResult:
    """Outcome of verifying one (current, candidate) pair.

    Attributes:
        is_valid: True iff at least one edge was inserted
        stage: Last stage reached ("gate", "matches", "inliers",
            "consensus" or "accepted")
        match_percentage: Stage 1 match percentage
        num_matches: Matches between the aggregated feature sets
        num_inliers: PnP inliers
        pair_votes: Inlier votes per (frame cluster, candidate cluster)
        edges: Inserted edges
        estimated_pose: Camera pose T_world_camera estimated by PnP
        image: Loop closure visualization (BGR), if rendered
    """

    is_valid: bool
    stage: str
    match_percentage: int = 0
    num_matches: int = 0
    num_inliers: int = 0
    pair_votes: dict[tuple[int, int], int] = field(default_factory=dict)
    edges: list[LoopEdge] = field(default_factory=list)
    estimated_pose: SE3 | None = None
    image: np.ndarray | None = None


@dataclass
class _FeatureSet:
    """Features of several clusters stacked together, each tagged with its owner."""

    descriptors: np.ndarray
    keypoints: np.ndarray
    points: np.ndarray
    owners: np.ndarray
    frame_ids: dict[int, int]

    @classmethod
    def from_clusters(cls, clusters: list[Cluster]) -> _FeatureSet:
        return cls(
            descriptors=np.vstack([c.descriptors for c in clusters]),
            keypoints=np.vstack([c.keypoints for c in clusters]),
            points=np.vstack([c.world_points for c in clusters]),
            owners=np.concatenate(
                [np.full(c.num_features, c.id, dtype=np.int64) for c in clusters]
            ),
            frame_ids={c.id: c.frame_id for c in clusters},
        )


def tally_cluster_pairs(
    frame_owners: np.ndarray,
    candidate_owners: np.ndarray,
    inliers: np.ndarray,
) -> dict[tuple[int, int], int]:
    """Count inlier votes per (frame cluster, candidate cluster) pair.

    Args:
        frame_owners: Owning frame-side cluster of every correspondence
        candidate_owners: Owning candidate-side cluster of every correspondence
        inliers: Indices of inlier correspondences

    Returns:
        Votes per pair, in order of first appearance
    """
    votes: dict[tuple[int, int], int] = {}
    for idx in inliers:
        pair = (int(frame_owners[idx]), int(candidate_owners[idx]))
        votes[pair] = votes.get(pair, 0) + 1
    return votes


class LoopVerifier:
    """Turns candidate clusters into verified pose graph edges."""

    def __init__(
        self,
        graph: PoseGraphInterface,
        store: ClusterStore,
        history: LoopClosureHistory,
        config: LoopClosingConfig | None = None,
        image_builder: LoopImageBuilder | None = None,
    ) -> None:
        """Initialize the verifier.

        Args:
            graph: Pose graph collaborator (queried and mutated)
            store: Stored clusters, read by id
            history: Loop closures found so far (appended on success)
            config: Thresholds; defaults if None
            image_builder: Renders loop closure images on success
        """
        self._graph = graph
        self._store = store
        self._history = history
        self._config = config if config is not None else LoopClosingConfig()
        self._image_builder = image_builder
        self._pnp = RobustPnP(
            max_iterations=self._config.pnp_iterations,
            reprojection_error=self._config.reprojection_error,
            max_inliers=self._config.max_inliers,
        )

    def read_cluster(self, cluster_id: int) -> Cluster:
        """Stored cluster with its current camera pose from the graph.

        Returns the empty sentinel if the cluster isn't stored.
        """
        cluster = self._store.get(cluster_id)
        if cluster.is_empty:
            return cluster
        return dataclasses.replace(
            cluster, camera_pose=self._graph.get_vertex_camera_pose(cluster_id)
        )

    def close_loop_with_cluster(self, current: Cluster, candidate: Cluster) -> bool:
        """Verify a candidate and insert the resulting edges.

        Returns:
            True iff at least one edge was added to the pose graph
        """
        return self.verify(current, candidate).is_valid

    def verify(self, current: Cluster, candidate: Cluster) -> VerificationResult:
        """Run all verification stages on a (current, candidate) pair."""
        cfg = self._config

        # Stage 1: cheap gate on direct matches
        direct_matches = ratio_match(
            current.descriptors, candidate.descriptors, cfg.matching_ratio
        )
        percentage = match_percentage(
            len(direct_matches), current.num_features, candidate.num_features
        )
        if percentage <= cfg.match_percentage_gate:
            logger.debug(
                "[LoopClosing] %d <-> %d rejected: %d%% matches",
                current.id,
                candidate.id,
                percentage,
            )
            return VerificationResult(
                is_valid=False, stage="gate", match_percentage=percentage
            )

        # Stage 2: neighbourhood expansion
        candidate_side = self._expand_candidate(current, candidate)
        frame_side = self._expand_frame(current)

        # Stage 3: full match
        matches = ratio_match(
            frame_side.descriptors, candidate_side.descriptors, cfg.matching_ratio
        )
        if len(matches) < cfg.min_inliers:
            logger.debug(
                "[LoopClosing] %d <-> %d rejected: %d matches",
                current.id,
                candidate.id,
                len(matches),
            )
            return VerificationResult(
                is_valid=False,
                stage="matches",
                match_percentage=percentage,
                num_matches=len(matches),
            )

        query_idx = np.array([m.queryIdx for m in matches], dtype=np.int64)
        train_idx = np.array([m.trainIdx for m in matches], dtype=np.int64)
        matched_kp = frame_side.keypoints[query_idx]
        matched_points = candidate_side.points[train_idx]
        matched_candidate_kp = candidate_side.keypoints[train_idx]
        frame_owners = frame_side.owners[query_idx]
        candidate_owners = candidate_side.owners[train_idx]

        # Stage 4: robust pose recovery
        pnp = self._pnp.estimate(
            matched_points, matched_kp, self._graph.get_camera_matrix()
        )
        logger.debug(
            "[LoopClosing] Matches/inliers: %d / %d", len(matches), pnp.num_inliers
        )
        if not pnp.success or pnp.num_inliers < cfg.min_inliers:
            return VerificationResult(
                is_valid=False,
                stage="inliers",
                match_percentage=percentage,
                num_matches=len(matches),
                num_inliers=pnp.num_inliers,
            )

        estimated_pose = pnp.camera_pose

        # Stage 5: consensus
        pair_votes = tally_cluster_pairs(frame_owners, candidate_owners, pnp.inliers)
        edges = self.insert_edges(pair_votes, estimated_pose)

        result = VerificationResult(
            is_valid=bool(edges),
            stage="accepted" if edges else "consensus",
            match_percentage=percentage,
            num_matches=len(matches),
            num_inliers=pnp.num_inliers,
            pair_votes=pair_votes,
            edges=edges,
            estimated_pose=estimated_pose,
        )
        if not edges:
            return result

        logger.info(
            "[LoopClosing] LOOP: %d <-> %d Matches: %d. Inliers: %d",
            current.frame_id,
            candidate.frame_id,
            len(matches),
            pnp.num_inliers,
        )
        for (frame_cluster, candidate_cluster), votes in pair_votes.items():
            logger.info(
                "[LoopClosing]   %d (frame: %s) <-> %d (frame: %s) Inliers: %d",
                frame_cluster,
                frame_side.frame_ids.get(frame_cluster),
                candidate_cluster,
                candidate_side.frame_ids.get(candidate_cluster),
                votes,
            )

        if self._image_builder is not None:
            accepted = [(e.frame_cluster_id, e.candidate_cluster_id) for e in edges]
            inlier_pairs = list(
                zip(frame_owners[pnp.inliers].tolist(), candidate_owners[pnp.inliers].tolist())
            )
            result.image = self._image_builder.render(
                current_frame_id=current.frame_id,
                current_keypoints=matched_kp[pnp.inliers],
                candidate_keypoints=matched_candidate_kp[pnp.inliers],
                inlier_pairs=inlier_pairs,
                accepted_pairs=accepted,
                candidate_frame_ids=candidate_side.frame_ids,
            )

        return result

    def insert_edges(
        self,
        pair_votes: dict[tuple[int, int], int],
        estimated_pose: SE3,
    ) -> list[LoopEdge]:
        """Insert an edge for every pair with enough votes.

        The edge transform is
        candidate_pose^-1 * estimated_pose * frame_cluster_pose_relative_to_camera.
        ``update()`` is called once if any edge was inserted. Insertion
        happens under the graph lock.

        Args:
            pair_votes: Votes per (frame cluster, candidate cluster)
            estimated_pose: Current camera pose T_world_camera from PnP

        Returns:
            The inserted edges
        """
        edges: list[LoopEdge] = []

        with self._graph.lock:
            for (frame_cluster, candidate_cluster), votes in pair_votes.items():
                if votes < self._config.min_pair_votes:
                    continue
                if abs(frame_cluster - candidate_cluster) <= self._config.discard_window:
                    continue

                candidate_pose = self._graph.get_vertex_pose(candidate_cluster)
                frame_to_camera = self._graph.get_vertex_pose_relative_to_camera(
                    frame_cluster
                )
                if candidate_pose is None or frame_to_camera is None:
                    logger.debug(
                        "[LoopClosing] Missing vertex for pair %d <-> %d, skipped",
                        frame_cluster,
                        candidate_cluster,
                    )
                    continue

                transform = candidate_pose.inverse() @ estimated_pose @ frame_to_camera
                self._graph.add_edge(candidate_cluster, frame_cluster, transform, votes)
                self._history.add(frame_cluster, candidate_cluster)
                edges.append(
                    LoopEdge(
                        frame_cluster_id=frame_cluster,
                        candidate_cluster_id=candidate_cluster,
                        transform=transform,
                        votes=votes,
                    )
                )

            if edges:
                self._graph.update()

        return edges

    def _expand_candidate(self, current: Cluster, candidate: Cluster) -> _FeatureSet:
        """Candidate cluster plus its graph neighbours."""
        clusters = [candidate]
        neighbors = self._graph.find_closest_vertices(
            candidate.id,
            current.id,
            self._config.discard_window,
            self._config.neighbors,
        )
        for neighbor_id in neighbors or []:
            neighbor = self.read_cluster(neighbor_id)
            if neighbor.is_empty:
                continue
            clusters.append(neighbor)

        if self._config.frustum_filter and current.camera_pose is not None:
            clusters = [self._filter_by_frustum(c, current.camera_pose) for c in clusters]

        return _FeatureSet.from_clusters(clusters)

    def _expand_frame(self, current: Cluster) -> _FeatureSet:
        """Current cluster plus the other clusters of its keyframe."""
        clusters = [current]
        for cluster_id in self._graph.get_frame_vertices(current.frame_id) or []:
            if cluster_id == current.id:
                continue
            frame_cluster = self.read_cluster(cluster_id)
            if frame_cluster.is_empty:
                continue
            clusters.append(frame_cluster)
        return _FeatureSet.from_clusters(clusters)

    def _filter_by_frustum(self, cluster: Cluster, camera_pose: SE3) -> Cluster:
        """Keep only the features whose 3D point projects inside the current image."""
        camera = self._graph.get_camera_model()
        points_camera = camera_pose.inverse().transform_points(cluster.world_points)
        mask = camera.in_image(camera.project(points_camera))
        return dataclasses.replace(
            cluster,
            keypoints=cluster.keypoints[mask],
            descriptors=cluster.descriptors[mask],
            world_points=cluster.world_points[mask],
        )
