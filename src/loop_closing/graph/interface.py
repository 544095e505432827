"""Contract between the loop closing engine and the pose graph.

The pose graph is owned by another component (tracking inserts vertices,
an optimiser runs on its own timer). The engine only needs the queries
and mutations below. Lookups on unknown ids return None (or an empty
list) instead of raising.

Mutual exclusion: ``lock`` is a re-entrant lock shared with the
optimiser. The engine holds it while inserting the edges of one loop
closure and calling ``update()``, so an optimisation pass never observes
a half-inserted loop.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from ..geometry import SE3, PinholeCamera


@runtime_checkable
class PoseGraphInterface(Protocol):
    lock: threading.RLock

    def find_closest_vertices(
        self,
        anchor_id: int,
        reference_id: int,
        discard_window: int,
        k: int,
    ) -> list[int]:
        """Up to k vertices closest to ``anchor_id``, excluding the anchor and
        every id within ``discard_window`` of ``reference_id``."""
        ...

    def get_frame_vertices(self, frame_id: int) -> list[int]:
        """Ids of all vertices (clusters) belonging to a keyframe."""
        ...

    def get_vertex_pose(self, vertex_id: int) -> SE3 | None:
        """Cluster pose T_world_cluster."""
        ...

    def get_vertex_pose_relative_to_camera(self, vertex_id: int) -> SE3 | None:
        """Cluster pose in its camera frame, T_camera_cluster."""
        ...

    def get_vertex_camera_pose(self, vertex_id: int) -> SE3 | None:
        """Camera pose T_world_camera of the vertex keyframe."""
        ...

    def get_vertex_frame_id(self, vertex_id: int) -> int | None:
        ...

    def get_camera_model(self) -> PinholeCamera:
        ...

    def get_camera_matrix(self) -> np.ndarray:
        ...

    def get_frame_num(self) -> int:
        """Number of keyframes in the graph."""
        ...

    def add_edge(self, from_id: int, to_id: int, transform: SE3, weight: int) -> None:
        """Insert a constraint T_from_to weighted by ``weight``."""
        ...

    def update(self) -> None:
        """Notify the graph that new edges are ready for optimisation."""
        ...
