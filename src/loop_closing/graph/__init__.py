"""Pose graph collaborator: the interface consumed by loop closing and an
in-memory reference implementation."""

from .interface import PoseGraphInterface
from .pose_graph import PoseEdge, PoseGraph

__all__ = ["PoseGraphInterface", "PoseGraph", "PoseEdge"]
