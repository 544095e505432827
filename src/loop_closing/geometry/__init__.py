"""Geometry primitives: rigid transforms and the pinhole camera."""

from .camera import PinholeCamera
from .pose import SE3

__all__ = ["SE3", "PinholeCamera"]
