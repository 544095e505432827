"""Visualization of loop closures and engine telemetry."""

from .loop_image import LoopImageBuilder, no_loop_closures_image
from .rerun_telemetry import RerunTelemetry

__all__ = ["LoopImageBuilder", "RerunTelemetry", "no_loop_closures_image"]
