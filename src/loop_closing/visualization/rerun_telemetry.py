"""Rerun telemetry for the loop closing engine."""

from __future__ import annotations

import numpy as np
import rerun as rr


class RerunTelemetry:
    """Publishes loop closing counters and images to Rerun.

    Entity hierarchy:
        loop_closing/
            keyframes       - Keyframes in the pose graph
            loop_closures   - Loop closures found
            queue           - Clusters waiting in the queue
            matchings       - Latest loop closure image
    """

    def __init__(self, app_name: str = "loop-closing", spawn: bool = False) -> None:
        """Initialize Rerun logging.

        Args:
            app_name: Name of the Rerun application
            spawn: If True, spawn the Rerun viewer
        """
        rr.init(app_name, spawn=spawn)
        self._tick = 0

    def log_counters(
        self, num_keyframes: int, num_loop_closures: int, queue_size: int
    ) -> None:
        """Log the engine counters for the current tick."""
        rr.set_time("tick", sequence=self._tick)
        self._tick += 1

        rr.log("loop_closing/keyframes", rr.Scalars(float(num_keyframes)))
        rr.log("loop_closing/loop_closures", rr.Scalars(float(num_loop_closures)))
        rr.log("loop_closing/queue", rr.Scalars(float(queue_size)))

    def log_loop_image(self, image: np.ndarray) -> None:
        """Log a loop closure image (BGR, as produced by OpenCV)."""
        rr.log("loop_closing/matchings", rr.Image(np.ascontiguousarray(image[..., ::-1])))
