#!/usr/bin/env python3
"""Demo of loop closure detection on a synthetic trajectory.

A stereo camera drives 1.5 laps around a room whose walls are covered
with landmarks. Every keyframe becomes one cluster in a drifting pose
graph; when the camera comes back to the start of the lap, the loop
closing engine recognises the place, verifies it geometrically and adds
loop edges. The graph is then optimized to correct the drift.

Usage:
    uv run python examples/synthetic_loop_closure.py [--rerun]
"""

import argparse
import logging
import time

import numpy as np

from loop_closing import (
    SE3,
    Cluster,
    LoopClosing,
    LoopClosingConfig,
    PinholeCamera,
    PoseGraph,
    RerunTelemetry,
)

NUM_LANDMARKS = 4000
ROOM_RADIUS = 10.0
TRAJECTORY_RADIUS = 3.0
KEYFRAMES_PER_LAP = 40
NUM_KEYFRAMES = 60
MAX_FEATURES = 200
YAW_DRIFT_PER_KEYFRAME = np.deg2rad(0.3)


def yaw(angle: float) -> np.ndarray:
    """Rotation about the world Y axis."""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])


def make_room(rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
    """Landmarks on a cylindrical wall and their ORB-like descriptors."""
    angles = rng.uniform(0.0, 2.0 * np.pi, NUM_LANDMARKS)
    heights = rng.uniform(-2.0, 2.0, NUM_LANDMARKS)
    points = np.column_stack(
        [ROOM_RADIUS * np.sin(angles), heights, ROOM_RADIUS * np.cos(angles)]
    )
    descriptors = rng.integers(0, 256, size=(NUM_LANDMARKS, 32), dtype=np.uint8)
    return points, descriptors


def true_pose(k: int) -> SE3:
    """Camera k on a circle, looking outward."""
    theta = 2.0 * np.pi * k / KEYFRAMES_PER_LAP
    position = TRAJECTORY_RADIUS * np.array([np.sin(theta), 0.0, np.cos(theta)])
    return SE3(rotation=yaw(theta), translation=position)


def make_cluster(
    k: int,
    pose: SE3,
    camera: PinholeCamera,
    points: np.ndarray,
    descriptors: np.ndarray,
    rng: np.random.Generator,
) -> Cluster:
    """Cluster with the landmarks visible from ``pose``."""
    pixels = camera.project(pose.inverse().transform_points(points))
    visible = np.flatnonzero(camera.in_image(pixels))
    if len(visible) > MAX_FEATURES:
        visible = rng.choice(visible, size=MAX_FEATURES, replace=False)

    keypoints = pixels[visible] + rng.normal(0.0, 0.5, size=(len(visible), 2))
    return Cluster(
        id=k,
        frame_id=k,
        camera_pose=pose,
        keypoints=keypoints,
        descriptors=descriptors[visible],
        world_points=points[visible],
    )


def main() -> None:
    """Run the synthetic loop closure demo."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--rerun", action="store_true", help="Stream to the Rerun viewer")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(message)s")

    rng = np.random.default_rng(0)
    camera = PinholeCamera(fx=458.0, fy=457.0, cx=367.0, cy=248.0, width=752, height=480)
    points, descriptors = make_room(rng)

    graph = PoseGraph(camera)
    telemetry = RerunTelemetry("loop-closing-demo", spawn=True) if args.rerun else None
    config = LoopClosingConfig(discard_window=10)

    print("=" * 80)
    print("SYNTHETIC LOOP CLOSURE")
    print("=" * 80)
    print(f"  Landmarks:  {NUM_LANDMARKS}")
    print(f"  Keyframes:  {NUM_KEYFRAMES} ({NUM_KEYFRAMES / KEYFRAMES_PER_LAP:.1f} laps)")
    print(f"  Yaw drift:  {np.rad2deg(YAW_DRIFT_PER_KEYFRAME):.2f} deg/keyframe")
    print()

    with LoopClosing(graph, config=config, telemetry=telemetry) as loop_closing:
        for k in range(NUM_KEYFRAMES):
            pose = true_pose(k)

            # Odometry accumulates a yaw error around the start of the trajectory
            drift = SE3(rotation=yaw(YAW_DRIFT_PER_KEYFRAME * k), translation=np.zeros(3))
            graph.add_vertex(k, k, drift @ pose)

            cluster = make_cluster(k, pose, camera, points, descriptors, rng)
            loop_closing.add_cluster_to_queue(cluster)

        while loop_closing.queue_size > 0 or loop_closing.num_processed < NUM_KEYFRAMES:
            time.sleep(0.05)

        loop_closures = loop_closing.loop_closures

    print()
    print(f"Loop closures: {len(loop_closures)}")
    for frame_cluster, candidate_cluster in loop_closures:
        print(f"  {frame_cluster:3d} <-> {candidate_cluster:3d}")

    last = NUM_KEYFRAMES - 1
    error_before = graph.get_vertex_camera_pose(last).distance_to(true_pose(last))
    if graph.optimize():
        error_after = graph.get_vertex_camera_pose(last).distance_to(true_pose(last))
        print()
        print(f"Position error of keyframe {last}:")
        print(f"  before optimization: {error_before:.3f} m")
        print(f"  after optimization:  {error_after:.3f} m")
    else:
        print("No loop edges, graph not optimized")


if __name__ == "__main__":
    main()
