"""Loop closure images: current keyframe above the revisited keyframes.

Layout:

    +-----------------------------+
    |      Keyframe <current>     |
    |      current keyframe       |
    +---------+---------+---------+
    | cand. 1 | cand. 2 |   ...   |
    | Keyframe| Keyframe|         |
    +---------+---------+---------+

Inlier correspondences are drawn as lines between both images, one colour
per accepted (frame cluster, candidate cluster) pair.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

import cv2
import numpy as np

logger = logging.getLogger(__name__)

_FONT = cv2.FONT_HERSHEY_PLAIN


def no_loop_closures_image() -> np.ndarray:
    """Placeholder published before the first loop closure."""
    image = np.zeros((384, 512, 3), dtype=np.uint8)
    cv2.putText(
        image, " No Loop Closures ", (95, 200), _FONT, 2, (255, 255, 255), 2, cv2.LINE_8
    )
    return image


def _label(image: np.ndarray, text: str, on_top: bool) -> tuple[np.ndarray, int]:
    """Add a white text band above or below an image.

    Returns:
        Labelled image and band height
    """
    (_, text_height), _ = cv2.getTextSize(text, _FONT, 1, 1)
    band_height = text_height + 10
    band = np.full((band_height, image.shape[1], 3), 255, dtype=np.uint8)
    if on_top:
        cv2.putText(band, text, (5, text_height + 4), _FONT, 1, (0, 0, 0), 1, cv2.LINE_8)
        return np.vstack([band, image]), band_height
    cv2.putText(band, text, (5, band_height - 5), _FONT, 1, (0, 0, 0), 1, cv2.LINE_8)
    return np.vstack([image, band]), band_height


def _pad(image: np.ndarray, height: int, width: int) -> np.ndarray:
    """Pad with black on the bottom/right up to (height, width)."""
    canvas = np.zeros((height, width, 3), dtype=np.uint8)
    canvas[: image.shape[0], : image.shape[1]] = image
    return canvas


class LoopImageBuilder:
    """Renders and stores one image per accepted loop closure."""

    def __init__(
        self,
        keyframes_dir: str | Path | None,
        output_dir: str | Path | None = None,
        seed: int = 12345,
    ) -> None:
        """Initialize the builder.

        Args:
            keyframes_dir: Directory with keyframe images named
                ``{frame_id:05d}.jpg``
            output_dir: Directory receiving ``{n:05d}.jpg`` loop images.
                Cleared on construction. None disables saving.
            seed: Seed of the pair colours
        """
        self._keyframes_dir = Path(keyframes_dir) if keyframes_dir is not None else None
        self._output_dir = Path(output_dir) if output_dir is not None else None
        self._seed = seed
        self._num_saved = 0

        if self._output_dir is not None and not self._prepare_output_dir():
            self._output_dir = None

    def _prepare_output_dir(self) -> bool:
        try:
            if self._output_dir.is_dir():
                shutil.rmtree(self._output_dir)
            self._output_dir.mkdir(parents=True)
        except OSError as e:
            logger.error(
                "[LoopClosing] Impossible to create the loop closures directory %s: %s",
                self._output_dir,
                e,
            )
            return False
        return True

    def read_keyframe(self, frame_id: int) -> np.ndarray | None:
        """Load a keyframe image (BGR), or None if unavailable."""
        if self._keyframes_dir is None:
            return None
        path = self._keyframes_dir / f"{frame_id:05d}.jpg"
        image = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if image is None:
            logger.warning("[LoopClosing] Unable to read keyframe image %s", path)
        return image

    def render(
        self,
        current_frame_id: int,
        current_keypoints: np.ndarray,
        candidate_keypoints: np.ndarray,
        inlier_pairs: list[tuple[int, int]],
        accepted_pairs: list[tuple[int, int]],
        candidate_frame_ids: dict[int, int],
    ) -> np.ndarray | None:
        """Render, save and return the loop closure image.

        Args:
            current_frame_id: Keyframe of the current cluster
            current_keypoints: Inlier keypoints in the current keyframe (K, 2)
            candidate_keypoints: Matching keypoints in candidate keyframes (K, 2)
            inlier_pairs: (frame cluster, candidate cluster) of every inlier
            accepted_pairs: Pairs that became edges (one colour each)
            candidate_frame_ids: Keyframe of every candidate-side cluster

        Returns:
            The image, or None if the keyframe images couldn't be read
        """
        image = self.build(
            current_frame_id,
            current_keypoints,
            candidate_keypoints,
            inlier_pairs,
            accepted_pairs,
            candidate_frame_ids,
        )
        if image is not None:
            self.save(image)
        return image

    def build(
        self,
        current_frame_id: int,
        current_keypoints: np.ndarray,
        candidate_keypoints: np.ndarray,
        inlier_pairs: list[tuple[int, int]],
        accepted_pairs: list[tuple[int, int]],
        candidate_frame_ids: dict[int, int],
    ) -> np.ndarray | None:
        """Compose the loop closure image without saving it."""
        current = self.read_keyframe(current_frame_id)
        if current is None:
            return None

        # Distinct candidate keyframes of the accepted pairs, first-seen order
        keyframes: list[int] = []
        for _, candidate_cluster in accepted_pairs:
            frame_id = candidate_frame_ids.get(candidate_cluster)
            if frame_id is not None and frame_id not in keyframes:
                keyframes.append(frame_id)

        candidates: list[tuple[int, np.ndarray]] = []
        for frame_id in keyframes:
            image = self.read_keyframe(frame_id)
            if image is not None:
                candidates.append((frame_id, image))

        current_labeled, header_height = _label(
            current, f" Keyframe {current_frame_id}", on_top=True
        )
        if candidates:
            labeled = [
                _label(image, f" Keyframe {frame_id}", on_top=False)[0]
                for frame_id, image in candidates
            ]
            strip_height = max(image.shape[0] for image in labeled)
            labeled = [_pad(image, strip_height, image.shape[1]) for image in labeled]
            strip = np.hstack(labeled)
        else:
            strip = np.zeros((0, current_labeled.shape[1], 3), dtype=np.uint8)

        width = max(strip.shape[1], current_labeled.shape[1])
        x_offset = (width - current_labeled.shape[1]) // 2
        top = np.zeros((current_labeled.shape[0], width, 3), dtype=np.uint8)
        top[:, x_offset : x_offset + current_labeled.shape[1]] = current_labeled
        canvas = np.vstack([top, _pad(strip, strip.shape[0], width)])

        # Left edge of every candidate keyframe in the strip
        column_offsets: dict[int, int] = {}
        x = 0
        for frame_id, image in candidates:
            column_offsets[frame_id] = x
            x += image.shape[1]

        rng = np.random.default_rng(self._seed)
        colors = {
            pair: tuple(int(c) for c in rng.integers(0, 256, size=3))
            for pair in accepted_pairs
        }

        for i, pair in enumerate(inlier_pairs):
            color = colors.get(pair)
            frame_id = candidate_frame_ids.get(pair[1])
            if color is None or frame_id not in column_offsets:
                continue

            p_current = (
                int(round(x_offset + current_keypoints[i][0])),
                int(round(header_height + current_keypoints[i][1])),
            )
            p_candidate = (
                int(round(column_offsets[frame_id] + candidate_keypoints[i][0])),
                int(round(top.shape[0] + candidate_keypoints[i][1])),
            )
            cv2.circle(canvas, p_current, 4, color, -1)
            cv2.circle(canvas, p_candidate, 4, color, -1)
            cv2.line(canvas, p_current, p_candidate, color, 2, cv2.LINE_8)

        return canvas

    def save(self, image: np.ndarray) -> Path | None:
        """Write the next numbered loop closure image."""
        if self._output_dir is None:
            return None
        path = self._output_dir / f"{self._num_saved:05d}.jpg"
        if not cv2.imwrite(str(path), image):
            logger.warning("[LoopClosing] Unable to write loop closure image %s", path)
            return None
        self._num_saved += 1
        return path

    @property
    def num_saved(self) -> int:
        return self._num_saved

    @property
    def output_dir(self) -> Path | None:
        return self._output_dir
