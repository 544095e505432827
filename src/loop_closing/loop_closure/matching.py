"""Descriptor matching with Lowe's ratio test."""

from __future__ import annotations

import cv2
import numpy as np


def ratio_match(
    query_descriptors: np.ndarray,
    train_descriptors: np.ndarray,
    ratio: float = 0.8,
) -> list[cv2.DMatch]:
    """Match descriptors keeping only unambiguous nearest neighbours.

    Binary (uint8) descriptors are compared with the Hamming norm, any
    other type with L2.

    Args:
        query_descriptors: Query descriptors (N, D)
        train_descriptors: Train descriptors (M, D)
        ratio: Ratio test threshold; a match is kept when its distance is
            below ``ratio`` times the second best distance

    Returns:
        Accepted matches (queryIdx indexes the query, trainIdx the train set)
    """
    if len(query_descriptors) == 0 or len(train_descriptors) < 2:
        return []

    if query_descriptors.dtype == np.uint8 and train_descriptors.dtype == np.uint8:
        matcher = cv2.BFMatcher(cv2.NORM_HAMMING, crossCheck=False)
    else:
        matcher = cv2.BFMatcher(cv2.NORM_L2, crossCheck=False)
        query_descriptors = query_descriptors.astype(np.float32)
        train_descriptors = train_descriptors.astype(np.float32)

    knn_matches = matcher.knnMatch(query_descriptors, train_descriptors, k=2)

    good_matches = []
    for match_pair in knn_matches:
        if len(match_pair) == 2:
            m, n = match_pair
            if m.distance < ratio * n.distance:
                good_matches.append(m)

    return good_matches


def match_percentage(
    num_matches: int,
    query_rows: int,
    train_rows: int,
) -> int:
    """Matches as a rounded percentage of the smaller descriptor set."""
    smallest = min(query_rows, train_rows)
    if smallest == 0:
        return 0
    return int(round(100.0 * num_matches / smallest))
