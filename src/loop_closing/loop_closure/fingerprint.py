"""Fingerprint (hash) index for fast cluster similarity ranking.

A fingerprint summarises a descriptor matrix as its projection onto a
small orthonormal random basis:

1. On the first cluster, draw ``num_projections`` Gaussian vectors whose
   length equals the number of descriptor rows and orthonormalise them.
2. Each later cluster is projected onto that basis, one value per basis
   vector and descriptor column.
3. Two fingerprints are compared with the Euclidean distance (smaller is
   more similar).

The basis is fixed for the lifetime of the index so that fingerprints of
all clusters live in the same space.
"""

from __future__ import annotations

import numpy as np


class FingerprintIndex:
    """Random projection hashing of descriptor matrices."""

    def __init__(self, num_projections: int = 3, seed: int = 0) -> None:
        """Initialize an empty (uninitialized) index.

        Args:
            num_projections: Number of random basis vectors
            seed: Seed of the random basis
        """
        self._num_projections = num_projections
        self._seed = seed

        self._basis: np.ndarray | None = None  # (num_projections, n_rows)
        self._n_cols: int = 0

    def initialize(self, descriptors: np.ndarray) -> None:
        """Fix the hashing basis from the first descriptor matrix.

        Args:
            descriptors: Descriptor matrix (N, D); uint8 rows are treated
                as packed binary descriptors
        """
        values = self._as_float(descriptors)
        n_rows = max(len(values), 1)
        self._n_cols = values.shape[1]

        rng = np.random.default_rng(self._seed)
        gaussian = rng.standard_normal((n_rows, self._num_projections))
        q, _ = np.linalg.qr(gaussian)  # (n_rows, min(n_rows, num_projections))

        basis = np.zeros((self._num_projections, n_rows), dtype=np.float64)
        basis[: q.shape[1]] = q.T
        self._basis = basis

    def fingerprint(self, descriptors: np.ndarray) -> np.ndarray:
        """Compute the fingerprint of a descriptor matrix.

        Rows beyond the basis length are ignored; missing rows count as
        zeros.

        Args:
            descriptors: Descriptor matrix (N, D)

        Returns:
            Fingerprint vector, shape (num_projections * D,)

        Raises:
            RuntimeError: If the index has not been initialized
            ValueError: If the descriptor width differs from the basis
        """
        if self._basis is None:
            raise RuntimeError("FingerprintIndex used before initialize()")

        values = self._as_float(descriptors)
        if values.shape[1] != self._n_cols:
            raise ValueError(
                f"Descriptor width {values.shape[1]} does not match the "
                f"initialized width {self._n_cols}"
            )

        n = min(len(values), self._basis.shape[1])
        projection = self._basis[:, :n] @ values[:n]  # (num_projections, D)
        return projection.flatten().astype(np.float32)

    @staticmethod
    def similarity(fp_a: np.ndarray, fp_b: np.ndarray) -> float:
        """Distance between two fingerprints (0 for identical ones)."""
        return float(np.linalg.norm(np.asarray(fp_a) - np.asarray(fp_b)))

    @staticmethod
    def _as_float(descriptors: np.ndarray) -> np.ndarray:
        descriptors = np.asarray(descriptors)
        if descriptors.ndim != 2:
            raise ValueError(
                f"Descriptors must be 2D (N, D), got shape {descriptors.shape}"
            )
        # Binary descriptors compare by bits, not by byte value
        if descriptors.dtype == np.uint8:
            return np.unpackbits(descriptors, axis=1).astype(np.float64)
        return descriptors.astype(np.float64)

    @property
    def is_initialized(self) -> bool:
        return self._basis is not None

    @property
    def size(self) -> int:
        """Length of the fingerprint vectors (0 before initialization)."""
        if self._basis is None:
            return 0
        return self._num_projections * self._n_cols
