"""Tests for FingerprintIndex."""

import numpy as np
import pytest

from loop_closing import FingerprintIndex


class TestFingerprintIndex:
    """Test suite for FingerprintIndex."""

    def test_fingerprint_before_initialize_raises(self, random_descriptors):
        """Fingerprinting requires an initialized basis."""
        index = FingerprintIndex()

        with pytest.raises(RuntimeError, match="before initialize"):
            index.fingerprint(random_descriptors(10))

    def test_fingerprint_size(self, random_descriptors):
        """Binary descriptors are hashed bit by bit."""
        index = FingerprintIndex(num_projections=3)
        index.initialize(random_descriptors(50))

        fp = index.fingerprint(random_descriptors(50))

        assert index.is_initialized
        assert fp.shape == (3 * 256,)
        assert index.size == 3 * 256

    def test_deterministic(self, random_descriptors):
        """Same descriptors and seed give the same fingerprint."""
        first = random_descriptors(40)
        desc = random_descriptors(40)

        index_a = FingerprintIndex(seed=5)
        index_b = FingerprintIndex(seed=5)
        index_a.initialize(first)
        index_b.initialize(first)

        np.testing.assert_array_equal(index_a.fingerprint(desc), index_b.fingerprint(desc))

    def test_similarity_ranks_identical_first(self, random_descriptors):
        """A cluster is closer to itself than to an unrelated one."""
        index = FingerprintIndex()
        desc = random_descriptors(60)
        index.initialize(desc)

        fp = index.fingerprint(desc)
        fp_same = index.fingerprint(desc.copy())
        fp_other = index.fingerprint(random_descriptors(60))

        assert index.similarity(fp, fp_same) == 0.0
        assert index.similarity(fp, fp_other) > 0.0

    def test_similarity_symmetric(self, random_descriptors):
        """Similarity doesn't depend on argument order."""
        index = FingerprintIndex()
        index.initialize(random_descriptors(30))
        fp_a = index.fingerprint(random_descriptors(30))
        fp_b = index.fingerprint(random_descriptors(30))

        assert index.similarity(fp_a, fp_b) == pytest.approx(index.similarity(fp_b, fp_a))

    def test_row_count_mismatch(self, random_descriptors):
        """Clusters with more or fewer rows than the first are still hashed."""
        index = FingerprintIndex()
        index.initialize(random_descriptors(20))

        assert index.fingerprint(random_descriptors(50)).shape == (3 * 256,)
        assert index.fingerprint(random_descriptors(5)).shape == (3 * 256,)
        assert np.all(index.fingerprint(np.zeros((0, 32), dtype=np.uint8)) == 0)

    def test_width_mismatch_raises(self, random_descriptors):
        """Descriptors of another width can't share the basis."""
        index = FingerprintIndex()
        index.initialize(random_descriptors(20))

        with pytest.raises(ValueError, match="width"):
            index.fingerprint(np.zeros((20, 64), dtype=np.float32))

    def test_float_descriptors(self):
        """Float descriptors are projected as they are."""
        rng = np.random.default_rng(0)
        desc = rng.random((30, 128)).astype(np.float32)
        index = FingerprintIndex(num_projections=2)
        index.initialize(desc)

        assert index.fingerprint(desc).shape == (2 * 128,)
