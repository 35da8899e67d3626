"""Tests for gridspread.rng: seeded replicate and stage streams."""

import numpy as np
import pytest

from gridspread.rng import create_replicate_rngs, spawn_stage_rngs


class TestCreateReplicateRngs:
    def test_count(self):
        rngs = create_replicate_rngs(42, n_replicates=5)
        assert len(rngs) == 5

    def test_generators_are_independent(self):
        """Different replicates produce different sequences."""
        rngs = create_replicate_rngs(42, n_replicates=4)
        vals = [rng.random() for rng in rngs]
        assert len(set(vals)) == len(vals), "RNG streams produced duplicate values"

    def test_reproducibility(self):
        """Same seed produces identical sequences."""
        rngs1 = create_replicate_rngs(42, n_replicates=3)
        rngs2 = create_replicate_rngs(42, n_replicates=3)
        for r1, r2 in zip(rngs1, rngs2):
            np.testing.assert_array_equal(r1.random(100), r2.random(100))

    def test_replicate_independent_of_count(self):
        """Replicate k is the same stream however many replicates exist."""
        few = create_replicate_rngs(7, n_replicates=2)
        many = create_replicate_rngs(7, n_replicates=10)
        np.testing.assert_array_equal(few[1].random(20), many[1].random(20))

    def test_different_seeds_differ(self):
        r1 = create_replicate_rngs(42, n_replicates=1)[0]
        r2 = create_replicate_rngs(43, n_replicates=1)[0]
        assert not np.array_equal(r1.random(10), r2.random(10))

    def test_zero_replicates(self):
        assert create_replicate_rngs(42, n_replicates=0) == []

    def test_negative_seed(self):
        with pytest.raises(ValueError):
            create_replicate_rngs(-1, n_replicates=1)

    def test_generator_type(self):
        """All generators use PCG64 bit generator."""
        for rng in create_replicate_rngs(42, n_replicates=3):
            assert isinstance(rng.bit_generator, np.random.PCG64)


class TestSpawnStageRngs:
    def test_count_and_independence(self):
        parent = np.random.default_rng(1)
        children = spawn_stage_rngs(parent, 3)
        assert len(children) == 3
        vals = [c.random() for c in children]
        assert len(set(vals)) == 3

    def test_reproducible_from_same_parent_seed(self):
        a = spawn_stage_rngs(np.random.default_rng(5), 2)
        b = spawn_stage_rngs(np.random.default_rng(5), 2)
        for ca, cb in zip(a, b):
            np.testing.assert_array_equal(ca.random(10), cb.random(10))

    def test_successive_spawns_differ(self):
        """Each timestep gets fresh stage streams."""
        parent = np.random.default_rng(5)
        first = spawn_stage_rngs(parent, 1)[0]
        second = spawn_stage_rngs(parent, 1)[0]
        assert not np.array_equal(first.random(10), second.random(10))
