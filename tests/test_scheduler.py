"""
Work partitioning and the parallel evaluation phase.
"""

import numba
import numpy as np
import pytest

from octgrav import ConfigurationError, acceleration, build_octree, compute_accelerations, partition
from octgrav.scheduler import check_threads, thread_count


class TestPartition:
    """Index ranges cover every body exactly once."""

    @pytest.mark.parametrize("n, chunks", [(10, 3), (100, 8), (7, 7), (5, 16), (1, 4), (1000, 1)])
    def test_ranges_cover_all_indices_once(self, n, chunks):
        bounds = partition(n, chunks)

        assert bounds[0] == 0
        assert bounds[-1] == n
        assert np.all(np.diff(bounds) > 0)
        covered = np.concatenate([np.arange(a, b) for a, b in zip(bounds[:-1], bounds[1:])])
        np.testing.assert_array_equal(covered, np.arange(n))

    def test_ranges_are_balanced(self):
        sizes = np.diff(partition(103, 10))

        assert len(sizes) == 10
        assert sizes.max() - sizes.min() <= 1

    def test_never_more_ranges_than_bodies(self):
        assert len(partition(3, 64)) == 4

    def test_empty(self):
        np.testing.assert_array_equal(partition(0, 8), [0])

    def test_invalid(self):
        with pytest.raises(ValueError):
            partition(10, 0)
        with pytest.raises(ValueError):
            partition(-1, 2)


class TestParallelEvaluation:
    """Parallel results equal one-at-a-time traversal."""

    def test_matches_single_body_evaluation(self, cloud):
        positions, masses = cloud
        tree = build_octree(positions, masses)
        parallel = compute_accelerations(tree, theta=0.6, softening=0.05, G=2.0)

        for i in range(0, len(masses), 17):
            one = acceleration(tree, i, theta=0.6, softening=0.05, G=2.0)
            np.testing.assert_allclose(parallel[i], one, rtol=1e-12, atol=1e-14)

    def test_thread_count_does_not_change_results(self, cloud):
        positions, masses = cloud
        tree = build_octree(positions, masses)
        single = compute_accelerations(tree, theta=0.5, softening=0.01, num_threads=1)
        default = compute_accelerations(tree, theta=0.5, softening=0.01)

        np.testing.assert_allclose(single, default, rtol=1e-13, atol=1e-15)

    def test_writes_into_given_buffer(self, cloud):
        positions, masses = cloud
        tree = build_octree(positions, masses)
        out = np.full((len(masses), 3), np.nan)

        result = compute_accelerations(tree, out, theta=0.5)
        assert result is out
        assert np.all(np.isfinite(out))

    def test_rejects_wrong_buffer_shape(self, cloud):
        positions, masses = cloud
        tree = build_octree(positions, masses)

        with pytest.raises(ValueError):
            compute_accelerations(tree, np.zeros((3, 3)))

    def test_tree_is_not_modified(self, cloud):
        positions, masses = cloud
        tree = build_octree(positions, masses)
        before = tree.signature()

        compute_accelerations(tree, theta=0.5)
        assert tree.signature() == before


class TestThreadCount:

    def test_restores_previous_setting(self):
        previous = numba.get_num_threads()
        with thread_count(1) as workers:
            assert workers == 1
            assert numba.get_num_threads() == 1
        assert numba.get_num_threads() == previous

    def test_none_keeps_current(self):
        previous = numba.get_num_threads()
        with thread_count(None) as workers:
            assert workers == previous

    def test_too_many_threads(self):
        with pytest.raises(ConfigurationError):
            check_threads(numba.config.NUMBA_NUM_THREADS + 1)
