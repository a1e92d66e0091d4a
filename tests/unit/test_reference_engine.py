"""
Unit tests for the reference Lloyd engine.
"""

from __future__ import annotations

import numpy as np
import pytest

from pykmcompute.backends.cpu import CPUBackend
from pykmcompute.core.config import ClusteringConfig
from pykmcompute.core.memory_planner import MemoryPlanner
from pykmcompute.engines import reference
from pykmcompute.engines.reference import LloydEngine, nearest_centroids, partition


class TestPartition:
    """Tests for partition."""

    def test_even(self) -> None:
        """Test slices cover the range contiguously."""
        assert partition(10, 3) == [(0, 3), (3, 6), (6, 10)]

    def test_single(self) -> None:
        """Test a single part covers everything."""
        assert partition(7, 1) == [(0, 7)]

    def test_more_parts_than_samples(self) -> None:
        """Test surplus parts get empty slices."""
        slices = partition(2, 3)

        assert slices == [(0, 0), (0, 1), (1, 2)]
        assert sum(hi - lo for lo, hi in slices) == 2


class TestNearestCentroids:
    """Tests for nearest_centroids."""

    def test_assignment(self) -> None:
        """Test each sample is matched to its closest centroid."""
        samples = np.array([[0.0, 0.0], [9.0, 9.0], [1.0, 0.0]], dtype=np.float32)
        centroids = np.array([[10.0, 10.0], [0.0, 0.0]], dtype=np.float32)

        dists, idx = nearest_centroids(np, samples, centroids)

        np.testing.assert_array_equal(idx, [1, 0, 1])
        np.testing.assert_allclose(dists, [0.0, 2.0, 1.0])

    def test_ties_prefer_lower_index(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test equidistant centroids resolve to the first one, across chunks."""
        samples = np.array([[0.0]], dtype=np.float32)
        centroids = np.array([[1.0], [-1.0], [1.0]], dtype=np.float32)

        _, idx = nearest_centroids(np, samples, centroids)
        assert idx[0] == 0

        monkeypatch.setattr(reference, "_CHUNK_ELEMENTS", 1)
        _, idx = nearest_centroids(np, samples, centroids)
        assert idx[0] == 0


class TestLloydEngine:
    """Tests for LloydEngine."""

    def test_invalid_max_iterations(self, cpu_backend: CPUBackend) -> None:
        """Test the iteration cap must be positive."""
        with pytest.raises(ValueError):
            LloydEngine(cpu_backend, max_iterations=0)

    def test_configure_devices(self, multi_backend: CPUBackend) -> None:
        """Test each device receives a sample slice."""
        engine = LloydEngine(multi_backend)

        engine.configure_devices(90, 2, 3, 0, (0, 2), 0)

        assert engine.slices == [(0, 45), (45, 90)]

    def test_score_candidates(self, multi_backend: CPUBackend, blobs: np.ndarray) -> None:
        """Test distances to the current candidates are gathered on the host."""
        devices = (0, 1, 2)
        engine = LloydEngine(multi_backend)
        centroids_host = np.zeros((3, 2), dtype=np.float32)
        assignments_host = np.zeros(300, dtype=np.uint32)

        with MemoryPlanner(multi_backend, devices) as planner:
            plan = planner.plan(
                ClusteringConfig(yinyang_t=0.0), blobs, centroids_host, assignments_host, 300, 2, 3
            )
            for buffer in plan.centroids:
                buffer.data[0] = blobs[5]
                buffer.data[1] = blobs[150]
            engine.configure_devices(300, 2, 3, 0, devices, 0)
            host = np.empty(300, dtype=np.float32)

            total = engine.score_candidates(
                300, 2, 2, 0, devices, plan.samples, plan.centroids, plan.distance_scratch, host
            )

        expected = np.minimum(
            ((blobs - blobs[5]) ** 2).sum(axis=1), ((blobs - blobs[150]) ** 2).sum(axis=1)
        )
        np.testing.assert_allclose(host, expected, rtol=1e-5, atol=1e-5)
        assert total == pytest.approx(float(expected.sum(dtype=np.float64)), rel=1e-5)
        assert host[5] == 0.0
        assert host[150] == 0.0

    def test_refine_replicas_agree(self, multi_backend: CPUBackend, blobs: np.ndarray) -> None:
        """Test every device ends with the same centroids and assignments."""
        devices = (0, 1, 2)
        engine = LloydEngine(multi_backend)

        with MemoryPlanner(multi_backend, devices) as planner:
            plan = planner.plan(
                ClusteringConfig(yinyang_t=0.0),
                blobs,
                np.zeros((3, 2), dtype=np.float32),
                np.zeros(300, dtype=np.uint32),
                300,
                2,
                3,
            )
            for buffer in plan.centroids:
                buffer.data[...] = blobs[[0, 100, 200]]
            engine.configure_devices(300, 2, 3, 0, devices, 0)

            iterations = engine.refine(
                0.0,
                0,
                300,
                3,
                2,
                0,
                devices,
                plan.samples,
                plan.centroids,
                plan.cluster_counts,
                plan.assignments_prev,
                plan.assignments,
                None,
            )

            assert 1 <= iterations <= engine.max_iterations
            for buffer in plan.assignments[1:]:
                np.testing.assert_array_equal(buffer.data, plan.assignments.primary.data)
            for buffer in plan.centroids[1:]:
                np.testing.assert_array_equal(buffer.data, plan.centroids.primary.data)
            np.testing.assert_array_equal(plan.cluster_counts.primary.data, [100, 100, 100])
            labels = plan.assignments.primary.data
            np.testing.assert_array_equal(labels, np.repeat(np.arange(3), 100))

    def test_iteration_cap(self, cpu_backend: CPUBackend, blobs: np.ndarray) -> None:
        """Test refinement stops at max_iterations."""
        engine = LloydEngine(cpu_backend, max_iterations=1)

        with MemoryPlanner(cpu_backend, (0,)) as planner:
            plan = planner.plan(
                ClusteringConfig(yinyang_t=0.0),
                blobs,
                np.zeros((3, 2), dtype=np.float32),
                np.zeros(300, dtype=np.uint32),
                300,
                2,
                3,
            )
            for buffer in plan.centroids:
                buffer.data[...] = blobs[:3]
            engine.configure_devices(300, 2, 3, 0, (0,), 0)

            iterations = engine.refine(
                0.0,
                0,
                300,
                3,
                2,
                0,
                (0,),
                plan.samples,
                plan.centroids,
                plan.cluster_counts,
                plan.assignments_prev,
                plan.assignments,
                None,
            )

        assert iterations == 1

    def test_empty_cluster_keeps_centroid(self, cpu_backend: CPUBackend) -> None:
        """Test a centroid nobody is assigned to does not move."""
        samples = np.array([[0.0], [1.0], [2.0], [3.0]], dtype=np.float32)
        engine = LloydEngine(cpu_backend)

        with MemoryPlanner(cpu_backend, (0,)) as planner:
            plan = planner.plan(
                ClusteringConfig(yinyang_t=0.0),
                samples,
                np.zeros((2, 1), dtype=np.float32),
                np.zeros(4, dtype=np.uint32),
                4,
                1,
                2,
            )
            plan.centroids.primary.data[...] = [[1.5], [100.0]]
            engine.configure_devices(4, 1, 2, 0, (0,), 0)
            engine.refine(
                0.0,
                0,
                4,
                2,
                1,
                0,
                (0,),
                plan.samples,
                plan.centroids,
                plan.cluster_counts,
                plan.assignments_prev,
                plan.assignments,
                None,
            )

            np.testing.assert_array_equal(plan.centroids.primary.data, [[1.5], [100.0]])
            np.testing.assert_array_equal(plan.cluster_counts.primary.data, [4, 0])
