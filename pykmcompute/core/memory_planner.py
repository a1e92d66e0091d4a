"""
Device-scoped memory planning.

Decides, for every buffer of the clustering pipeline and every
participating device, whether to borrow caller memory or allocate a new
buffer, and guarantees that everything allocated is released again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from pykmcompute.core.device_buffer import (
    DeviceBuffer,
    ReplicatedBuffer,
    can_alias_group_centroids,
)

if TYPE_CHECKING:
    from numpy.typing import DTypeLike

    from pykmcompute.backends.base import Backend
    from pykmcompute.core.config import ClusteringConfig
    from pykmcompute.core.topology import DeviceSet

logger = logging.getLogger(__name__)


@dataclass
class PlanStatistics:
    """Statistics for a memory plan."""

    allocations: int = 0
    borrowed: int = 0
    views: int = 0
    owned_bytes: int = 0

    @property
    def owned_mb(self) -> float:
        """Get owned memory in MB."""
        return self.owned_bytes / (1024 * 1024)


@dataclass
class YinyangBuffers:
    """Scratch state of the accelerated ("Yinyang") refinement."""

    groups: int
    assignments: ReplicatedBuffer  # centroid -> group, clusters_size
    bounds: ReplicatedBuffer  # samples_size x (groups + 1)
    drifts: ReplicatedBuffer  # centroids_size + clusters_size
    passed: ReplicatedBuffer  # samples_size
    centroids: ReplicatedBuffer  # groups x features_size

    @property
    def centroids_aliased(self) -> bool:
        """Check if the group centroids live inside the passed-flags buffers."""
        return all(not buffer.is_owned for buffer in self.centroids)


@dataclass
class MemoryPlan:
    """Buffers of one clustering invocation, one replica per device."""

    devices: DeviceSet
    samples: ReplicatedBuffer
    centroids: ReplicatedBuffer
    assignments: ReplicatedBuffer
    assignments_prev: ReplicatedBuffer
    cluster_counts: ReplicatedBuffer
    distance_scratch: ReplicatedBuffer
    yinyang: YinyangBuffers | None = None
    statistics: PlanStatistics = field(default_factory=PlanStatistics)

    @property
    def yinyang_groups(self) -> int:
        """Get the number of centroid groups (0 when the variant is off)."""
        return self.yinyang.groups if self.yinyang is not None else 0


class MemoryPlanner:
    """
    Memory planner for a set of devices.

    Use as a context manager: every OWNED buffer is released when the
    block exits, whether planning and the pipeline succeeded or not.

    Example:
        >>> with MemoryPlanner(backend, devices) as planner:
        ...     plan = planner.plan(config, samples, centroids, assignments, n, f, k)
        ...     run_pipeline(plan)
    """

    def __init__(self, backend: Backend, devices: DeviceSet, verbosity: int = 0) -> None:
        """
        Initialize the memory planner.

        Args:
            backend: Backend providing device memory.
            devices: Participating devices, in order.
            verbosity: Diagnostic level.
        """
        self._backend = backend
        self._devices = devices
        self._verbosity = verbosity
        self._owned: list[DeviceBuffer] = []
        self._stats = PlanStatistics()

    def __enter__(self) -> MemoryPlanner:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.release()

    @property
    def statistics(self) -> PlanStatistics:
        """Get the statistics of the buffers planned so far."""
        return self._stats

    @property
    def owned_buffers(self) -> list[DeviceBuffer]:
        """Get the buffers this planner must release."""
        return self._owned.copy()

    def plan(
        self,
        config: ClusteringConfig,
        samples: Any,
        centroids: Any,
        assignments: Any,
        samples_size: int,
        features_size: int,
        clusters_size: int,
    ) -> MemoryPlan:
        """
        Plan every buffer of the pipeline.

        Args:
            config: Clustering configuration (``location`` says where the
                caller's buffers live: None for host memory, else a device).
            samples: Caller sample matrix.
            centroids: Caller centroid output.
            assignments: Caller assignment output.
            samples_size: Number of samples.
            features_size: Number of features.
            clusters_size: Number of clusters.

        Returns:
            The memory plan.

        Raises:
            MemoryAllocationError: If a buffer cannot be allocated.
            MemoryCopyError: If the samples cannot be replicated.
            DeviceRuntimeError: If memory statistics cannot be queried.
        """
        location = config.location
        centroids_size = clusters_size * features_size

        device_samples = self._plan_samples(samples, samples_size, features_size, location)
        device_centroids = self._alias_or_allocate(
            "centroids", centroids, (clusters_size, features_size), np.float32, location
        )
        device_assignments = self._alias_or_allocate(
            "assignments", assignments, (samples_size,), np.uint32, location
        )
        assignments_prev = self._replicate("assignments_prev", (samples_size,), np.uint32)
        cluster_counts = self._replicate("cluster_counts", (clusters_size,), np.uint32)
        distance_scratch = self._view_each(
            "distance_scratch", device_assignments, np.float32, samples_size
        )

        yinyang = None
        groups = config.yinyang_groups(clusters_size)
        if self._verbosity > 1:
            logger.debug("yinyang groups: %d", groups)
        if groups >= 1:
            passed = self._replicate("yinyang_passed", (samples_size,), np.uint32)
            group_centroids_size = groups * features_size
            if can_alias_group_centroids(samples_size, clusters_size, features_size, groups):
                group_centroids = self._view_each(
                    "yinyang_centroids", passed, np.float32, group_centroids_size
                )
            else:
                group_centroids = self._replicate(
                    "yinyang_centroids", (group_centroids_size,), np.float32
                )
            yinyang = YinyangBuffers(
                groups=groups,
                assignments=self._replicate("yinyang_assignments", (clusters_size,), np.uint32),
                bounds=self._replicate(
                    "yinyang_bounds", (samples_size * (groups + 1),), np.float32
                ),
                drifts=self._replicate(
                    "yinyang_drifts", (centroids_size + clusters_size,), np.float32
                ),
                passed=passed,
                centroids=group_centroids,
            )

        if self._verbosity > 1:
            self.log_memory_usage()

        return MemoryPlan(
            devices=self._devices,
            samples=device_samples,
            centroids=device_centroids,
            assignments=device_assignments,
            assignments_prev=assignments_prev,
            cluster_counts=cluster_counts,
            distance_scratch=distance_scratch,
            yinyang=yinyang,
            statistics=self._stats,
        )

    def release(self) -> None:
        """Release every OWNED buffer, most recent first."""
        while self._owned:
            self._owned.pop().release()

    def log_memory_usage(self) -> None:
        """Log the memory usage of every participating device."""
        for device_id in self._devices:
            info = self._backend.get_memory_info(device_id)
            used, total = info["used"], info["total"]
            percent = used * 100.0 / total if total else 0.0
            logger.debug(
                "device %d memory: used %d bytes (%.1f%%), free %d bytes, total %d bytes",
                device_id,
                used,
                percent,
                info["free"],
                total,
            )

    def _plan_samples(
        self,
        samples: Any,
        samples_size: int,
        features_size: int,
        location: int | None,
    ) -> ReplicatedBuffer:
        shape = (samples_size, features_size)
        source = samples.reshape(shape)
        buffers = []
        for device_id in self._devices:
            if device_id == location:
                buffers.append(self._borrow(device_id, source))
                continue
            buffer = self._allocate(device_id, shape, np.float32)
            if location is None:
                self._backend.upload(device_id, buffer.data, source, blocking=False)
            else:
                self._backend.copy(device_id, buffer.data, location, source, blocking=False)
            buffers.append(buffer)
        return ReplicatedBuffer("samples", buffers)

    def _alias_or_allocate(
        self,
        name: str,
        caller_array: Any,
        shape: tuple[int, ...],
        dtype: DTypeLike,
        location: int | None,
    ) -> ReplicatedBuffer:
        buffers = []
        for device_id in self._devices:
            if device_id == location:
                buffers.append(self._borrow(device_id, caller_array.reshape(shape)))
            else:
                buffers.append(self._allocate(device_id, shape, dtype))
        return ReplicatedBuffer(name, buffers)

    def _replicate(self, name: str, shape: tuple[int, ...], dtype: DTypeLike) -> ReplicatedBuffer:
        return ReplicatedBuffer(
            name, [self._allocate(device_id, shape, dtype) for device_id in self._devices]
        )

    def _view_each(
        self,
        name: str,
        parents: ReplicatedBuffer,
        dtype: DTypeLike,
        count: int,
    ) -> ReplicatedBuffer:
        views = []
        for parent in parents:
            views.append(parent.view(dtype, count))
            self._stats.views += 1
        return ReplicatedBuffer(name, views)

    def _allocate(self, device_id: int, shape: tuple[int, ...], dtype: DTypeLike) -> DeviceBuffer:
        buffer = DeviceBuffer.allocate(self._backend, device_id, shape, dtype)
        self._owned.append(buffer)
        self._stats.allocations += 1
        self._stats.owned_bytes += buffer.nbytes
        return buffer

    def _borrow(self, device_id: int, data: Any) -> DeviceBuffer:
        self._stats.borrowed += 1
        return DeviceBuffer.borrow(self._backend, device_id, data)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"MemoryPlanner(devices={list(self._devices)}, "
            f"owned={len(self._owned)}, "
            f"owned_bytes={self._stats.owned_bytes})"
        )
