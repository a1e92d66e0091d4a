"""
Reference refinement engine.

Implements the engine interface with plain Lloyd iterations written
against the backend's array module, so the same code runs on NumPy
(CPU backend) and CuPy (CUDA backend). Samples are split into
contiguous slices, one per device.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np

from pykmcompute.engines.base import RefinementEngine

if TYPE_CHECKING:
    from types import ModuleType

    from numpy.typing import NDArray

    from pykmcompute.backends.base import Backend
    from pykmcompute.core.device_buffer import ReplicatedBuffer
    from pykmcompute.core.memory_planner import YinyangBuffers
    from pykmcompute.core.topology import DeviceSet

logger = logging.getLogger(__name__)

# Upper bound on the elements of one samples x centroids x features block.
_CHUNK_ELEMENTS = 1 << 22


def partition(samples_size: int, parts: int) -> list[tuple[int, int]]:
    """Split ``range(samples_size)`` into ``parts`` contiguous slices."""
    bounds = [samples_size * i // parts for i in range(parts + 1)]
    return list(zip(bounds[:-1], bounds[1:]))


def nearest_centroids(xp: ModuleType, samples: Any, centroids: Any) -> tuple[Any, Any]:
    """
    Find the nearest centroid of every sample.

    Args:
        xp: Array module of the arrays.
        samples: Sample matrix (n x f).
        centroids: Centroid matrix (k x f).

    Returns:
        Squared distances to the nearest centroid and its index.
    """
    n, f = samples.shape
    k = centroids.shape[0]
    best = xp.full(n, xp.inf, dtype=samples.dtype)
    best_idx = xp.zeros(n, dtype=xp.int64)
    rows = xp.arange(n)
    step = max(1, _CHUNK_ELEMENTS // max(1, n * f))
    for start in range(0, k, step):
        block = centroids[start : start + step]
        diff = samples[:, None, :] - block[None, :, :]
        d2 = (diff * diff).sum(axis=2)
        idx = d2.argmin(axis=1)
        val = d2[rows, idx]
        better = val < best
        best = xp.where(better, val, best)
        best_idx = xp.where(better, idx + start, best_idx)
    return best, best_idx


class LloydEngine(RefinementEngine):
    """
    Lloyd's algorithm over the devices of a backend.

    Convergence is reached when the fraction of reassigned samples in an
    iteration is at most ``tolerance``. Empty clusters keep their previous
    centroid. The accelerated-variant scratch buffers are accepted but
    plain Lloyd steps are run.

    Example:
        >>> engine = LloydEngine(backend, max_iterations=100)
    """

    def __init__(self, backend: Backend, max_iterations: int = 300) -> None:
        """
        Initialize the engine.

        Args:
            backend: Backend owning the device buffers.
            max_iterations: Iteration cap for ``refine``.
        """
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {max_iterations}")
        self._backend = backend
        self._max_iterations = max_iterations
        self._slices: list[tuple[int, int]] = []

    @property
    def max_iterations(self) -> int:
        """Get the iteration cap."""
        return self._max_iterations

    @property
    def slices(self) -> list[tuple[int, int]]:
        """Get the sample slice handled by each device."""
        return self._slices.copy()

    def configure_devices(
        self,
        samples_size: int,
        features_size: int,
        clusters_size: int,
        yinyang_groups: int,
        devices: DeviceSet,
        verbosity: int,
    ) -> None:
        """Assign each device a contiguous slice of the samples."""
        self._slices = partition(samples_size, len(devices))
        if verbosity > 1:
            for device_id, (lo, hi) in zip(devices, self._slices):
                logger.debug("device %d: samples [%d, %d)", device_id, lo, hi)
        if yinyang_groups and verbosity > 0:
            logger.info("%d yinyang groups requested, running Lloyd steps", yinyang_groups)

    def score_candidates(
        self,
        samples_size: int,
        features_size: int,
        candidate_count: int,
        verbosity: int,
        devices: DeviceSet,
        samples: ReplicatedBuffer,
        centroids: ReplicatedBuffer,
        distance_scratch: ReplicatedBuffer,
        host_distances: NDArray[np.float32],
    ) -> float:
        """Compute nearest-candidate distances slice by slice on each device."""
        slices = self._slices_for(samples_size, devices)
        for index, device_id in enumerate(devices):
            lo, hi = slices[index]
            if lo == hi:
                continue
            xp = self._backend.array_module(device_id)
            scratch = distance_scratch[index].data
            with self._backend.device_context(device_id):
                dists, _ = nearest_centroids(
                    xp, samples[index].data[lo:hi], centroids[index].data[:candidate_count]
                )
                scratch[lo:hi] = dists
            self._backend.download(device_id, host_distances[lo:hi], scratch[lo:hi])

        total = float(host_distances.sum(dtype=np.float64))
        if verbosity > 1:
            logger.debug("candidates %d: distance sum %f", candidate_count, total)
        return total

    def refine(
        self,
        tolerance: float,
        yinyang_groups: int,
        samples_size: int,
        clusters_size: int,
        features_size: int,
        verbosity: int,
        devices: DeviceSet,
        samples: ReplicatedBuffer,
        centroids: ReplicatedBuffer,
        cluster_counts: ReplicatedBuffer,
        assignments_prev: ReplicatedBuffer,
        assignments: ReplicatedBuffer,
        yinyang: YinyangBuffers | None,
    ) -> int:
        """Run Lloyd iterations until the reassignment ratio drops to ``tolerance``."""
        slices = self._slices_for(samples_size, devices)
        iteration = 0
        while True:
            iteration += 1
            sums = np.zeros((clusters_size, features_size), dtype=np.float64)
            counts = np.zeros(clusters_size, dtype=np.int64)
            changed = 0
            for index, device_id in enumerate(devices):
                lo, hi = slices[index]
                if lo == hi:
                    continue
                device_sums, device_counts, device_changed = self._assign(
                    device_id,
                    samples[index].data[lo:hi],
                    centroids[index].data,
                    assignments[index].data[lo:hi],
                    assignments_prev[index].data[lo:hi],
                    clusters_size,
                    first=iteration == 1,
                )
                sums += device_sums
                counts += device_counts
                changed += device_changed

            self._update_centroids(devices, centroids, cluster_counts, sums, counts)
            if verbosity > 0:
                logger.info("iteration %d: %d reassignments", iteration, changed)
            if changed <= tolerance * samples_size or iteration >= self._max_iterations:
                break

        self._gather_assignments(devices, assignments, slices)
        return iteration

    def _assign(
        self,
        device_id: int,
        samples: Any,
        centroids: Any,
        assignments: Any,
        assignments_prev: Any,
        clusters_size: int,
        *,
        first: bool,
    ) -> tuple[NDArray[np.float64], NDArray[np.int64], int]:
        xp = self._backend.array_module(device_id)
        with self._backend.device_context(device_id):
            _, labels = nearest_centroids(xp, samples, centroids)
            if first:
                changed = labels.shape[0]
            else:
                changed = int((labels != assignments).sum())
            assignments_prev[...] = assignments
            assignments[...] = labels.astype(xp.uint32)

            device_counts = xp.bincount(labels, minlength=clusters_size)
            device_sums = xp.stack(
                [
                    xp.bincount(labels, weights=samples[:, j], minlength=clusters_size)
                    for j in range(samples.shape[1])
                ],
                axis=1,
            )
        return (
            self._backend.to_host(device_id, device_sums).astype(np.float64),
            self._backend.to_host(device_id, device_counts).astype(np.int64),
            changed,
        )

    def _update_centroids(
        self,
        devices: DeviceSet,
        centroids: ReplicatedBuffer,
        cluster_counts: ReplicatedBuffer,
        sums: NDArray[np.float64],
        counts: NDArray[np.int64],
    ) -> None:
        primary = centroids.primary
        host_centroids = self._backend.to_host(primary.device_id, primary.data)
        nonempty = counts > 0
        host_centroids[nonempty] = (sums[nonempty] / counts[nonempty, None]).astype(np.float32)
        host_counts = counts.astype(np.uint32)
        for index, device_id in enumerate(devices):
            self._backend.upload(device_id, centroids[index].data, host_centroids)
            self._backend.upload(device_id, cluster_counts[index].data, host_counts)

    def _gather_assignments(
        self,
        devices: DeviceSet,
        assignments: ReplicatedBuffer,
        slices: list[tuple[int, int]],
    ) -> None:
        for src_index, src_device in enumerate(devices):
            lo, hi = slices[src_index]
            if lo == hi:
                continue
            for dst_index, dst_device in enumerate(devices):
                if dst_index == src_index:
                    continue
                self._backend.copy(
                    dst_device,
                    assignments[dst_index].data[lo:hi],
                    src_device,
                    assignments[src_index].data[lo:hi],
                )

    def _slices_for(self, samples_size: int, devices: DeviceSet) -> list[tuple[int, int]]:
        if len(self._slices) != len(devices) or (self._slices and self._slices[-1][1] != samples_size):
            self._slices = partition(samples_size, len(devices))
        return self._slices

    def __repr__(self) -> str:
        """String representation."""
        return f"LloydEngine(max_iterations={self._max_iterations})"
