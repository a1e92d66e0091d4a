"""
Centroid initialization.

Seeds the centroid matrix on every participating device, either with
uniformly sampled rows or with weighted K-means++ sampling.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np
from numba import njit, prange

from pykmcompute.core.config import InitMethod

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pykmcompute.backends.base import Backend
    from pykmcompute.core.device_buffer import ReplicatedBuffer
    from pykmcompute.core.topology import DeviceSet

logger = logging.getLogger(__name__)

# Random seeding blocks on every PROGRESS_INTERVAL-th copy to bound the
# number of queued asynchronous transfers.
PROGRESS_INTERVAL = 1000

# Below this approximate index the weighted choice scans from the start.
LINEAR_SCAN_THRESHOLD = 100

# (candidate_count, host_distances) -> total distance
CandidateScorer = Callable[[int, Any], float]


class RandomSource(Protocol):
    """The subset of numpy.random.Generator used for seeding."""

    def integers(self, low: int, high: int | None = None) -> Any: ...

    def random(self) -> float: ...


@njit(parallel=True)
def _partial_sum(distances: Any, stop: int) -> float:
    total = 0.0
    for t in prange(stop):
        total += distances[t]
    return total


@njit
def _scan_forward(distances: Any, start: int, acc: float, target: float) -> int:
    n = distances.shape[0]
    for j in range(start, n):
        acc += distances[j]
        if acc >= target:
            return j
    return n - 1


@njit
def _scan_backward(distances: Any, start: int, acc: float, target: float) -> int:
    j = start
    while j > 0 and acc >= target:
        j -= 1
        acc -= distances[j]
    return j


def weighted_choice(distances: NDArray[np.floating[Any]], choice: float, total: float) -> int:
    """
    Pick a sample with probability proportional to its distance.

    Returns the smallest index ``j`` such that ``sum(distances[:j + 1])``
    reaches ``choice * total``. The search starts at ``choice * n``, the
    expected position for evenly spread distances: a parallel partial sum
    up to that point decides whether to continue forward or walk back.

    Args:
        distances: Non-negative per-sample distances.
        choice: Uniform draw in [0, 1).
        total: Sum of ``distances``.

    Returns:
        Selected sample index.
    """
    distances = np.ascontiguousarray(distances)
    n = distances.shape[0]
    target = choice * total
    approx = min(int(choice * n), n - 1)
    if approx < LINEAR_SCAN_THRESHOLD:
        return int(_scan_forward(distances, 0, 0.0, target))

    partial = _partial_sum(distances, approx)
    if partial < target:
        return int(_scan_forward(distances, approx, partial, target))
    return int(_scan_backward(distances, approx, partial, target))


class CentroidInitializer:
    """
    Centroid initializer for a set of devices.

    The random source is owned by the initializer, so a seeded generator
    (or a mock) makes the selected rows reproducible.

    Example:
        >>> initializer = CentroidInitializer(backend, devices, seed=42)
        >>> rows = initializer.initialize(InitMethod.RANDOM, plan.samples, plan.centroids)
    """

    def __init__(
        self,
        backend: Backend,
        devices: DeviceSet,
        rng: RandomSource | None = None,
        *,
        seed: int | None = None,
        verbosity: int = 0,
    ) -> None:
        """
        Initialize the centroid initializer.

        Args:
            backend: Backend performing the row copies.
            devices: Participating devices, in order.
            rng: Random source (a new numpy Generator if None).
            seed: Seed for the generator created when ``rng`` is None.
            verbosity: Diagnostic level.
        """
        self._backend = backend
        self._devices = devices
        self._rng = rng if rng is not None else np.random.default_rng(seed)
        self._verbosity = verbosity
        self._last_choices: list[int] = []

    @property
    def rng(self) -> RandomSource:
        """Get the random source."""
        return self._rng

    @property
    def last_choices(self) -> list[int]:
        """Get the sample rows chosen by the last initialization."""
        return self._last_choices.copy()

    def initialize(
        self,
        method: InitMethod | str,
        samples: ReplicatedBuffer,
        centroids: ReplicatedBuffer,
        *,
        scorer: CandidateScorer | None = None,
    ) -> list[int]:
        """
        Seed the centroids on every device.

        Args:
            method: Initialization method.
            samples: Sample matrix replicas (samples_size x features_size).
            centroids: Centroid matrix replicas (clusters_size x features_size).
            scorer: Distance-sum collaborator, required for K-means++.

        Returns:
            The sample row copied into each centroid row.
        """
        method = InitMethod.parse(method)
        if method is InitMethod.KMEANS_PLUS_PLUS:
            if scorer is None:
                raise ValueError("K-means++ seeding requires a candidate scorer")
            self._last_choices = self._init_plus_plus(samples, centroids, scorer)
        else:
            self._last_choices = self._init_random(samples, centroids)

        for device_id in self._devices:
            self._backend.synchronize(device_id)
        if self._verbosity > 0:
            logger.info("centroid initialization done")
        return self.last_choices

    def _init_random(self, samples: ReplicatedBuffer, centroids: ReplicatedBuffer) -> list[int]:
        samples_size = samples.primary.shape[0]
        clusters_size = centroids.primary.shape[0]
        if self._verbosity > 0:
            logger.info("randomly picking initial centroids...")

        choices = []
        for c in range(clusters_size):
            row = int(self._rng.integers(0, samples_size))
            blocking = (c + 1) % PROGRESS_INTERVAL == 0 or c == clusters_size - 1
            if blocking and self._verbosity > 0:
                logger.info("centroid #%d", c + 1)
            self._copy_row(samples, centroids, row, c, blocking=blocking)
            choices.append(row)
        return choices

    def _init_plus_plus(
        self,
        samples: ReplicatedBuffer,
        centroids: ReplicatedBuffer,
        scorer: CandidateScorer,
    ) -> list[int]:
        samples_size = samples.primary.shape[0]
        clusters_size = centroids.primary.shape[0]
        if self._verbosity > 0:
            logger.info("performing kmeans++...")

        first = int(self._rng.integers(0, samples_size))
        self._copy_row(samples, centroids, first, 0, blocking=False)
        choices = [first]

        host_distances = np.empty(samples_size, dtype=np.float32)
        for i in range(1, clusters_size):
            if self._verbosity > 1 or (
                self._verbosity > 0
                and (clusters_size < 100 or i % (clusters_size // 100) == 0)
            ):
                logger.info("step %d", i)

            total = float(scorer(i, host_distances))
            if not math.isfinite(total):
                raise FloatingPointError(f"distance sum is not finite at step {i}: {total}")

            row = weighted_choice(host_distances, float(self._rng.random()), total)
            self._copy_row(samples, centroids, row, i, blocking=False)
            choices.append(row)
        return choices

    def _copy_row(
        self,
        samples: ReplicatedBuffer,
        centroids: ReplicatedBuffer,
        src_row: int,
        dst_row: int,
        *,
        blocking: bool,
    ) -> None:
        for source, target in zip(samples, centroids):
            self._backend.copy(
                target.device_id,
                target.data[dst_row],
                source.device_id,
                source.data[src_row],
                blocking=blocking,
            )

    def __repr__(self) -> str:
        """String representation."""
        return f"CentroidInitializer(devices={list(self._devices)})"
