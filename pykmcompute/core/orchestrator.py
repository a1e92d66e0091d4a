"""
Clustering orchestrator.

Coordinates one clustering invocation: argument validation, device
resolution, memory planning, device setup, centroid seeding,
refinement and result materialization.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from pykmcompute.core.accelerator import Accelerator, get_accelerator
from pykmcompute.core.config import ClusteringConfig, InitMethod
from pykmcompute.core.initializer import CentroidInitializer
from pykmcompute.core.materializer import ResultMaterializer
from pykmcompute.core.memory_planner import MemoryPlanner, PlanStatistics
from pykmcompute.core.topology import DeviceSet, resolve_devices, validate_arguments
from pykmcompute.engines.reference import LloydEngine
from pykmcompute.exceptions import InvalidArgumentsError, KMComputeError, ResultCode

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from pykmcompute.backends.base import Backend
    from pykmcompute.core.initializer import RandomSource
    from pykmcompute.engines.base import RefinementEngine

logger = logging.getLogger(__name__)


@dataclass
class ClusteringResult:
    """Record of a clustering invocation."""

    devices: DeviceSet = ()
    iterations: int = 0
    initial_rows: list[int] = field(default_factory=list)
    transferred: list[str] = field(default_factory=list)
    statistics: PlanStatistics = field(default_factory=PlanStatistics)


class KMeansOrchestrator:
    """
    High-level clustering orchestrator.

    Example:
        >>> orchestrator = KMeansOrchestrator(CPUBackend(device_count=2))
        >>> result = orchestrator.run(config, samples, centroids, assignments, n, f, k)
    """

    def __init__(
        self,
        backend: Backend | None = None,
        engine: RefinementEngine | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            backend: Backend to run on (the default accelerator's if None).
            engine: Arithmetic collaborator (a LloydEngine if None).
        """
        self._accelerator = Accelerator(backend) if backend is not None else get_accelerator()
        self._engine = engine if engine is not None else LloydEngine(self._accelerator.backend)

    @property
    def accelerator(self) -> Accelerator:
        """Get the accelerator."""
        return self._accelerator

    @property
    def backend(self) -> Backend:
        """Get the backend."""
        return self._accelerator.backend

    @property
    def engine(self) -> RefinementEngine:
        """Get the refinement engine."""
        return self._engine

    def run(
        self,
        config: ClusteringConfig,
        samples: Any,
        centroids: Any,
        assignments: Any,
        samples_size: int,
        features_size: int,
        clusters_size: int,
        *,
        rng: RandomSource | None = None,
    ) -> ClusteringResult:
        """
        Cluster the samples into the caller's centroid and assignment buffers.

        Args:
            config: Clustering configuration.
            samples: Sample matrix, samples_size x features_size float32.
            centroids: Output centroids, clusters_size x features_size float32.
            assignments: Output assignments, samples_size uint32.
            samples_size: Number of samples.
            features_size: Number of features.
            clusters_size: Number of clusters.
            rng: Random source for seeding (seeded from ``config.seed`` if None).

        Returns:
            ClusteringResult record.

        Raises:
            KMComputeError: On the first failing step.
        """
        verbosity = config.verbosity
        if verbosity > 1:
            logger.debug(
                "arguments: %s samples=%d features=%d clusters=%d",
                config,
                samples_size,
                features_size,
                clusters_size,
            )
        validate_arguments(
            config,
            samples_size,
            features_size,
            clusters_size,
            samples,
            centroids,
            assignments,
            self._accelerator.device_count,
        )
        devices = resolve_devices(config.device, self._accelerator, verbosity)
        backend = self.backend
        engine = self._engine

        with MemoryPlanner(backend, devices, verbosity) as planner:
            plan = planner.plan(
                config, samples, centroids, assignments, samples_size, features_size, clusters_size
            )
            engine.configure_devices(
                samples_size, features_size, clusters_size, plan.yinyang_groups, devices, verbosity
            )

            def score(candidate_count: int, host_distances: NDArray[np.float32]) -> float:
                return engine.score_candidates(
                    samples_size,
                    features_size,
                    candidate_count,
                    verbosity,
                    devices,
                    plan.samples,
                    plan.centroids,
                    plan.distance_scratch,
                    host_distances,
                )

            initializer = CentroidInitializer(
                backend, devices, rng, seed=config.seed, verbosity=verbosity
            )
            initial_rows = initializer.initialize(
                config.init, plan.samples, plan.centroids, scorer=score
            )
            iterations = engine.refine(
                config.tolerance,
                plan.yinyang_groups,
                samples_size,
                clusters_size,
                features_size,
                verbosity,
                devices,
                plan.samples,
                plan.centroids,
                plan.cluster_counts,
                plan.assignments_prev,
                plan.assignments,
                plan.yinyang,
            )
            transferred = ResultMaterializer(backend, verbosity).materialize(
                plan, centroids, assignments, config.location
            )

        return ClusteringResult(
            devices=devices,
            iterations=iterations,
            initial_rows=initial_rows,
            transferred=transferred,
            statistics=plan.statistics,
        )

    def __repr__(self) -> str:
        """String representation."""
        return f"KMeansOrchestrator(accelerator={self._accelerator!r}, engine={self._engine!r})"


def cluster(
    use_weighted_init: bool,
    tolerance: float,
    accelerated_fraction: float,
    samples_size: int,
    features_size: int,
    clusters_size: int,
    seed: int | None,
    device_selector: int,
    verbosity: int,
    location: int | None,
    samples: Any,
    centroids: Any,
    assignments: Any,
    *,
    backend: Backend | None = None,
    engine: RefinementEngine | None = None,
    rng: RandomSource | None = None,
) -> ResultCode:
    """
    Run K-means and report the outcome as a result code.

    Args:
        use_weighted_init: K-means++ seeding if True, uniform otherwise.
        tolerance: Fraction of reassigned samples at which to stop.
        accelerated_fraction: Yinyang groups as a fraction of clusters.
        samples_size: Number of samples.
        features_size: Number of features.
        clusters_size: Number of clusters.
        seed: Seed of the random source.
        device_selector: Bitmask of the devices to use.
        verbosity: Diagnostic level.
        location: Device holding the caller's buffers, None (or negative)
            for host memory.
        samples: Sample matrix.
        centroids: Output centroids.
        assignments: Output assignments.
        backend: Backend to run on.
        engine: Arithmetic collaborator.
        rng: Random source overriding ``seed``.

    Returns:
        ResultCode.SUCCESS or the code of the first failure.
    """
    try:
        config = ClusteringConfig(
            init=InitMethod.parse(use_weighted_init),
            tolerance=tolerance,
            yinyang_t=accelerated_fraction,
            seed=seed,
            device=device_selector,
            verbosity=verbosity,
            location=location,
        )
        KMeansOrchestrator(backend, engine).run(
            config,
            samples,
            centroids,
            assignments,
            samples_size,
            features_size,
            clusters_size,
            rng=rng,
        )
    except KMComputeError as e:
        if verbosity > 0:
            logger.info("clustering failed: %s", e)
        return e.code
    if verbosity > 1:
        logger.debug("return %s", ResultCode.SUCCESS.name)
    return ResultCode.SUCCESS


def kmeans(
    samples: ArrayLike,
    clusters: int,
    *,
    tolerance: float = 0.01,
    init: InitMethod | str = InitMethod.KMEANS_PLUS_PLUS,
    yinyang_t: float = 0.1,
    seed: int | None = None,
    device: int = 0,
    verbosity: int = 0,
    backend: Backend | None = None,
    engine: RefinementEngine | None = None,
) -> tuple[NDArray[np.float32], NDArray[np.uint32]]:
    """
    Cluster host samples and return host results.

    Args:
        samples: 2-D sample matrix (converted to float32).
        clusters: Number of clusters.
        tolerance: Fraction of reassigned samples at which to stop.
        init: ``"kmeans++"`` or ``"random"``.
        yinyang_t: Yinyang groups as a fraction of clusters.
        seed: Seed of the random source.
        device: Device bitmask, 0 for every device.
        verbosity: Diagnostic level.
        backend: Backend to run on.
        engine: Arithmetic collaborator.

    Returns:
        Tuple of (centroids, assignments).

    Raises:
        KMComputeError: If clustering fails.
    """
    host_samples = np.ascontiguousarray(samples, dtype=np.float32)
    if host_samples.ndim != 2:
        raise InvalidArgumentsError("samples.ndim", host_samples.ndim, "must be 2")
    samples_size, features_size = host_samples.shape

    orchestrator = KMeansOrchestrator(backend, engine)
    if device == 0:
        device = orchestrator.accelerator.all_devices_selector()
    config = ClusteringConfig(
        init=init,
        tolerance=tolerance,
        yinyang_t=yinyang_t,
        seed=seed,
        device=device,
        verbosity=verbosity,
    )
    centroids = np.empty((clusters, features_size), dtype=np.float32)
    assignments = np.empty(samples_size, dtype=np.uint32)
    orchestrator.run(
        config, host_samples, centroids, assignments, samples_size, features_size, clusters
    )
    return centroids, assignments
