"""
Refinement engine interface.

The orchestration layer drives the per-sample arithmetic through this
interface: device setup, K-means++ candidate scoring, and the iterative
refinement. Engines raise KMComputeError subclasses on failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from pykmcompute.core.device_buffer import ReplicatedBuffer
    from pykmcompute.core.memory_planner import YinyangBuffers
    from pykmcompute.core.topology import DeviceSet


class RefinementEngine(ABC):
    """Abstract base class for the arithmetic collaborators of the pipeline."""

    @abstractmethod
    def configure_devices(
        self,
        samples_size: int,
        features_size: int,
        clusters_size: int,
        yinyang_groups: int,
        devices: DeviceSet,
        verbosity: int,
    ) -> None:
        """
        Prepare per-device execution parameters.

        Called once, after memory planning and before seeding.
        """
        ...

    @abstractmethod
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
        """
        Score every sample against the first ``candidate_count`` centroids.

        Writes each sample's squared distance to its nearest candidate into
        ``host_distances``, aggregated over all devices.

        Returns:
            The sum of all distances.
        """
        ...

    @abstractmethod
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
        """
        Iterate until convergence or the iteration cap.

        Centroids, cluster counts and assignments are left identical on
        every device.

        Returns:
            The number of iterations run.
        """
        ...
