"""
Result materialization.

Copies the final centroids and assignments from the primary device to
the location the caller asked for.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pykmcompute.exceptions import KMComputeError, MemoryCopyError

if TYPE_CHECKING:
    from pykmcompute.backends.base import Backend
    from pykmcompute.core.device_buffer import ReplicatedBuffer
    from pykmcompute.core.memory_planner import MemoryPlan

logger = logging.getLogger(__name__)


class ResultMaterializer:
    """Transfers results out of the device buffers used for computation."""

    def __init__(self, backend: Backend, verbosity: int = 0) -> None:
        """
        Initialize the result materializer.

        Args:
            backend: Backend performing the transfers.
            verbosity: Diagnostic level.
        """
        self._backend = backend
        self._verbosity = verbosity

    def materialize(
        self,
        plan: MemoryPlan,
        centroids: Any,
        assignments: Any,
        location: int | None,
    ) -> list[str]:
        """
        Copy the results into the caller's buffers.

        A buffer is skipped when the primary device already computed into
        the caller's memory.

        Args:
            plan: Memory plan used for the computation.
            centroids: Caller centroid buffer.
            assignments: Caller assignment buffer.
            location: None for host memory, else the caller's device.

        Returns:
            Names of the buffers that were transferred.

        Raises:
            MemoryCopyError: If a transfer fails.
        """
        transferred = []
        for source, target in ((plan.centroids, centroids), (plan.assignments, assignments)):
            if source.primary.is_borrowed:
                continue
            self._transfer(source, target, location)
            transferred.append(source.name)

        if self._verbosity > 1:
            logger.debug("materialized %s", transferred or "nothing")
        return transferred

    def _transfer(self, source: ReplicatedBuffer, target: Any, location: int | None) -> None:
        primary = source.primary
        try:
            dst = target.reshape(primary.shape)
            if location is None:
                self._backend.download(primary.device_id, dst, primary.data)
            else:
                self._backend.copy(location, dst, primary.device_id, primary.data)
        except MemoryCopyError:
            raise
        except (KMComputeError, ValueError, TypeError) as e:
            direction = "device->host" if location is None else "peer"
            raise MemoryCopyError(direction, e) from e
