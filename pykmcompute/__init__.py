"""
PyKMCompute - multi-device K-means clustering.

Host-side orchestration of K-means on one or more compute devices:
device selection, per-device memory planning with caller-buffer
aliasing, uniform and K-means++ seeding, and result transfer.

Core Features:
    - Device selection by bitmask with activation checks
    - Owned/borrowed device buffers with guaranteed release
    - Yinyang scratch planning with buffer reuse
    - K-means++ seeding against a pluggable distance engine
    - CPU Fallback: Virtual devices on host memory when CUDA is unavailable

Quick Start:
    >>> import numpy as np
    >>> from pykmcompute import kmeans
    >>>
    >>> samples = np.random.rand(10000, 8).astype(np.float32)
    >>> centroids, assignments = kmeans(samples, 16, seed=3)
"""

from pykmcompute.backends.cpu import CPUBackend
from pykmcompute.backends.cuda import CUDABackend
from pykmcompute.core.accelerator import Accelerator
from pykmcompute.core.config import ClusteringConfig, InitMethod
from pykmcompute.core.orchestrator import KMeansOrchestrator, cluster, kmeans
from pykmcompute.engines.base import RefinementEngine
from pykmcompute.engines.reference import LloydEngine
from pykmcompute.exceptions import KMComputeError, ResultCode

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Entry points
    "cluster",
    "kmeans",
    "KMeansOrchestrator",
    "ClusteringConfig",
    "InitMethod",
    "ResultCode",
    "KMComputeError",
    # Devices
    "Accelerator",
    "CPUBackend",
    "CUDABackend",
    # Engines
    "RefinementEngine",
    "LloydEngine",
]
