"""
Core abstractions for PyKMCompute.
"""

from pykmcompute.core.accelerator import Accelerator
from pykmcompute.core.config import ClusteringConfig, InitMethod
from pykmcompute.core.device_buffer import BufferView, DeviceBuffer, Ownership, ReplicatedBuffer
from pykmcompute.core.initializer import CentroidInitializer
from pykmcompute.core.materializer import ResultMaterializer
from pykmcompute.core.memory_planner import MemoryPlan, MemoryPlanner
from pykmcompute.core.orchestrator import KMeansOrchestrator, cluster, kmeans

__all__ = [
    "Accelerator",
    "ClusteringConfig",
    "InitMethod",
    "DeviceBuffer",
    "BufferView",
    "Ownership",
    "ReplicatedBuffer",
    "MemoryPlanner",
    "MemoryPlan",
    "CentroidInitializer",
    "ResultMaterializer",
    "KMeansOrchestrator",
    "cluster",
    "kmeans",
]
