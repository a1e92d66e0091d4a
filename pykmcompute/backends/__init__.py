"""
Backend implementations for PyKMCompute.
"""

from pykmcompute.backends.base import Backend, BackendType
from pykmcompute.backends.cpu import CPUBackend
from pykmcompute.backends.cuda import CUDABackend

__all__ = [
    "Backend",
    "BackendType",
    "CPUBackend",
    "CUDABackend",
]
