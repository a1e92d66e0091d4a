"""
Accelerator abstraction.

Provides device discovery, activation, and properties access on top of
a compute backend.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from pykmcompute.backends.base import Backend, BackendType
from pykmcompute.backends.cpu import CPUBackend
from pykmcompute.backends.cuda import CUDABackend, _check_cuda_available

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceProperties:
    """Properties of a compute device."""

    device_id: int
    backend_type: BackendType
    name: str
    total_memory: int  # bytes, 0 when unknown

    @property
    def total_memory_gb(self) -> float:
        """Get total memory in GB."""
        return self.total_memory / (1024**3)


class Accelerator:
    """
    Accelerator abstraction.

    Wraps a backend and exposes its devices. Without an explicit backend,
    CUDA is used when available and a single CPU device otherwise.
    """

    def __init__(self, backend: Backend | None = None) -> None:
        """
        Initialize the accelerator.

        Args:
            backend: Backend to drive (auto-detected if None).
        """
        if backend is None:
            backend = CUDABackend() if _check_cuda_available() else CPUBackend()
        self._backend = backend
        self._devices = self._discover_devices()

    def _discover_devices(self) -> list[DeviceProperties]:
        """Discover the devices exposed by the backend."""
        devices = []
        for device_id in range(self._backend.device_count):
            name = f"{self._backend.backend_type.name} device {device_id}"
            total_memory = 0
            if self._backend.backend_type == BackendType.CUDA:
                try:
                    import cupy as cp

                    props = cp.cuda.runtime.getDeviceProperties(device_id)
                    name = props["name"].decode() if isinstance(props["name"], bytes) else props["name"]
                    total_memory = props["totalGlobalMem"]
                except Exception as e:
                    logger.debug("failed to query properties of device %d: %s", device_id, e)
            devices.append(
                DeviceProperties(
                    device_id=device_id,
                    backend_type=self._backend.backend_type,
                    name=name,
                    total_memory=total_memory,
                )
            )
        return devices

    @property
    def backend(self) -> Backend:
        """Get the backend."""
        return self._backend

    @property
    def cuda_available(self) -> bool:
        """Check if the accelerator drives CUDA devices."""
        return self._backend.backend_type == BackendType.CUDA

    @property
    def device_count(self) -> int:
        """Get the number of available devices."""
        return len(self._devices)

    @property
    def devices(self) -> list[DeviceProperties]:
        """Get all available devices."""
        return self._devices.copy()

    def get_device(self, device_id: int) -> DeviceProperties:
        """Get properties for a specific device."""
        if device_id < 0 or device_id >= len(self._devices):
            raise ValueError(
                f"Invalid device_id: {device_id}. Valid range: 0-{len(self._devices) - 1}"
            )
        return self._devices[device_id]

    def activate(self, device_id: int) -> bool:
        """Make a device current; False if it cannot be activated."""
        return self._backend.activate(device_id)

    def all_devices_selector(self) -> int:
        """Get the selector bitmask with every device bit set."""
        return (1 << self.device_count) - 1

    def synchronize(self, device_id: int) -> None:
        """Synchronize a device."""
        self._backend.synchronize(device_id)

    def get_memory_info(self, device_id: int) -> dict[str, int]:
        """Get memory information for a device."""
        return self._backend.get_memory_info(device_id)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"Accelerator(backend={self._backend.backend_type.name}, "
            f"devices={self.device_count})"
        )


_default_accelerator: Accelerator | None = None


# Convenience functions
def get_accelerator() -> Accelerator:
    """Get the process-wide default accelerator."""
    global _default_accelerator
    if _default_accelerator is None:
        _default_accelerator = Accelerator()
    return _default_accelerator


def cuda_available() -> bool:
    """Check if CUDA is available."""
    return _check_cuda_available()
