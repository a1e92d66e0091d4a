"""
CPU backend for PyKMCompute.

Provides a host-memory implementation of the backend interface that
models several independent devices. Useful for testing and development
without GPU.
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import numpy as np

from pykmcompute.backends.base import Backend, BackendType
from pykmcompute.exceptions import DeviceRuntimeError, MemoryAllocationError, MemoryCopyError

if TYPE_CHECKING:
    from types import ModuleType

    from numpy.typing import DTypeLike, NDArray


class CPUBackend(Backend):
    """
    CPU backend implementation.

    Each virtual device owns separate NumPy allocations, so aliasing and
    replication behave as they would with real device address spaces.
    Asynchronous operations complete immediately but are counted as
    pending until the next blocking operation on the same device.

    Example:
        >>> backend = CPUBackend(device_count=2)
        >>> arr = backend.allocate(1, (1000,), np.float32)
        >>> backend.upload(1, arr, np.ones(1000, dtype=np.float32))
    """

    def __init__(
        self,
        device_count: int = 1,
        *,
        unavailable: Iterable[int] = (),
        memory_limit: int | None = None,
    ) -> None:
        """
        Initialize the CPU backend.

        Args:
            device_count: Number of virtual devices.
            unavailable: Device ids that refuse activation.
            memory_limit: Per-device capacity in bytes (None for unlimited).
        """
        if device_count < 1:
            raise ValueError(f"device_count must be positive, got {device_count}")
        self._device_count = device_count
        self._unavailable = frozenset(unavailable)
        self._memory_limit = memory_limit
        self._current_device = 0
        self._live: list[dict[int, int]] = [{} for _ in range(device_count)]
        self._allocation_counts = [0] * device_count
        self._free_counts = [0] * device_count
        self._pending = [0] * device_count
        self._max_pending = [0] * device_count

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CPU

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return True  # CPU is always available

    @property
    def device_count(self) -> int:
        """Get the number of virtual devices."""
        return self._device_count

    @property
    def current_device(self) -> int:
        """Get the last successfully activated device."""
        return self._current_device

    def activate(self, device_id: int) -> bool:
        """Activate a virtual device."""
        if not 0 <= device_id < self._device_count or device_id in self._unavailable:
            return False
        self._current_device = device_id
        return True

    def device_context(self, device_id: int) -> contextlib.nullcontext[None]:
        """Host arrays need no device scoping."""
        return contextlib.nullcontext()

    def array_module(self, device_id: int) -> ModuleType:
        """NumPy backs every virtual device."""
        return np

    def allocate(self, device_id: int, shape: tuple[int, ...], dtype: DTypeLike) -> NDArray[Any]:
        """
        Allocate a NumPy array on a virtual device.

        Raises:
            MemoryAllocationError: If the device memory limit would be exceeded.
        """
        self._check_device(device_id)
        dtype = np.dtype(dtype)
        nbytes = int(np.prod(shape, dtype=np.int64)) * dtype.itemsize
        if self._memory_limit is not None:
            used = sum(self._live[device_id].values())
            if used + nbytes > self._memory_limit:
                raise MemoryAllocationError(device_id, nbytes)

        array = np.empty(shape, dtype=dtype)
        self._live[device_id][id(array)] = nbytes
        self._allocation_counts[device_id] += 1
        return array

    def free(self, device_id: int, array: NDArray[Any]) -> None:
        """Forget an allocation; NumPy reclaims the memory."""
        if self._live[device_id].pop(id(array), None) is not None:
            self._free_counts[device_id] += 1

    def upload(
        self,
        device_id: int,
        dst: NDArray[Any],
        host_src: NDArray[Any],
        *,
        blocking: bool = True,
    ) -> None:
        """Copy host data into a virtual device array."""
        self._transfer(device_id, dst, host_src, "host->device", blocking)

    def download(
        self,
        device_id: int,
        host_dst: NDArray[Any],
        src: NDArray[Any],
        *,
        blocking: bool = True,
    ) -> None:
        """Copy a virtual device array into host memory."""
        self._transfer(device_id, host_dst, src, "device->host", blocking)

    def copy(
        self,
        dst_device: int,
        dst: NDArray[Any],
        src_device: int,
        src: NDArray[Any],
        *,
        blocking: bool = True,
    ) -> None:
        """Copy between virtual device arrays."""
        direction = "device->device" if dst_device == src_device else "peer"
        self._transfer(dst_device, dst, src, direction, blocking)
        if src_device != dst_device and blocking:
            self.synchronize(src_device)

    def synchronize(self, device_id: int) -> None:
        """Drain the pending queue of a virtual device."""
        self._pending[device_id] = 0

    def get_memory_info(self, device_id: int) -> dict[str, int]:
        """Report the memory held by live allocations on a virtual device."""
        if not 0 <= device_id < self._device_count:
            raise DeviceRuntimeError(device_id, "memory query")
        used = sum(self._live[device_id].values())
        total = self._memory_limit if self._memory_limit is not None else used
        return {
            "free": total - used,
            "total": total,
            "used": used,
        }

    def allocation_count(self, device_id: int) -> int:
        """Get the number of allocations ever made on a device."""
        return self._allocation_counts[device_id]

    def free_count(self, device_id: int) -> int:
        """Get the number of allocations released on a device."""
        return self._free_counts[device_id]

    def live_allocations(self, device_id: int | None = None) -> int:
        """Get the number of allocations not yet freed."""
        if device_id is None:
            return sum(len(live) for live in self._live)
        return len(self._live[device_id])

    def pending(self, device_id: int) -> int:
        """Get the number of asynchronous operations not yet synchronized."""
        return self._pending[device_id]

    def max_pending(self, device_id: int) -> int:
        """Get the deepest asynchronous queue observed on a device."""
        return self._max_pending[device_id]

    def _transfer(
        self,
        device_id: int,
        dst: NDArray[Any],
        src: NDArray[Any],
        direction: str,
        blocking: bool,
    ) -> None:
        try:
            np.copyto(dst, src, casting="no")
        except (TypeError, ValueError) as e:
            raise MemoryCopyError(direction, e) from e

        if blocking:
            self.synchronize(device_id)
        else:
            self._pending[device_id] += 1
            self._max_pending[device_id] = max(
                self._max_pending[device_id], self._pending[device_id]
            )

    def _check_device(self, device_id: int) -> None:
        if not 0 <= device_id < self._device_count:
            raise ValueError(
                f"Invalid device_id: {device_id}. Valid range: 0-{self._device_count - 1}"
            )

    def __repr__(self) -> str:
        """String representation."""
        return f"CPUBackend(devices={self._device_count}, live={self.live_allocations()})"
