"""
CUDA backend for PyKMCompute.

Provides multi-device memory management and transfers using CuPy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np

from pykmcompute.backends.base import Backend, BackendType
from pykmcompute.exceptions import (
    BackendNotAvailableError,
    DeviceRuntimeError,
    MemoryAllocationError,
    MemoryCopyError,
)

if TYPE_CHECKING:
    from types import ModuleType

    from numpy.typing import DTypeLike, NDArray


def _check_cuda_available() -> bool:
    """Check if CUDA is available."""
    try:
        import cupy as cp

        return cp.cuda.runtime.getDeviceCount() > 0
    except Exception:
        return False


class CUDABackend(Backend):
    """
    CUDA backend implementation using CuPy.

    Every device works on its own null stream. Non-blocking transfers are
    issued asynchronously on that stream; blocking transfers synchronize it.

    Example:
        >>> backend = CUDABackend()
        >>> if backend.is_available:
        ...     arr = backend.allocate(0, (1000,), np.float32)
    """

    def __init__(self) -> None:
        """
        Initialize the CUDA backend.

        Raises:
            BackendNotAvailableError: If CuPy or a CUDA device is missing.
        """
        if not _check_cuda_available():
            raise BackendNotAvailableError("CUDA", "CuPy is not installed or no device found")

        import cupy as cp

        self._cp = cp
        self._device_count = cp.cuda.runtime.getDeviceCount()

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CUDA

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return True

    @property
    def device_count(self) -> int:
        """Get the number of available CUDA devices."""
        return self._device_count

    def activate(self, device_id: int) -> bool:
        """Make a CUDA device current."""
        try:
            self._cp.cuda.Device(device_id).use()
        except self._cp.cuda.runtime.CUDARuntimeError:
            return False
        return True

    def device_context(self, device_id: int) -> Any:
        """Scope CuPy allocations and kernels to a device."""
        return self._cp.cuda.Device(device_id)

    def array_module(self, device_id: int) -> ModuleType:
        """CuPy backs every CUDA device."""
        return self._cp

    def allocate(self, device_id: int, shape: tuple[int, ...], dtype: DTypeLike) -> Any:
        """
        Allocate a CuPy array on a device.

        Raises:
            MemoryAllocationError: If the allocation fails.
        """
        dtype = np.dtype(dtype)
        try:
            with self._cp.cuda.Device(device_id):
                return self._cp.empty(shape, dtype=dtype)
        except (self._cp.cuda.memory.OutOfMemoryError, self._cp.cuda.runtime.CUDARuntimeError) as e:
            nbytes = int(np.prod(shape, dtype=np.int64)) * dtype.itemsize
            raise MemoryAllocationError(device_id, nbytes, e) from e

    def free(self, device_id: int, array: Any) -> None:
        """
        Free a CuPy array.

        CuPy returns the memory to its pool once the last reference is gone;
        the caller drops its reference after this call.
        """
        del array

    def upload(
        self,
        device_id: int,
        dst: Any,
        host_src: NDArray[Any],
        *,
        blocking: bool = True,
    ) -> None:
        """Copy host memory into a device array."""
        try:
            with self._cp.cuda.Device(device_id):
                dst.set(host_src, stream=self._cp.cuda.Stream.null)
                if blocking:
                    self._cp.cuda.Stream.null.synchronize()
        except Exception as e:
            raise MemoryCopyError("host->device", e) from e

    def download(
        self,
        device_id: int,
        host_dst: NDArray[Any],
        src: Any,
        *,
        blocking: bool = True,
    ) -> None:
        """Copy a device array into host memory."""
        try:
            with self._cp.cuda.Device(device_id):
                src.get(stream=self._cp.cuda.Stream.null, out=host_dst)
                if blocking:
                    self._cp.cuda.Stream.null.synchronize()
        except Exception as e:
            raise MemoryCopyError("device->host", e) from e

    def copy(
        self,
        dst_device: int,
        dst: Any,
        src_device: int,
        src: Any,
        *,
        blocking: bool = True,
    ) -> None:
        """Copy between device arrays with cudaMemcpyPeer."""
        direction = "device->device" if dst_device == src_device else "peer"
        runtime = self._cp.cuda.runtime
        try:
            if src.nbytes != dst.nbytes:
                raise ValueError(f"size mismatch: {src.nbytes} != {dst.nbytes} bytes")
            with self._cp.cuda.Device(dst_device):
                if blocking:
                    runtime.memcpyPeer(dst.data.ptr, dst_device, src.data.ptr, src_device, src.nbytes)
                else:
                    runtime.memcpyPeerAsync(
                        dst.data.ptr,
                        dst_device,
                        src.data.ptr,
                        src_device,
                        src.nbytes,
                        self._cp.cuda.Stream.null.ptr,
                    )
        except Exception as e:
            raise MemoryCopyError(direction, e) from e

    def synchronize(self, device_id: int) -> None:
        """Synchronize a CUDA device."""
        try:
            self._cp.cuda.Device(device_id).synchronize()
        except self._cp.cuda.runtime.CUDARuntimeError as e:
            raise DeviceRuntimeError(device_id, "synchronize", e) from e

    def get_memory_info(self, device_id: int) -> dict[str, int]:
        """
        Get GPU memory information.

        Returns:
            Dictionary with free, total and used memory in bytes.
        """
        try:
            with self._cp.cuda.Device(device_id):
                free, total = self._cp.cuda.runtime.memGetInfo()
        except self._cp.cuda.runtime.CUDARuntimeError as e:
            raise DeviceRuntimeError(device_id, "memory query", e) from e
        return {
            "free": free,
            "total": total,
            "used": total - free,
        }

    def __repr__(self) -> str:
        """String representation."""
        return f"CUDABackend(devices={self._device_count})"
