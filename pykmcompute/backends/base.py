"""
Backend base classes and interfaces.

Defines the device-scoped interface that all backends must implement:
device activation, memory management and host/device/peer transfers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, TypeVar

import numpy as np

if TYPE_CHECKING:
    from contextlib import AbstractContextManager
    from types import ModuleType

    from numpy.typing import DTypeLike, NDArray


T = TypeVar("T", bound=np.generic)


class BackendType(Enum):
    """Type of compute backend."""

    CPU = auto()
    CUDA = auto()


class Backend(ABC):
    """
    Abstract base class for compute backends.

    Every memory operation names the device it runs on. Operations issued
    with ``blocking=False`` may be queued and are only guaranteed to have
    completed after the next blocking operation or ``synchronize()`` on the
    same device.
    """

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        ...

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Check if this backend is available."""
        ...

    @property
    @abstractmethod
    def device_count(self) -> int:
        """Get the number of devices the backend can address."""
        ...

    @abstractmethod
    def activate(self, device_id: int) -> bool:
        """
        Make a device current for the calling thread.

        Args:
            device_id: Device to activate.

        Returns:
            True if the device became current, False otherwise.
        """
        ...

    @abstractmethod
    def device_context(self, device_id: int) -> AbstractContextManager[Any]:
        """Context manager scoping array creation and kernels to a device."""
        ...

    @abstractmethod
    def array_module(self, device_id: int) -> ModuleType:
        """Get the array module (numpy or cupy) for arrays on a device."""
        ...

    @abstractmethod
    def allocate(self, device_id: int, shape: tuple[int, ...], dtype: DTypeLike) -> Any:
        """
        Allocate an uninitialized array on a device.

        Args:
            device_id: Target device.
            shape: Shape of the array.
            dtype: Data type.

        Returns:
            Device array.

        Raises:
            MemoryAllocationError: If the allocation fails.
        """
        ...

    @abstractmethod
    def free(self, device_id: int, array: Any) -> None:
        """
        Free an array allocated by this backend.

        Args:
            device_id: Device the array lives on.
            array: Array to free.
        """
        ...

    @abstractmethod
    def upload(
        self,
        device_id: int,
        dst: Any,
        host_src: NDArray[T],
        *,
        blocking: bool = True,
    ) -> None:
        """
        Copy host memory into a device array.

        Raises:
            MemoryCopyError: If the transfer fails.
        """
        ...

    @abstractmethod
    def download(
        self,
        device_id: int,
        host_dst: NDArray[T],
        src: Any,
        *,
        blocking: bool = True,
    ) -> None:
        """
        Copy a device array into host memory.

        Raises:
            MemoryCopyError: If the transfer fails.
        """
        ...

    @abstractmethod
    def copy(
        self,
        dst_device: int,
        dst: Any,
        src_device: int,
        src: Any,
        *,
        blocking: bool = True,
    ) -> None:
        """
        Copy between device arrays, using a peer transfer across devices.

        Raises:
            MemoryCopyError: If the transfer fails.
        """
        ...

    @abstractmethod
    def synchronize(self, device_id: int) -> None:
        """Wait until all queued operations on a device have completed."""
        ...

    @abstractmethod
    def get_memory_info(self, device_id: int) -> dict[str, int]:
        """
        Get memory information for a device.

        Returns:
            Dictionary with ``free``, ``total`` and ``used`` bytes.

        Raises:
            DeviceRuntimeError: If the device cannot be queried.
        """
        ...

    def to_host(self, device_id: int, array: Any) -> NDArray[Any]:
        """Return a blocking host copy of a device array."""
        host = np.empty(array.shape, dtype=array.dtype)
        self.download(device_id, host, array)
        return host
