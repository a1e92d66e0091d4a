"""
Device-scoped buffer handles.

A DeviceBuffer is bound to exactly one device and is either OWNED (the
creator must release it) or BORROWED (caller memory, never released
here). A BufferView reinterprets a region of another buffer without
allocating.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Union

import numpy as np

from pykmcompute.exceptions import BufferReleasedError

if TYPE_CHECKING:
    from numpy.typing import DTypeLike

    from pykmcompute.backends.base import Backend


class Ownership(Enum):
    """Who is responsible for releasing a buffer."""

    OWNED = auto()
    BORROWED = auto()


class DeviceBuffer:
    """
    Typed memory block on a single device.

    Example:
        >>> buf = DeviceBuffer.allocate(backend, 0, (1000,), np.float32)
        >>> buf.is_owned
        True
        >>> buf.release()
    """

    def __init__(
        self,
        device_id: int,
        data: Any,
        ownership: Ownership,
        backend: Backend,
    ) -> None:
        """
        Initialize a device buffer.

        Args:
            device_id: Device holding the memory.
            data: The underlying array (NumPy or CuPy).
            ownership: Release responsibility.
            backend: Backend that allocated (or will address) the memory.
        """
        self._device_id = device_id
        self._data = data
        self._ownership = ownership
        self._backend = backend
        self._released = False

    @classmethod
    def allocate(
        cls,
        backend: Backend,
        device_id: int,
        shape: tuple[int, ...],
        dtype: DTypeLike,
    ) -> DeviceBuffer:
        """Allocate a new OWNED buffer."""
        return cls(device_id, backend.allocate(device_id, shape, dtype), Ownership.OWNED, backend)

    @classmethod
    def borrow(cls, backend: Backend, device_id: int, data: Any) -> DeviceBuffer:
        """Wrap caller memory as a BORROWED buffer."""
        return cls(device_id, data, Ownership.BORROWED, backend)

    @property
    def device_id(self) -> int:
        """Get the device holding the buffer."""
        return self._device_id

    @property
    def ownership(self) -> Ownership:
        """Get the ownership tag."""
        return self._ownership

    @property
    def is_owned(self) -> bool:
        """Check if the buffer must be released by its creator."""
        return self._ownership is Ownership.OWNED

    @property
    def is_borrowed(self) -> bool:
        """Check if the buffer aliases caller memory."""
        return self._ownership is Ownership.BORROWED

    @property
    def released(self) -> bool:
        """Check if the buffer has been released."""
        return self._released

    @property
    def data(self) -> Any:
        """
        Get the underlying array.

        Raises:
            BufferReleasedError: If the buffer was released.
        """
        if self._released:
            raise BufferReleasedError(self._device_id)
        return self._data

    @property
    def shape(self) -> tuple[int, ...]:
        """Get the buffer shape."""
        return tuple(self.data.shape)

    @property
    def dtype(self) -> np.dtype[Any]:
        """Get the buffer dtype."""
        return np.dtype(self.data.dtype)

    @property
    def nbytes(self) -> int:
        """Get total size in bytes."""
        return int(self.data.nbytes)

    def view(self, dtype: DTypeLike, count: int, offset: int = 0) -> BufferView:
        """Create a typed view of ``count`` elements starting at byte ``offset``."""
        return BufferView(self, dtype, count, offset)

    def release(self) -> None:
        """Release the memory if OWNED. Idempotent; BORROWED memory is never freed."""
        if self._released:
            return
        if self._ownership is Ownership.OWNED:
            self._backend.free(self._device_id, self._data)
        self._data = None
        self._released = True

    def __repr__(self) -> str:
        """String representation."""
        if self._released:
            return f"DeviceBuffer(device={self._device_id}, released)"
        return (
            f"DeviceBuffer(device={self._device_id}, shape={self.shape}, "
            f"dtype={self.dtype}, ownership={self._ownership.name})"
        )


class BufferView:
    """
    Typed sub-allocation view into another buffer.

    The view shares the parent's memory and lifetime; it is never
    released on its own.
    """

    ownership = Ownership.BORROWED
    is_owned = False
    is_borrowed = True

    def __init__(self, parent: DeviceBuffer, dtype: DTypeLike, count: int, offset: int = 0) -> None:
        """
        Initialize a buffer view.

        Args:
            parent: Buffer providing the memory.
            dtype: Element type of the view.
            count: Number of elements in the view.
            offset: Start of the view in bytes.

        Raises:
            ValueError: If the region does not fit in the parent.
        """
        self._parent = parent
        self._dtype = np.dtype(dtype)
        self._count = count
        self._offset = offset
        end = offset + count * self._dtype.itemsize
        if offset < 0 or count < 0 or end > parent.nbytes:
            raise ValueError(
                f"View [{offset}, {end}) does not fit in a {parent.nbytes}-byte buffer"
            )
        if offset % self._dtype.itemsize:
            raise ValueError(f"Offset {offset} is not aligned to {self._dtype}")

    @property
    def parent(self) -> DeviceBuffer:
        """Get the buffer providing the memory."""
        return self._parent

    @property
    def device_id(self) -> int:
        """Get the device holding the memory."""
        return self._parent.device_id

    @property
    def released(self) -> bool:
        """Check if the parent buffer has been released."""
        return self._parent.released

    @property
    def data(self) -> Any:
        """Get the reinterpreted array (1-D)."""
        raw = self._parent.data.reshape(-1).view(np.uint8)
        end = self._offset + self._count * self._dtype.itemsize
        return raw[self._offset : end].view(self._dtype)

    @property
    def shape(self) -> tuple[int, ...]:
        """Get the view shape."""
        return (self._count,)

    @property
    def dtype(self) -> np.dtype[Any]:
        """Get the view dtype."""
        return self._dtype

    @property
    def nbytes(self) -> int:
        """Get the view size in bytes."""
        return self._count * self._dtype.itemsize

    def release(self) -> None:
        """Views never own memory."""

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"BufferView(device={self.device_id}, count={self._count}, "
            f"dtype={self._dtype}, offset={self._offset})"
        )


AnyBuffer = Union[DeviceBuffer, BufferView]


class ReplicatedBuffer(Sequence[AnyBuffer]):
    """One logical buffer replicated across the participating devices."""

    def __init__(self, name: str, buffers: Sequence[AnyBuffer]) -> None:
        """
        Initialize a replicated buffer.

        Args:
            name: Logical buffer name (for diagnostics).
            buffers: One buffer per participating device, in device-set order.
        """
        self._name = name
        self._buffers = list(buffers)

    @property
    def name(self) -> str:
        """Get the logical buffer name."""
        return self._name

    @property
    def primary(self) -> AnyBuffer:
        """Get the buffer on the first participating device."""
        return self._buffers[0]

    @property
    def arrays(self) -> list[Any]:
        """Get the underlying arrays in device-set order."""
        return [buffer.data for buffer in self._buffers]

    def for_device(self, device_id: int) -> AnyBuffer:
        """Get the buffer living on a device."""
        for buffer in self._buffers:
            if buffer.device_id == device_id:
                return buffer
        raise KeyError(f"{self._name} has no buffer on device {device_id}")

    def is_borrowed(self, device_id: int) -> bool:
        """Check if the buffer on a device aliases caller memory."""
        return self.for_device(device_id).is_borrowed

    def __getitem__(self, index: int) -> AnyBuffer:  # type: ignore[override]
        return self._buffers[index]

    def __iter__(self) -> Iterator[AnyBuffer]:
        return iter(self._buffers)

    def __len__(self) -> int:
        return len(self._buffers)

    def __repr__(self) -> str:
        """String representation."""
        return f"ReplicatedBuffer({self._name!r}, devices={[b.device_id for b in self._buffers]})"


def can_alias_group_centroids(
    samples_size: int,
    clusters_size: int,
    features_size: int,
    yinyang_groups: int,
) -> bool:
    """
    Check if the group centroids fit in the passed-flags buffer.

    The passed-flags buffer holds ``samples_size`` elements; the group
    centroids need ``yinyang_groups * features_size`` of them and the
    refinement engine keeps ``clusters_size + yinyang_groups`` more free.
    """
    return yinyang_groups * features_size + clusters_size + yinyang_groups <= samples_size
