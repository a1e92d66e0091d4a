"""
PyKMCompute exception hierarchy.

This module defines the result codes reported by the clustering entry point
and the exception hierarchy raised by the layers below it:

- InvalidArgumentsError: Malformed shape, tolerance or buffer arguments
- NoSuchDeviceError: Empty or unusable device selection
- DeviceRuntimeError: Device capability or status query failures
- MemoryAllocationError: Device memory could not be obtained
- MemoryCopyError: Host/device or device/device transfer failures
- BufferReleasedError: Access to a buffer after its release
- BackendNotAvailableError: Requested compute backend cannot be used

All exceptions inherit from KMComputeError and carry the ResultCode
that ``cluster()`` reports for them.
"""

from __future__ import annotations

from enum import IntEnum


class ResultCode(IntEnum):
    """Result codes surfaced by ``cluster()``."""

    SUCCESS = 0
    INVALID_ARGUMENTS = 1
    NO_SUCH_DEVICE = 2
    MEMORY_ALLOCATION_FAILURE = 3
    RUNTIME_ERROR = 4
    MEMORY_COPY_ERROR = 5


class KMComputeError(Exception):
    """Base exception for all PyKMCompute errors."""

    code: ResultCode = ResultCode.RUNTIME_ERROR


class InvalidArgumentsError(KMComputeError):
    """Raised when clustering parameters or buffers are invalid."""

    code = ResultCode.INVALID_ARGUMENTS

    def __init__(self, parameter: str, value: object, reason: str) -> None:
        self.parameter = parameter
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid argument: {parameter}={value!r} - {reason}")


class NoSuchDeviceError(KMComputeError):
    """Raised when the device selection does not yield any usable device."""

    code = ResultCode.NO_SUCH_DEVICE

    def __init__(self, selector: int, reason: str) -> None:
        self.selector = selector
        self.reason = reason
        super().__init__(f"No usable device for selector {selector:#x}: {reason}")


class DeviceRuntimeError(KMComputeError):
    """Raised when querying or driving a device fails."""

    code = ResultCode.RUNTIME_ERROR

    def __init__(self, device_id: int, operation: str, cause: Exception | None = None) -> None:
        self.device_id = device_id
        self.operation = operation
        self.cause = cause
        msg = f"Device {device_id}: {operation} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class MemoryAllocationError(KMComputeError):
    """Raised when a device buffer cannot be allocated."""

    code = ResultCode.MEMORY_ALLOCATION_FAILURE

    def __init__(self, device_id: int, nbytes: int, cause: Exception | None = None) -> None:
        self.device_id = device_id
        self.nbytes = nbytes
        self.cause = cause
        msg = f"Failed to allocate {nbytes} bytes on device {device_id}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class MemoryCopyError(KMComputeError):
    """Raised when a memory transfer fails."""

    code = ResultCode.MEMORY_COPY_ERROR

    def __init__(self, direction: str, cause: Exception) -> None:
        self.direction = direction
        self.cause = cause
        super().__init__(f"Failed to copy memory {direction}: {cause}")


class BufferReleasedError(KMComputeError):
    """Raised when accessing a buffer after it has been released."""

    def __init__(self, device_id: int) -> None:
        self.device_id = device_id
        super().__init__(f"Buffer on device {device_id} has already been released")


class BackendNotAvailableError(KMComputeError):
    """Raised when a requested backend is not available."""

    def __init__(self, backend_name: str, reason: str) -> None:
        self.backend_name = backend_name
        self.reason = reason
        super().__init__(f"Backend '{backend_name}' is not available: {reason}")
