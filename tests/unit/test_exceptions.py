"""
Unit tests for the exception hierarchy.
"""

from __future__ import annotations

import pytest

from pykmcompute.exceptions import (
    BackendNotAvailableError,
    BufferReleasedError,
    DeviceRuntimeError,
    InvalidArgumentsError,
    KMComputeError,
    MemoryAllocationError,
    MemoryCopyError,
    NoSuchDeviceError,
    ResultCode,
)


class TestResultCodes:
    """Tests for the codes carried by each exception."""

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (InvalidArgumentsError("tolerance", 2.0, "too big"), ResultCode.INVALID_ARGUMENTS),
            (NoSuchDeviceError(0, "the selector is empty"), ResultCode.NO_SUCH_DEVICE),
            (MemoryAllocationError(1, 4096), ResultCode.MEMORY_ALLOCATION_FAILURE),
            (DeviceRuntimeError(0, "synchronize"), ResultCode.RUNTIME_ERROR),
            (MemoryCopyError("peer", RuntimeError("boom")), ResultCode.MEMORY_COPY_ERROR),
            (BufferReleasedError(0), ResultCode.RUNTIME_ERROR),
            (BackendNotAvailableError("CUDA", "no device"), ResultCode.RUNTIME_ERROR),
        ],
    )
    def test_code(self, error: KMComputeError, code: ResultCode) -> None:
        """Test every error maps to its result code."""
        assert isinstance(error, KMComputeError)
        assert error.code == code

    def test_code_values(self) -> None:
        """Test the numeric values of the result codes."""
        assert [int(code) for code in ResultCode] == [0, 1, 2, 3, 4, 5]


class TestMessages:
    """Tests for exception messages."""

    def test_selector_in_hex(self) -> None:
        """Test device selectors are shown as bitmasks."""
        assert "0x5" in str(NoSuchDeviceError(5, "unusable"))

    def test_cause_included(self) -> None:
        """Test the underlying cause is part of the message."""
        error = MemoryAllocationError(2, 100, MemoryError("out of memory"))

        assert "out of memory" in str(error)
        assert error.cause is not None
        assert "out of memory" not in str(MemoryAllocationError(2, 100))
