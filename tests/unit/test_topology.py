"""
Unit tests for argument validation and device resolution.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pytest

from pykmcompute.backends.cpu import CPUBackend
from pykmcompute.core.accelerator import Accelerator
from pykmcompute.core.config import ClusteringConfig
from pykmcompute.core.topology import CLUSTERS_SENTINEL, resolve_devices, validate_arguments
from pykmcompute.exceptions import InvalidArgumentsError, NoSuchDeviceError


def _buffers(samples: int = 20, features: int = 3, clusters: int = 4) -> dict[str, Any]:
    return {
        "samples": np.zeros((samples, features), dtype=np.float32),
        "centroids": np.zeros((clusters, features), dtype=np.float32),
        "assignments": np.zeros(samples, dtype=np.uint32),
    }


def _validate(
    config: ClusteringConfig | None = None,
    samples_size: int = 20,
    features_size: int = 3,
    clusters_size: int = 4,
    device_count: int = 2,
    **overrides: Any,
) -> None:
    buffers = _buffers()
    buffers.update(overrides)
    validate_arguments(
        config or ClusteringConfig(device=1),
        samples_size,
        features_size,
        clusters_size,
        buffers["samples"],
        buffers["centroids"],
        buffers["assignments"],
        device_count,
    )


class TestValidateArguments:
    """Tests for validate_arguments."""

    def test_valid(self) -> None:
        """Test valid arguments pass."""
        _validate()

    @pytest.mark.parametrize("clusters_size", [0, 1, CLUSTERS_SENTINEL])
    def test_clusters_size(self, clusters_size: int) -> None:
        """Test too few clusters and the sentinel count are rejected."""
        with pytest.raises(InvalidArgumentsError) as exc_info:
            _validate(clusters_size=clusters_size)

        assert exc_info.value.parameter == "clusters_size"

    def test_features_size(self) -> None:
        """Test zero features are rejected."""
        with pytest.raises(InvalidArgumentsError):
            _validate(features_size=0)

    def test_fewer_samples_than_clusters(self) -> None:
        """Test samples_size must cover clusters_size."""
        with pytest.raises(InvalidArgumentsError) as exc_info:
            _validate(samples_size=3, clusters_size=5)

        assert exc_info.value.parameter == "samples_size"

    def test_zero_selector(self) -> None:
        """Test an empty device selector."""
        with pytest.raises(NoSuchDeviceError):
            _validate(ClusteringConfig(device=0))

    def test_selector_out_of_range(self) -> None:
        """Test selector bits beyond the present devices."""
        with pytest.raises(NoSuchDeviceError):
            _validate(ClusteringConfig(device=0b100), device_count=2)
        with pytest.raises(NoSuchDeviceError):
            _validate(ClusteringConfig(device=0b1000), device_count=2)

    def test_selector_checked_before_tolerance(self) -> None:
        """Test a zero selector wins over a bad tolerance."""
        with pytest.raises(NoSuchDeviceError):
            _validate(ClusteringConfig(device=0, tolerance=1.5))

    def test_shape_checked_before_selector(self) -> None:
        """Test shape errors win over a zero selector."""
        with pytest.raises(InvalidArgumentsError):
            _validate(ClusteringConfig(device=0), clusters_size=1)

    @pytest.mark.parametrize("name", ["samples", "centroids", "assignments"])
    def test_missing_buffer(self, name: str) -> None:
        """Test every buffer is required."""
        with pytest.raises(InvalidArgumentsError) as exc_info:
            _validate(**{name: None})

        assert exc_info.value.parameter == name

    @pytest.mark.parametrize("tolerance", [-0.1, 1.5, float("nan")])
    def test_tolerance(self, tolerance: float) -> None:
        """Test tolerance must lie in [0, 1]."""
        with pytest.raises(InvalidArgumentsError) as exc_info:
            _validate(ClusteringConfig(device=1, tolerance=tolerance))

        assert exc_info.value.parameter == "tolerance"

    @pytest.mark.parametrize("yinyang_t", [-0.01, 0.51])
    def test_yinyang_t(self, yinyang_t: float) -> None:
        """Test the accelerated fraction must lie in [0, 0.5]."""
        with pytest.raises(InvalidArgumentsError) as exc_info:
            _validate(ClusteringConfig(device=1, yinyang_t=yinyang_t))

        assert exc_info.value.parameter == "yinyang_t"

    def test_tolerance_bounds_inclusive(self) -> None:
        """Test the interval bounds are accepted."""
        _validate(ClusteringConfig(device=1, tolerance=0.0, yinyang_t=0.5))
        _validate(ClusteringConfig(device=1, tolerance=1.0, yinyang_t=0.0))

    def test_location_out_of_range(self) -> None:
        """Test the output location must be a present device."""
        with pytest.raises(InvalidArgumentsError):
            _validate(ClusteringConfig(device=1, location=2), device_count=2)

    def test_buffer_size(self) -> None:
        """Test buffers must match the declared shapes."""
        with pytest.raises(InvalidArgumentsError):
            _validate(centroids=np.zeros((5, 3), dtype=np.float32))

    def test_buffer_dtype(self) -> None:
        """Test buffers must have the expected element types."""
        with pytest.raises(InvalidArgumentsError):
            _validate(samples=np.zeros((20, 3), dtype=np.float64))
        with pytest.raises(InvalidArgumentsError):
            _validate(assignments=np.zeros(20, dtype=np.int64))

    @pytest.mark.parametrize("name", ["samples", "centroids", "assignments"])
    def test_buffer_not_an_array(self, name: str) -> None:
        """Test plain sequences are rejected instead of being inspected."""
        buffers = _buffers()

        with pytest.raises(InvalidArgumentsError) as exc_info:
            _validate(**{name: buffers[name].tolist()})

        assert exc_info.value.parameter == name
        assert exc_info.value.value == "list"

    def test_buffer_contiguous(self) -> None:
        """Test buffers must be contiguous."""
        with pytest.raises(InvalidArgumentsError):
            _validate(assignments=np.zeros(40, dtype=np.uint32)[::2])


class TestResolveDevices:
    """Tests for resolve_devices."""

    def test_expands_bitmask(self) -> None:
        """Test every set bit yields a device, in order."""
        accelerator = Accelerator(CPUBackend(device_count=4))

        assert resolve_devices(0b1011, accelerator) == (0, 1, 3)

    def test_drops_failing_devices(self) -> None:
        """Test devices that fail activation are dropped."""
        accelerator = Accelerator(CPUBackend(device_count=3, unavailable=[1]))

        assert resolve_devices(0b111, accelerator) == (0, 2)

    def test_empty_result(self) -> None:
        """Test an empty device set is an error."""
        accelerator = Accelerator(CPUBackend(device_count=2, unavailable=[1]))

        with pytest.raises(NoSuchDeviceError):
            resolve_devices(0b10, accelerator)

    def test_missing_bits_are_dropped(self) -> None:
        """Test bits of devices that do not exist fail activation."""
        accelerator = Accelerator(CPUBackend(device_count=1))

        assert resolve_devices(0b101, accelerator) == (0,)
