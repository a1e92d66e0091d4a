"""
Argument validation and device topology resolution.

A device selector is a bitmask where bit ``i`` requests device ``i``.
Devices are kept only if they can be activated.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np

from pykmcompute.exceptions import InvalidArgumentsError, NoSuchDeviceError

if TYPE_CHECKING:
    from pykmcompute.core.accelerator import Accelerator
    from pykmcompute.core.config import ClusteringConfig

logger = logging.getLogger(__name__)

# Sentinel "all ones" count that the 32-bit cluster index cannot represent.
CLUSTERS_SENTINEL = 0xFFFFFFFF

DeviceSet = tuple[int, ...]


def validate_arguments(
    config: ClusteringConfig,
    samples_size: int,
    features_size: int,
    clusters_size: int,
    samples: Any,
    centroids: Any,
    assignments: Any,
    device_count: int,
) -> None:
    """
    Validate the parameters of a clustering invocation.

    The checks run in a fixed order so that overlapping violations always
    report the same error: shapes, then the device selector, then buffers
    and the tolerance parameters.

    Raises:
        InvalidArgumentsError: If a shape, buffer or tolerance is invalid.
        NoSuchDeviceError: If the device selector is zero or out of range.
    """
    if clusters_size < 2 or clusters_size >= CLUSTERS_SENTINEL:
        raise InvalidArgumentsError(
            "clusters_size", clusters_size, f"must be in [2, {CLUSTERS_SENTINEL})"
        )
    if features_size == 0:
        raise InvalidArgumentsError("features_size", features_size, "must be non-zero")
    if samples_size < clusters_size:
        raise InvalidArgumentsError(
            "samples_size", samples_size, f"must be >= clusters_size ({clusters_size})"
        )
    if config.device == 0:
        raise NoSuchDeviceError(config.device, "the selector is empty")
    if config.device < 0 or config.device >= (1 << device_count):
        raise NoSuchDeviceError(config.device, f"only {device_count} device(s) are present")
    buffers = {"samples": samples, "centroids": centroids, "assignments": assignments}
    for name, buffer in buffers.items():
        if buffer is None:
            raise InvalidArgumentsError(name, buffer, "must not be None")
    if not 0 <= config.tolerance <= 1:
        raise InvalidArgumentsError("tolerance", config.tolerance, "must be in [0, 1]")
    if not 0 <= config.yinyang_t <= 0.5:
        raise InvalidArgumentsError("yinyang_t", config.yinyang_t, "must be in [0, 0.5]")
    if config.location is not None and config.location >= device_count:
        raise InvalidArgumentsError(
            "location", config.location, f"only {device_count} device(s) are present"
        )

    _check_buffer("samples", samples, samples_size * features_size, np.float32)
    _check_buffer("centroids", centroids, clusters_size * features_size, np.float32)
    _check_buffer("assignments", assignments, samples_size, np.uint32)


def _check_buffer(name: str, buffer: Any, size: int, dtype: type[np.generic]) -> None:
    if not all(hasattr(buffer, attr) for attr in ("size", "dtype", "flags")):
        raise InvalidArgumentsError(name, type(buffer).__name__, "must be an array")
    if buffer.size != size:
        raise InvalidArgumentsError(f"{name}.size", buffer.size, f"expected {size} elements")
    if buffer.dtype != np.dtype(dtype):
        raise InvalidArgumentsError(f"{name}.dtype", buffer.dtype, f"expected {np.dtype(dtype)}")
    if not buffer.flags.c_contiguous:
        raise InvalidArgumentsError(name, "non-contiguous", "must be C-contiguous")


def resolve_devices(selector: int, accelerator: Accelerator, verbosity: int = 0) -> DeviceSet:
    """
    Expand a device selector into the devices that can be activated.

    Args:
        selector: Device bitmask.
        accelerator: Accelerator owning the devices.
        verbosity: Diagnostic level.

    Returns:
        Ordered tuple of usable device ids.

    Raises:
        NoSuchDeviceError: If no selected device can be activated.
    """
    devices = []
    device_id = 0
    remaining = selector
    while remaining:
        if remaining & 1:
            if accelerator.activate(device_id):
                devices.append(device_id)
            elif verbosity > 0:
                logger.info("failed to validate device %d", device_id)
        remaining >>= 1
        device_id += 1

    if not devices:
        raise NoSuchDeviceError(selector, "none of the selected devices could be activated")
    if verbosity > 1:
        logger.debug("using devices %s", devices)
    return tuple(devices)
