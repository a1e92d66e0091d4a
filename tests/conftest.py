"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import numpy as np
import pytest

from pykmcompute.backends.cpu import CPUBackend
from pykmcompute.engines.reference import LloydEngine


class SequenceRandom:
    """Deterministic random source replaying fixed draws."""

    def __init__(self, integers: Iterable[int] = (), floats: Iterable[float] = ()) -> None:
        self._integers = list(integers)
        self._floats = list(floats)
        self.integer_calls: list[tuple[int, int | None]] = []

    def integers(self, low: int, high: int | None = None) -> int:
        self.integer_calls.append((low, high))
        return self._integers.pop(0)

    def random(self) -> float:
        return self._floats.pop(0)


class RecordingEngine(LloydEngine):
    """Reference engine that records the collaborator calls it receives."""

    def __init__(self, backend: CPUBackend, **kwargs: Any) -> None:
        super().__init__(backend, **kwargs)
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def configure_devices(self, *args: Any) -> None:
        names = (
            "samples_size",
            "features_size",
            "clusters_size",
            "yinyang_groups",
            "devices",
            "verbosity",
        )
        self.calls.append(("configure_devices", dict(zip(names, args))))
        super().configure_devices(*args)

    def score_candidates(self, *args: Any) -> float:
        self.calls.append(("score_candidates", {"candidate_count": args[2]}))
        return super().score_candidates(*args)

    def refine(self, *args: Any) -> int:
        self.calls.append(
            ("refine", {"tolerance": args[0], "yinyang_groups": args[1], "yinyang": args[-1]})
        )
        return super().refine(*args)

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def cpu_backend() -> CPUBackend:
    """Provide a single-device CPU backend."""
    return CPUBackend()


@pytest.fixture
def multi_backend() -> CPUBackend:
    """Provide a three-device CPU backend."""
    return CPUBackend(device_count=3)


@pytest.fixture
def blobs() -> np.ndarray:
    """Provide 300 float32 samples around three well separated centers."""
    rng = np.random.default_rng(0)
    centers = np.array([[0.0, 0.0], [10.0, 10.0], [-10.0, 10.0]], dtype=np.float32)
    points = centers[np.repeat(np.arange(3), 100)] + rng.normal(scale=0.5, size=(300, 2))
    return points.astype(np.float32)


@pytest.fixture
def sequence_random() -> type[SequenceRandom]:
    """Provide the deterministic random source class."""
    return SequenceRandom


@pytest.fixture
def recording_engine() -> type[RecordingEngine]:
    """Provide the recording engine class."""
    return RecordingEngine


# Markers for CUDA tests
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "cuda: mark test as requiring CUDA"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Skip CUDA tests if CUDA is not available."""
    cuda_available = False
    try:
        import cupy as cp

        cuda_available = cp.cuda.runtime.getDeviceCount() > 0
    except Exception:
        pass

    if not cuda_available:
        skip_cuda = pytest.mark.skip(reason="CUDA not available")
        for item in items:
            if "cuda" in item.keywords:
                item.add_marker(skip_cuda)
