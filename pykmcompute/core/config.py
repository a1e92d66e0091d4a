"""
Clustering configuration.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum


class InitMethod(Enum):
    """Centroid initialization method."""

    RANDOM = "random"
    KMEANS_PLUS_PLUS = "kmeans++"

    @classmethod
    def parse(cls, value: InitMethod | str | bool) -> InitMethod:
        """
        Parse an initialization method.

        Accepts the enum itself, its name or value (``"random"``,
        ``"kmeans++"``, ``"k-means++"``), or the boolean "weighted init"
        flag of the low-level API.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return cls.KMEANS_PLUS_PLUS if value else cls.RANDOM
        key = str(value).lower().replace("-", "")
        for method in cls:
            if key in (method.value, method.name.lower()):
                return method
        raise ValueError(f"Unknown init method: {value!r}")


@dataclass
class ClusteringConfig:
    """Scalar parameters of a clustering invocation."""

    init: InitMethod | str = InitMethod.KMEANS_PLUS_PLUS
    tolerance: float = 0.01
    yinyang_t: float = 0.1
    seed: int | None = None
    device: int = 1
    verbosity: int = 0
    location: int | None = None  # None: caller buffers live in host memory

    def __post_init__(self) -> None:
        """Normalize configuration."""
        self.init = InitMethod.parse(self.init)
        if self.location is not None and self.location < 0:
            self.location = None

    @property
    def weighted_init(self) -> bool:
        """Check if K-means++ seeding is requested."""
        return self.init is InitMethod.KMEANS_PLUS_PLUS

    def yinyang_groups(self, clusters_size: int) -> int:
        """Get the number of centroid groups for the accelerated variant."""
        return int(math.floor(self.yinyang_t * clusters_size))
