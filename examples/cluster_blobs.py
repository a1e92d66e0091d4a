"""
Blob Clustering Example for PyKMCompute.

Demonstrates the high-level kmeans() helper, the result-code entry point
and clustering on several devices. This example works on both CPU and GPU.
"""

from __future__ import annotations

import logging

import numpy as np

from pykmcompute import (
    Accelerator,
    CPUBackend,
    ResultCode,
    cluster,
    kmeans,
)


def make_blobs(
    centers: np.ndarray, points_per_center: int, scale: float, seed: int = 0
) -> np.ndarray:
    """Generate float32 samples scattered around the given centers."""
    rng = np.random.default_rng(seed)
    labels = np.repeat(np.arange(len(centers)), points_per_center)
    points = centers[labels] + rng.normal(scale=scale, size=(len(labels), centers.shape[1]))
    return points.astype(np.float32)


def run_cluster_blobs_example() -> None:
    """Run the blob clustering example."""
    print("=" * 60)
    print("PyKMCompute Blob Clustering Example")
    print("=" * 60)

    centers = np.array([[0.0, 0.0], [8.0, 8.0], [-8.0, 8.0], [8.0, -8.0]])
    samples = make_blobs(centers, points_per_center=2500, scale=1.0)

    print("\n1. Discovering devices...")
    accelerator = Accelerator()
    for device in accelerator.devices:
        print(f"   {device.name} ({device.total_memory_gb:.1f} GB)")

    print("\n2. Clustering with kmeans()...")
    centroids, assignments = kmeans(samples, len(centers), seed=42)
    for index, centroid in enumerate(centroids):
        size = int((assignments == index).sum())
        print(f"   Cluster {index}: center={np.round(centroid, 2)} size={size}")

    print("\n3. Clustering with cluster() on two virtual devices...")
    backend = CPUBackend(device_count=2)
    centroids = np.empty((len(centers), 2), dtype=np.float32)
    assignments = np.empty(len(samples), dtype=np.uint32)
    code = cluster(
        True,  # K-means++ seeding
        0.01,
        0.1,
        len(samples),
        2,
        len(centers),
        42,
        0b11,
        1,
        None,
        samples,
        centroids,
        assignments,
        backend=backend,
    )
    print(f"   Result: {code.name}")
    if code == ResultCode.SUCCESS:
        print(f"   Centroids:\n{np.round(centroids, 2)}")

    print("\n4. Invalid arguments are reported as result codes...")
    code = cluster(
        True,
        1.5,
        0.1,
        len(samples),
        2,
        len(centers),
        42,
        0b11,
        0,
        None,
        samples,
        centroids,
        assignments,
        backend=backend,
    )
    print(f"   tolerance=1.5 -> {code.name}")

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    run_cluster_blobs_example()
