"""
PyKMCompute examples.

This module contains example scripts demonstrating
the PyKMCompute clustering API.
"""

from examples.cluster_blobs import (
    make_blobs,
    run_cluster_blobs_example,
)

__all__ = [
    "make_blobs",
    "run_cluster_blobs_example",
]
