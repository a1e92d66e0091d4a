"""
Arithmetic collaborators of the clustering pipeline.
"""

from pykmcompute.engines.base import RefinementEngine
from pykmcompute.engines.reference import LloydEngine

__all__ = [
    "RefinementEngine",
    "LloydEngine",
]
