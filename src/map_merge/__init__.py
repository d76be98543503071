"""
Map Merge Package

A Python package for merging partial 3-D point cloud maps with unknown
relative poses into one consistent global map.
Pairwise transforms are estimated by descriptor matching with RANSAC or by
sample consensus initial alignment, optionally refined with ICP, and scored by
their mean clipped residual. The transforms are reconciled on a maximum
confidence spanning tree of the largest connected component and propagated
from the tree centre into one global pose per map.
"""

__version__ = "0.1.0"

from .alignment import *
from .features import *
from .graph import *
from .pipeline import *
from .utils import *

__all__ = [
    "alignment",
    "features",
    "graph",
    "pipeline",
    "utils",
]
