"""
Map Merging Pipeline Module
"""

from .map_merging import MapMerger, MapMergeResult, compose_maps, estimate_maps_transforms

__all__ = [
    "MapMerger",
    "MapMergeResult",
    "compose_maps",
    "estimate_maps_transforms",
]
