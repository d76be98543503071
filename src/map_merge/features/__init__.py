"""
Feature Extraction Module

Down-sampling, outlier removal, surface normals, keypoints and local
descriptors for each map.
"""

from .preprocessing import down_sample, remove_outliers, compute_surface_normals
from .keypoints import KeypointKind, detect_keypoints
from .descriptors import DescriptorKind, DescriptorSet, compute_local_descriptors
from .map_features import MapFeatures, compute_map_features

__all__ = [
    "down_sample",
    "remove_outliers",
    "compute_surface_normals",
    "KeypointKind",
    "detect_keypoints",
    "DescriptorKind",
    "DescriptorSet",
    "compute_local_descriptors",
    "MapFeatures",
    "compute_map_features",
]
