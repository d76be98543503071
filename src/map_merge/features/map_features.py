"""
Per-map feature extraction.

Bundles the processing chain that turns a raw map into what pairwise
registration consumes: resized cloud, normals, keypoints and descriptors.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .descriptors import DescriptorSet, compute_local_descriptors
from .keypoints import detect_keypoints
from .preprocessing import compute_surface_normals, down_sample, remove_outliers
from ..utils.config import MapMergingParams
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class MapFeatures:
    cloud: np.ndarray
    normals: np.ndarray
    keypoints: np.ndarray
    descriptors: DescriptorSet

    @property
    def has_keypoints(self) -> bool:
        return len(self.keypoints) > 0


def compute_map_features(cloud: np.ndarray, params: MapMergingParams) -> MapFeatures:
    """
    Down-sample, clean and describe one map.

    Args:
        cloud: Nx3 raw map
        params: Merging parameters (resolution, radii, keypoint/descriptor kinds)

    Returns:
        MapFeatures of the resized cloud
    """
    resized = down_sample(cloud, params.resolution)
    # Removing noise reduces the number of spurious keypoints
    resized = remove_outliers(resized, params.descriptor_radius, params.outliers_min_neighbours)
    normals = compute_surface_normals(resized, params.normal_radius)
    keypoints = detect_keypoints(
        resized,
        normals,
        params.keypoint_type,
        params.keypoint_threshold,
        params.normal_radius,
        params.resolution,
    )
    descriptors = compute_local_descriptors(
        resized, normals, keypoints, params.descriptor_type, params.descriptor_radius
    )
    logger.info(
        "Map features: %d points -> %d resized, %d keypoints.",
        len(cloud),
        len(resized),
        len(keypoints),
    )
    return MapFeatures(cloud=resized, normals=normals, keypoints=keypoints, descriptors=descriptors)
