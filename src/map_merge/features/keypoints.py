"""
Keypoint Detection

Selects geometrically distinctive points used as registration anchors.

Methods implemented:
- iss: intrinsic shape signatures (eigenvalue ratio test + non-maximum suppression)
- curvature: normal variation within the neighbourhood + non-maximum suppression
- uniform: one point per voxel (threshold ignored)
"""

from __future__ import annotations

from enum import Enum

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .preprocessing import down_sample, local_eigen_decomposition, radius_neighbourhoods
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class KeypointKind(str, Enum):
    ISS = "iss"
    CURVATURE = "curvature"
    UNIFORM = "uniform"


# ISS eigenvalue ratio limits (lambda2/lambda1, lambda3/lambda2)
ISS_GAMMA_21 = 0.975
ISS_GAMMA_32 = 0.975


def detect_keypoints(
    points: np.ndarray,
    normals: np.ndarray,
    kind: KeypointKind | str,
    threshold: float,
    radius: float,
    resolution: float,
) -> np.ndarray:
    """
    Detect keypoints in a point cloud.

    Args:
        points: Nx3 array
        normals: Nx3 unit normals parallel to points
        kind: Keypoint detector
        threshold: Saliency threshold (detector specific)
        radius: Neighbourhood radius used for the saliency measure
        resolution: Cloud resolution; sets the non-maximum suppression radius

    Returns:
        Kx3 keypoint cloud
    """
    kind = KeypointKind(kind)
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(points) == 0:
        return np.empty((0, 3), dtype=np.float64)

    if kind is KeypointKind.UNIFORM:
        keypoints = _uniform_keypoints(points, radius)
    elif kind is KeypointKind.ISS:
        keypoints = _iss_keypoints(points, threshold, radius, resolution)
    else:
        keypoints = _curvature_keypoints(points, normals, threshold, radius, resolution)

    logger.info("Detected %d %s keypoints out of %d points.", len(keypoints), kind.value, len(points))
    return keypoints


def _uniform_keypoints(points: np.ndarray, radius: float) -> np.ndarray:
    # Snap voxel centroids back onto the closest cloud point
    centroids = down_sample(points, radius)
    nn = NearestNeighbors(n_neighbors=1).fit(points)
    _, idx = nn.kneighbors(centroids)
    return points[np.unique(idx.ravel())]


def _iss_keypoints(points: np.ndarray, threshold: float, radius: float, resolution: float) -> np.ndarray:
    eigenvalues, _, _ = local_eigen_decomposition(points, points, radius)
    l3, l2, l1 = eigenvalues[:, 0], eigenvalues[:, 1], eigenvalues[:, 2]

    with np.errstate(divide="ignore", invalid="ignore"):
        ratio_21 = np.where(l1 > 0, l2 / l1, 1.0)
        ratio_32 = np.where(l2 > 0, l3 / l2, 1.0)

    # Smallest eigenvalue relative to the neighbourhood scale
    saliency = l3 / (radius * radius)
    candidates = (ratio_21 < ISS_GAMMA_21) & (ratio_32 < ISS_GAMMA_32) & (saliency > threshold)
    return points[_non_max_suppression(points, saliency, candidates, 4.0 * resolution)]


def _curvature_keypoints(
    points: np.ndarray,
    normals: np.ndarray,
    threshold: float,
    radius: float,
    resolution: float,
) -> np.ndarray:
    normals = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
    if len(normals) != len(points):
        raise ValueError(f"normals must be parallel to points ({len(normals)} != {len(points)})")

    neighbourhoods = radius_neighbourhoods(points, points, radius)
    saliency = np.empty(len(points), dtype=np.float64)
    for i, idx in enumerate(neighbourhoods):
        cos = np.abs(normals[idx] @ normals[i])
        saliency[i] = 1.0 - float(np.mean(cos))

    candidates = saliency > threshold
    return points[_non_max_suppression(points, saliency, candidates, 4.0 * resolution)]


def _non_max_suppression(
    points: np.ndarray,
    saliency: np.ndarray,
    candidates: np.ndarray,
    radius: float,
) -> np.ndarray:
    """Indices of candidates whose saliency is maximal within ``radius``."""
    cand_idx = np.flatnonzero(candidates)
    if len(cand_idx) == 0:
        return cand_idx

    cand_points = points[cand_idx]
    cand_saliency = saliency[cand_idx]
    nn = NearestNeighbors(radius=radius).fit(cand_points)
    neighbourhoods = nn.radius_neighbors(cand_points, return_distance=False)

    keep = [
        i for i, nbrs in enumerate(neighbourhoods)
        if cand_saliency[i] >= cand_saliency[nbrs].max()
    ]
    return cand_idx[keep]
