"""
Rigid transform helpers

Homogeneous 4x4 rigid transforms stored as float64 numpy arrays. The all-zero
matrix is reserved as the "no valid transform" sentinel at API boundaries that
require a matrix.
"""

from typing import Optional

import numpy as np


def identity_transform() -> np.ndarray:
    return np.eye(4)


def zero_transform() -> np.ndarray:
    """Sentinel matrix for "no valid transform"."""
    return np.zeros((4, 4))


def is_sentinel(transform: Optional[np.ndarray]) -> bool:
    """True for None or for the all-zero sentinel matrix."""
    if transform is None:
        return True
    return not np.any(np.asarray(transform))


def apply_transformation(points: np.ndarray, transform: np.ndarray) -> np.ndarray:
    """
    Apply a transformation matrix to a set of points.

    Args:
        points: Point cloud (N x 3).
        transform: Transformation matrix (4 x 4).

    Returns:
        Transformed point cloud (N x 3).
    """
    if points.size == 0:
        return points

    R = transform[:3, :3]
    t = transform[:3, 3]
    return points @ R.T + t


def invert_transform(transform: np.ndarray) -> np.ndarray:
    """Closed-form inverse of a rigid transform."""
    R = transform[:3, :3]
    t = transform[:3, 3]
    inv = np.eye(4)
    inv[:3, :3] = R.T
    inv[:3, 3] = -R.T @ t
    return inv


def estimate_rigid_transform(source_points: np.ndarray, target_points: np.ndarray) -> np.ndarray:
    """
    Estimate the least-squares rigid transformation between corresponding points.

    Args:
        source_points: Source points (N x 3).
        target_points: Corresponding target points (N x 3).

    Returns:
        Transformation matrix (4 x 4) mapping source onto target.
    """
    source_centroid = np.mean(source_points, axis=0)
    target_centroid = np.mean(target_points, axis=0)

    source_centered = source_points - source_centroid
    target_centered = target_points - target_centroid

    # Cross-covariance
    H = source_centered.T @ target_centered

    U, _, Vt = np.linalg.svd(H)
    R = Vt.T @ U.T

    # Ensure proper rotation (det(R) should be 1)
    if np.linalg.det(R) < 0:
        Vt[-1, :] *= -1
        R = Vt.T @ U.T

    t = target_centroid - R @ source_centroid

    transform = np.eye(4)
    transform[:3, :3] = R
    transform[:3, 3] = t
    return transform


def is_degenerate_sample(points: np.ndarray, eps: float = 1e-9) -> bool:
    """True if the points are coincident or collinear (no unique rigid fit)."""
    if len(points) < 3:
        return True
    centered = points - points.mean(axis=0)
    singular_values = np.linalg.svd(centered, compute_uv=False)
    # Second singular value vanishes for collinear / coincident samples
    return bool(singular_values[1] <= eps * max(1.0, singular_values[0]))


def transform_change(delta: np.ndarray) -> float:
    """Squared Frobenius distance of an incremental transform from identity."""
    return float(np.sum((delta - np.eye(4)) ** 2))
