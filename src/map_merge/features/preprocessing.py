"""
Point Cloud Preprocessing

Voxel-grid down-sampling, radius outlier removal and surface normal
estimation. These prepare each map for keypoint detection and descriptor
computation; all functions return new arrays and leave their inputs untouched.
"""

from typing import List, Optional, Tuple

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

# Minimum neighbourhood size for a covariance-based estimate
MIN_NEIGHBOURS = 3


def down_sample(points: np.ndarray, resolution: float) -> np.ndarray:
    """
    Voxel-grid down-sampling: every occupied voxel is replaced by the centroid
    of its points.

    Args:
        points: Nx3 array
        resolution: Voxel edge length. Non-positive values return a copy.

    Returns:
        Mx3 array with M <= N
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(points) == 0 or resolution <= 0:
        return points.copy()

    keys = np.floor(points / resolution).astype(np.int64)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)

    sums = np.zeros((len(counts), 3), dtype=np.float64)
    np.add.at(sums, inverse, points)
    out = sums / counts[:, None]

    logger.debug("down_sample: %d -> %d points (resolution=%.4f)", len(points), len(out), resolution)
    return out


def remove_outliers(points: np.ndarray, radius: float, min_neighbours: int) -> np.ndarray:
    """
    Radius outlier removal.

    Points having fewer than ``min_neighbours`` other points within ``radius``
    are dropped.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(points) == 0 or min_neighbours <= 0:
        return points.copy()

    nn = NearestNeighbors(radius=radius).fit(points)
    neighbourhoods = nn.radius_neighbors(points, return_distance=False)
    # Each neighbourhood contains the query point itself
    counts = np.array([len(n) - 1 for n in neighbourhoods])
    keep = counts >= min_neighbours

    removed = int(np.sum(~keep))
    if removed:
        logger.debug("remove_outliers: removed %d of %d points", removed, len(points))
    return points[keep]


def radius_neighbourhoods(
    points: np.ndarray,
    queries: np.ndarray,
    radius: float,
    *,
    min_neighbours: int = MIN_NEIGHBOURS,
    nn: Optional[NearestNeighbors] = None,
) -> List[np.ndarray]:
    """
    Indices of ``points`` within ``radius`` of each query.

    Sparse neighbourhoods are widened to the ``min_neighbours`` nearest points so
    covariance estimates stay defined.
    """
    if nn is None:
        nn = NearestNeighbors().fit(points)
    neighbourhoods = list(nn.radius_neighbors(queries, radius=radius, return_distance=False))

    sparse = [i for i, n in enumerate(neighbourhoods) if len(n) < min_neighbours]
    if sparse:
        k = min(min_neighbours, len(points))
        knn = nn.kneighbors(queries[sparse], n_neighbors=k, return_distance=False)
        for row, i in enumerate(sparse):
            neighbourhoods[i] = knn[row]
    return neighbourhoods


def local_eigen_decomposition(
    points: np.ndarray,
    queries: np.ndarray,
    radius: float,
) -> Tuple[np.ndarray, np.ndarray, List[np.ndarray]]:
    """
    Eigen-decomposition of the neighbourhood covariance around each query.

    Returns:
        (eigenvalues Qx3 ascending, eigenvectors Qx3x3 (columns), neighbourhoods)
    """
    neighbourhoods = radius_neighbourhoods(points, queries, radius)
    covariances = np.empty((len(queries), 3, 3), dtype=np.float64)
    for i, idx in enumerate(neighbourhoods):
        nbrs = points[idx]
        centered = nbrs - nbrs.mean(axis=0)
        covariances[i] = centered.T @ centered / max(1, len(nbrs))

    eigenvalues, eigenvectors = np.linalg.eigh(covariances)
    eigenvalues = np.clip(eigenvalues, 0.0, None)
    return eigenvalues, eigenvectors, neighbourhoods


def compute_surface_normals(
    points: np.ndarray,
    radius: float,
    viewpoint: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Estimate unit surface normals by local PCA.

    The normal is the eigenvector of the smallest covariance eigenvalue,
    flipped to face ``viewpoint`` (origin by default).

    Args:
        points: Nx3 array
        radius: Neighbourhood radius

    Returns:
        Nx3 array of unit normals
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(points) == 0:
        return np.empty((0, 3), dtype=np.float64)

    _, eigenvectors, _ = local_eigen_decomposition(points, points, radius)
    normals = eigenvectors[:, :, 0]

    vp = np.zeros(3) if viewpoint is None else np.asarray(viewpoint, dtype=np.float64)
    flip = np.einsum("ij,ij->i", normals, vp - points) < 0
    normals[flip] *= -1.0

    norms = np.linalg.norm(normals, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return normals / norms
