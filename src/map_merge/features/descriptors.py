"""
Local Descriptors

Feature vectors describing the local geometry around each keypoint. The
supported descriptor kinds form a closed enumeration; each kind registers one
``DescriptorExtractor`` so matching and alignment code can treat every
``DescriptorSet`` the same way.

Kinds implemented:
- eigen: covariance eigenvalue features + normal deviation histogram (numpy)
- fpfh: Fast Point Feature Histograms via Open3D (optional dependency)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .preprocessing import local_eigen_decomposition
from ..utils.exceptions import InputContractError
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


class DescriptorKind(str, Enum):
    EIGEN = "eigen"
    FPFH = "fpfh"


@dataclass(frozen=True)
class DescriptorSet:
    """Per-keypoint feature vectors, parallel-indexed to a keypoint cloud."""

    kind: DescriptorKind
    features: np.ndarray

    def __post_init__(self):
        features = np.asarray(self.features, dtype=np.float64)
        if features.ndim != 2:
            raise InputContractError(f"descriptor features must be (K, D), got shape {features.shape}")
        object.__setattr__(self, "features", features)
        object.__setattr__(self, "kind", DescriptorKind(self.kind))

    def __len__(self) -> int:
        return len(self.features)

    @property
    def dimension(self) -> int:
        return int(self.features.shape[1])


def assert_descriptor_pair(source: DescriptorSet, target: DescriptorSet) -> None:
    """Raise InputContractError unless both sets are non-empty and comparable."""
    if len(source) == 0 or len(target) == 0:
        raise InputContractError(
            f"descriptor sets must not be empty (source={len(source)}, target={len(target)})"
        )
    if source.kind is not target.kind:
        raise InputContractError(
            f"descriptor kinds differ: {source.kind.value} vs {target.kind.value}"
        )
    if source.dimension != target.dimension:
        raise InputContractError(
            f"descriptor dimensions differ: {source.dimension} vs {target.dimension}"
        )


@dataclass(frozen=True)
class DescriptorExtractor:
    kind: DescriptorKind
    dimension: int
    compute: Callable[[np.ndarray, np.ndarray, np.ndarray, float], np.ndarray]


# Bins of the angle histogram between keypoint normal and neighbour normals
EIGEN_NORMAL_BINS = 5


def _eigen_features(points: np.ndarray, normals: np.ndarray, keypoints: np.ndarray, radius: float) -> np.ndarray:
    eigenvalues, _, neighbourhoods = local_eigen_decomposition(points, keypoints, radius)
    # Descending order: l1 >= l2 >= l3
    l1, l2, l3 = eigenvalues[:, 2], eigenvalues[:, 1], eigenvalues[:, 0]
    total = l1 + l2 + l3
    total[total == 0] = 1.0
    e1, e2, e3 = l1 / total, l2 / total, l3 / total

    safe_l1 = np.where(l1 > 0, l1, 1.0)
    linearity = (l1 - l2) / safe_l1
    planarity = (l2 - l3) / safe_l1
    scattering = l3 / safe_l1
    omnivariance = np.cbrt(e1 * e2 * e3)
    with np.errstate(divide="ignore", invalid="ignore"):
        entropy = -sum(np.where(e > 0, e * np.log(e), 0.0) for e in (e1, e2, e3))

    nn = NearestNeighbors(n_neighbors=1).fit(points)
    _, nearest = nn.kneighbors(keypoints)
    key_normals = normals[nearest.ravel()]

    histograms = np.zeros((len(keypoints), EIGEN_NORMAL_BINS), dtype=np.float64)
    for i, idx in enumerate(neighbourhoods):
        cos = np.clip(np.abs(normals[idx] @ key_normals[i]), 0.0, 1.0)
        hist, _ = np.histogram(cos, bins=EIGEN_NORMAL_BINS, range=(0.0, 1.0))
        histograms[i] = hist / max(1, len(idx))

    return np.column_stack([
        e1, e2, e3, linearity, planarity, scattering, omnivariance, entropy, histograms,
    ])


def _fpfh_features(points: np.ndarray, normals: np.ndarray, keypoints: np.ndarray, radius: float) -> np.ndarray:
    try:
        import open3d as o3d  # type: ignore
    except Exception as e:
        raise ImportError("Open3D is required for fpfh descriptors") from e

    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(points.astype(np.float64))
    pcd.normals = o3d.utility.Vector3dVector(normals.astype(np.float64))
    fpfh = o3d.pipelines.registration.compute_fpfh_feature(
        pcd, o3d.geometry.KDTreeSearchParamHybrid(radius=radius, max_nn=100)
    )
    # Open3D stores features as (D, N)
    features = np.asarray(fpfh.data, dtype=np.float64).T

    nn = NearestNeighbors(n_neighbors=1).fit(points)
    _, nearest = nn.kneighbors(keypoints)
    return features[nearest.ravel()]


_REGISTRY: Dict[DescriptorKind, DescriptorExtractor] = {
    DescriptorKind.EIGEN: DescriptorExtractor(DescriptorKind.EIGEN, 8 + EIGEN_NORMAL_BINS, _eigen_features),
    DescriptorKind.FPFH: DescriptorExtractor(DescriptorKind.FPFH, 33, _fpfh_features),
}


def get_extractor(kind: DescriptorKind | str) -> DescriptorExtractor:
    try:
        return _REGISTRY[DescriptorKind(kind)]
    except ValueError as e:
        supported = ", ".join(k.value for k in DescriptorKind)
        raise InputContractError(f"Unknown descriptor kind '{kind}' (supported: {supported})") from e


def compute_local_descriptors(
    points: np.ndarray,
    normals: np.ndarray,
    keypoints: np.ndarray,
    kind: DescriptorKind | str,
    radius: float,
) -> DescriptorSet:
    """
    Compute descriptors of the given kind at each keypoint.

    Args:
        points: Nx3 cloud the neighbourhoods are taken from
        normals: Nx3 normals parallel to points
        keypoints: Kx3 keypoint cloud
        kind: Descriptor kind
        radius: Descriptor support radius

    Returns:
        DescriptorSet with K rows
    """
    extractor = get_extractor(kind)
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    keypoints = np.asarray(keypoints, dtype=np.float64).reshape(-1, 3)

    if len(keypoints) == 0 or len(points) == 0:
        return DescriptorSet(extractor.kind, np.empty((0, extractor.dimension)))

    features = extractor.compute(points, np.asarray(normals, dtype=np.float64), keypoints, radius)
    logger.debug("Computed %d %s descriptors (dim=%d).", len(features), extractor.kind.value, features.shape[1])
    return DescriptorSet(extractor.kind, features)
