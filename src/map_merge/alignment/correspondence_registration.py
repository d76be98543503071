"""
Correspondence-Based Registration

Robust rigid alignment of two keypoint clouds from putative correspondences:
RANSAC consensus over minimal samples, then a least-squares re-fit on the
inliers of the best model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np

from .matching import Correspondence, correspondence_arrays
from ..utils.logging import setup_logger
from ..utils.transforms import (
    apply_transformation,
    estimate_rigid_transform,
    is_degenerate_sample,
    zero_transform,
)

logger = setup_logger(__name__)

# Correspondences in a minimal sample / minimum support of a model
SAMPLE_SIZE = 3


@dataclass
class CorrespondenceRegistrationResult:
    transform: np.ndarray
    inliers: List[Correspondence] = field(default_factory=list)
    success: bool = False

    @classmethod
    def failed(cls) -> "CorrespondenceRegistrationResult":
        return cls(transform=zero_transform(), inliers=[], success=False)


def ransac_consensus(
    source_points: np.ndarray,
    target_points: np.ndarray,
    inlier_threshold: float,
    *,
    max_iterations: int = 1000,
    seed: int = 0,
):
    """
    RANSAC search for the rigid model with the most inliers.

    Args:
        source_points: Nx3 source points of the correspondences
        target_points: Nx3 matching target points
        inlier_threshold: Residual below which a correspondence is an inlier
        max_iterations: Number of minimal samples drawn
        seed: RNG seed

    Returns:
        (success, best_transform, inlier_mask). ``success`` is False when no
        non-degenerate sample produced a model with at least three inliers.
    """
    n = len(source_points)
    best_mask = np.zeros(n, dtype=bool)
    best_transform = zero_transform()
    if n < SAMPLE_SIZE:
        return False, best_transform, best_mask

    rng = np.random.default_rng(seed)
    best_count = 0
    for _ in range(max_iterations):
        sample = rng.choice(n, SAMPLE_SIZE, replace=False)
        if is_degenerate_sample(source_points[sample]) or is_degenerate_sample(target_points[sample]):
            continue

        T = estimate_rigid_transform(source_points[sample], target_points[sample])
        residuals = np.linalg.norm(apply_transformation(source_points, T) - target_points, axis=1)
        mask = residuals < inlier_threshold
        count = int(np.sum(mask))
        if count > best_count:
            best_count = count
            best_mask = mask
            best_transform = T
            if count == n:
                break

    success = best_count >= SAMPLE_SIZE
    return success, best_transform, best_mask


def estimate_transform_from_correspondences(
    source_keypoints: np.ndarray,
    target_keypoints: np.ndarray,
    correspondences: Sequence[Correspondence],
    inlier_threshold: float,
    *,
    max_iterations: int = 1000,
    seed: int = 0,
) -> CorrespondenceRegistrationResult:
    """
    Estimate source -> target transform from keypoint correspondences.

    Args:
        source_keypoints: Source keypoint cloud (K x 3)
        target_keypoints: Target keypoint cloud (L x 3)
        correspondences: Putative matches between the two
        inlier_threshold: RANSAC inlier distance
        max_iterations: RANSAC iteration budget
        seed: RNG seed

    Returns:
        CorrespondenceRegistrationResult. On failure ``success`` is False, the
        transform is the all-zero sentinel and there are no inliers.
    """
    correspondences = list(correspondences)
    src_idx, dst_idx = correspondence_arrays(correspondences)
    src = np.asarray(source_keypoints, dtype=np.float64)[src_idx]
    dst = np.asarray(target_keypoints, dtype=np.float64)[dst_idx]

    success, model, mask = ransac_consensus(
        src, dst, inlier_threshold, max_iterations=max_iterations, seed=seed
    )
    if not success:
        logger.warning(
            "Correspondence registration failed: no consensus model among %d correspondences.",
            len(correspondences),
        )
        return CorrespondenceRegistrationResult.failed()

    inliers = [c for c, keep in zip(correspondences, mask) if keep]
    transform = estimate_rigid_transform(src[mask], dst[mask])

    logger.info(
        "Correspondence registration: %d inliers of %d correspondences (threshold %.4f).",
        len(inliers),
        len(correspondences),
        inlier_threshold,
    )
    logger.debug("RANSAC model:\n%s\nRefined transform:\n%s", model, transform)
    return CorrespondenceRegistrationResult(transform=transform, inliers=inliers, success=True)
