"""
Pairwise Registration

Orchestrates the registration strategies for one pair of maps and turns the
result into a scored transform estimate:

- matching: reciprocal descriptor matching + RANSAC/SVD
- sac_ia: sample consensus initial alignment on descriptors
- optional ICP refinement of either result

Confidence is the reciprocal of the transform score (mean clipped residual).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

import numpy as np
from sklearn.neighbors import NearestNeighbors

from .coarse_registration import estimate_transform_from_descriptors
from .correspondence_registration import estimate_transform_from_correspondences
from .fine_registration import estimate_transform_icp
from .matching import Correspondence, find_feature_correspondences
from ..features.map_features import MapFeatures
from ..graph.transform_graph import TransformEstimate
from ..utils.config import MapMergingParams
from ..utils.exceptions import DegenerateScoreError
from ..utils.logging import setup_logger
from ..utils.transforms import apply_transformation, zero_transform

logger = setup_logger(__name__)


def transform_score(
    source: np.ndarray,
    target: np.ndarray,
    transform: np.ndarray,
    max_distance: float,
) -> float:
    """
    Mean nearest-neighbour residual of the transformed source, each residual
    clipped to ``max_distance``. Lower is better.
    """
    source = np.asarray(source, dtype=np.float64).reshape(-1, 3)
    target = np.asarray(target, dtype=np.float64).reshape(-1, 3)
    if len(source) == 0 or len(target) == 0:
        return float(max_distance)

    nn = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(target)
    d, _ = nn.kneighbors(apply_transformation(source, transform))
    return float(np.mean(np.minimum(d.ravel(), max_distance)))


def confidence_from_score(score: float) -> float:
    """Reciprocal of a registration score; zero or non-finite scores are rejected."""
    if not np.isfinite(score) or score <= 0:
        raise DegenerateScoreError(f"Cannot derive confidence from score {score!r}")
    return 1.0 / score


@dataclass
class PairwiseResult:
    transform: np.ndarray
    success: bool
    inliers: List[Correspondence] = field(default_factory=list)
    diagnostics: Dict[str, Any] = field(default_factory=dict)


class PairwiseRegistration:
    """
    Registers pairs of maps according to MapMergingParams.

    Example:
        registration = PairwiseRegistration(params)
        estimate = registration.register_pair(0, 1, features[0], features[1])
    """

    def __init__(self, params: MapMergingParams):
        self.params = params

    def estimate_transform(self, source: MapFeatures, target: MapFeatures) -> PairwiseResult:
        """
        Estimate the transform mapping ``source`` into ``target``'s frame.

        A failed primary strategy returns the sentinel transform with
        ``success=False`` and is not refined.
        """
        p = self.params
        method = p.estimation_method
        diagnostics: Dict[str, Any] = {"method": method}
        inliers: List[Correspondence] = []

        if method == "matching":
            correspondences = find_feature_correspondences(
                source.descriptors, target.descriptors, k=p.matching_k
            )
            diagnostics["correspondences"] = len(correspondences)
            result = estimate_transform_from_correspondences(
                source.keypoints,
                target.keypoints,
                correspondences,
                p.inlier_threshold,
                max_iterations=p.ransac_iterations,
                seed=p.seed,
            )
            if not result.success:
                return PairwiseResult(zero_transform(), False, [], diagnostics)
            transform = result.transform
            inliers = result.inliers
            diagnostics["inliers"] = len(inliers)
        elif method == "sac_ia":
            result = estimate_transform_from_descriptors(
                source.keypoints,
                source.descriptors,
                target.keypoints,
                target.descriptors,
                min_sample_distance=p.resolution * 2.0,
                max_correspondence_distance=p.max_correspondence_distance,
                max_iterations=p.max_iterations,
                seed=p.seed,
            )
            transform = result.transform
            diagnostics["converged"] = result.converged
            diagnostics["fitness"] = result.fitness
        else:
            raise ValueError(f"Unknown estimation method '{method}'")

        if p.refine_transform:
            transform = estimate_transform_icp(
                source.cloud,
                target.cloud,
                transform,
                max_correspondence_distance=p.max_correspondence_distance,
                outlier_rejection_threshold=p.inlier_threshold,
                max_iterations=p.max_iterations,
                transformation_epsilon=p.transform_epsilon,
            )
            diagnostics["refined"] = True

        return PairwiseResult(transform, True, inliers, diagnostics)

    def register_pair(self, i: int, j: int, source: MapFeatures, target: MapFeatures) -> TransformEstimate:
        """Estimate and score the transform of map ``i`` into map ``j`` (i < j)."""
        result = self.estimate_transform(source, target)
        if not result.success:
            logger.warning("Pair (%d, %d): registration failed; confidence 0.", i, j)
            return TransformEstimate(i, j, zero_transform(), 0.0)

        score = transform_score(source.cloud, target.cloud, result.transform, self.params.max_correspondence_distance)
        try:
            confidence = confidence_from_score(score)
        except DegenerateScoreError as e:
            logger.warning("Pair (%d, %d): %s; confidence 0.", i, j, e)
            return TransformEstimate(i, j, zero_transform(), 0.0)

        logger.info("Pair (%d, %d): score %.6f, confidence %.3f %s", i, j, score, confidence, result.diagnostics)
        return TransformEstimate(i, j, result.transform, confidence)


def generate_pairs(features: List[MapFeatures]) -> List[tuple]:
    """All (i, j), i < j, where both maps have at least one keypoint."""
    return [
        (i, j)
        for i in range(len(features) - 1)
        for j in range(i + 1, len(features))
        if features[i].has_keypoints and features[j].has_keypoints
    ]


def register_pair_task(pair: tuple, features: List[MapFeatures], params: MapMergingParams) -> TransformEstimate:
    """Worker entry point for the parallel executor (module level for pickling)."""
    i, j = pair
    return PairwiseRegistration(params).register_pair(i, j, features[i], features[j])
