"""
Coarse Registration

Global initial alignment of two keypoint clouds that needs no initial guess.
Implements sample consensus initial alignment (SAC-IA): random minimal
samples of well-separated source keypoints are paired with feature-space
neighbours in the target, a rigid transform is fitted to each sample and
scored by a truncated geometric error over all source keypoints.

The returned transform is suitable for initializing ICP.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..features.descriptors import DescriptorSet, assert_descriptor_pair
from ..utils.logging import setup_logger
from ..utils.transforms import apply_transformation, estimate_rigid_transform, is_degenerate_sample

logger = setup_logger(__name__)


@dataclass
class GlobalAlignmentResult:
    transform: np.ndarray
    converged: bool
    fitness: float


@dataclass
class SampleConsensusInitialAlignment:
    min_sample_distance: float = 0.5
    max_correspondence_distance: float = 1.0
    max_iterations: int = 1000
    samples: int = 3
    k_correspondence: int = 10
    seed: int = 0

    def align(
        self,
        source_keypoints: np.ndarray,
        source_descriptors: DescriptorSet,
        target_keypoints: np.ndarray,
        target_descriptors: DescriptorSet,
    ) -> GlobalAlignmentResult:
        """
        Compute a coarse transform aligning source -> target.

        Args:
            source_keypoints: Kx3 array parallel to source_descriptors
            source_descriptors: Source descriptor set
            target_keypoints: Lx3 array parallel to target_descriptors
            target_descriptors: Target descriptor set

        Returns:
            GlobalAlignmentResult; convergence and fitness are advisory only
        """
        assert_descriptor_pair(source_descriptors, target_descriptors)
        src = np.asarray(source_keypoints, dtype=np.float64)
        dst = np.asarray(target_keypoints, dtype=np.float64)

        rng = np.random.default_rng(self.seed)
        k = min(self.k_correspondence, len(target_descriptors))
        feature_nn = NearestNeighbors(n_neighbors=k, algorithm="kd_tree").fit(target_descriptors.features)
        _, feature_matches = feature_nn.kneighbors(source_descriptors.features)
        spatial_nn = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(dst)

        best_transform = np.eye(4)
        best_error = self._compute_error(src, spatial_nn, best_transform)
        found = False

        n_samples = min(self.samples, len(src))
        for iteration in range(self.max_iterations):
            sample = self._select_samples(src, n_samples, rng)
            if sample is None:
                continue
            matches = feature_matches[sample, rng.integers(0, k, size=len(sample))]
            if is_degenerate_sample(src[sample]) or is_degenerate_sample(dst[matches]):
                continue

            T = estimate_rigid_transform(src[sample], dst[matches])
            error = self._compute_error(src, spatial_nn, T)
            if error < best_error:
                best_error = error
                best_transform = T
                found = True
                logger.debug("SAC-IA iteration %d: error improved to %.6f", iteration + 1, error)

        fitness = self._fitness_score(src, spatial_nn, best_transform)
        logger.info("Initial alignment converged: %s, fitness score: %.6f", found, fitness)
        return GlobalAlignmentResult(transform=best_transform, converged=found, fitness=fitness)

    # ------------------------ Helpers ------------------------
    def _select_samples(self, points: np.ndarray, n: int, rng: np.random.Generator, max_tries: int = 100) -> Optional[np.ndarray]:
        """Draw ``n`` indices whose points are pairwise at least min_sample_distance apart."""
        if n < 3:
            return None
        chosen = []
        for _ in range(max_tries):
            idx = int(rng.integers(0, len(points)))
            if idx in chosen:
                continue
            if all(np.linalg.norm(points[idx] - points[c]) >= self.min_sample_distance for c in chosen):
                chosen.append(idx)
                if len(chosen) == n:
                    return np.asarray(chosen)
        return None

    def _compute_error(self, src: np.ndarray, spatial_nn: NearestNeighbors, T: np.ndarray) -> float:
        # Squared residuals truncated at the correspondence distance
        d, _ = spatial_nn.kneighbors(apply_transformation(src, T))
        limit = self.max_correspondence_distance ** 2
        return float(np.mean(np.minimum(d.ravel() ** 2, limit)))

    def _fitness_score(self, src: np.ndarray, spatial_nn: NearestNeighbors, T: np.ndarray) -> float:
        d, _ = spatial_nn.kneighbors(apply_transformation(src, T))
        d2 = d.ravel() ** 2
        valid = d2 <= self.max_correspondence_distance ** 2
        if not np.any(valid):
            return float("inf")
        return float(np.mean(d2[valid]))


def estimate_transform_from_descriptors(
    source_keypoints: np.ndarray,
    source_descriptors: DescriptorSet,
    target_keypoints: np.ndarray,
    target_descriptors: DescriptorSet,
    min_sample_distance: float,
    max_correspondence_distance: float,
    max_iterations: int,
    *,
    samples: int = 3,
    k_correspondence: int = 10,
    seed: int = 0,
) -> GlobalAlignmentResult:
    """Functional wrapper around SampleConsensusInitialAlignment."""
    sac_ia = SampleConsensusInitialAlignment(
        min_sample_distance=min_sample_distance,
        max_correspondence_distance=max_correspondence_distance,
        max_iterations=max_iterations,
        samples=samples,
        k_correspondence=k_correspondence,
        seed=seed,
    )
    return sac_ia.align(source_keypoints, source_descriptors, target_keypoints, target_descriptors)
