"""
Descriptor Matching

Reciprocal (cross-checked) correspondences between two descriptor sets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np
from sklearn.neighbors import NearestNeighbors

from ..features.descriptors import DescriptorSet, assert_descriptor_pair
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class Correspondence:
    source_idx: int
    target_idx: int
    distance: float


def _sorted_knn(index: np.ndarray, queries: np.ndarray, k: int):
    """k nearest rows of ``index`` for each query, sorted by (distance, index)."""
    nn = NearestNeighbors(n_neighbors=k, algorithm="kd_tree").fit(index)
    distances, indices = nn.kneighbors(queries)
    # Stable tie-break on index so exact duplicates resolve deterministically
    order = np.lexsort((indices, distances), axis=1)
    rows = np.arange(len(queries))[:, None]
    return distances[rows, order], indices[rows, order]


def find_feature_correspondences(
    source: DescriptorSet,
    target: DescriptorSet,
    k: int = 5,
) -> List[Correspondence]:
    """
    Match reciprocal correspondences among the k nearest matches.

    For every source descriptor, its k nearest target descriptors are tried in
    order of increasing feature distance; the first one whose own k nearest
    source descriptors include the original source index is accepted. Each
    source index therefore appears at most once.

    Candidates at equal feature distance are tried in index order. Exactly
    duplicated target descriptors thus all resolve to the lowest index among
    them, and a target index may be matched by several sources.

    Args:
        source: Source descriptor set
        target: Target descriptor set (same kind as source)
        k: Neighbourhood size for the forward and backward searches

    Returns:
        List of correspondences; distance is the squared feature distance

    Raises:
        InputContractError: if either set is empty or the kinds differ
    """
    assert_descriptor_pair(source, target)
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")

    k_forward = min(k, len(target))
    k_backward = min(k, len(source))

    fwd_dist, fwd_idx = _sorted_knn(target.features, source.features, k_forward)
    # Back-match only target descriptors that were actually proposed
    proposed = np.unique(fwd_idx)
    _, back_idx = _sorted_knn(source.features, target.features[proposed], k_backward)
    back_sets = {int(t): set(back_idx[row].tolist()) for row, t in enumerate(proposed)}

    result: List[Correspondence] = []
    for i in range(len(source)):
        for j in range(k_forward):
            match = int(fwd_idx[i, j])
            if i in back_sets[match]:
                result.append(Correspondence(i, match, float(fwd_dist[i, j] ** 2)))
                break

    logger.debug("find_feature_correspondences cross-matches: %d (of %d source descriptors)", len(result), len(source))
    return result


def correspondence_arrays(correspondences: List[Correspondence]):
    """Split correspondences into (source_idx, target_idx) integer arrays."""
    if not correspondences:
        return np.empty(0, dtype=int), np.empty(0, dtype=int)
    src = np.fromiter((c.source_idx for c in correspondences), dtype=int, count=len(correspondences))
    dst = np.fromiter((c.target_idx for c in correspondences), dtype=int, count=len(correspondences))
    return src, dst
