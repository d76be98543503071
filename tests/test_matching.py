"""
Tests for reciprocal descriptor matching.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from map_merge.alignment.matching import find_feature_correspondences
from map_merge.features.descriptors import DescriptorKind, DescriptorSet
from map_merge.utils.exceptions import InputContractError


def _descriptors(n: int = 50, dim: int = 8, seed: int = 0) -> DescriptorSet:
    rng = np.random.default_rng(seed)
    return DescriptorSet(DescriptorKind.EIGEN, rng.random((n, dim)))


def test_identical_sets_match_every_index_to_itself():
    desc = _descriptors()
    matches = find_feature_correspondences(desc, desc, k=5)

    assert len(matches) == len(desc)
    for m in matches:
        assert m.source_idx == m.target_idx
        assert m.distance == pytest.approx(0.0, abs=1e-12)


def test_identical_sets_with_k_one():
    desc = _descriptors(n=20, seed=3)
    matches = find_feature_correspondences(desc, desc, k=1)
    assert sorted((m.source_idx, m.target_idx) for m in matches) == [(i, i) for i in range(20)]


def test_at_most_one_correspondence_per_source():
    src = _descriptors(n=40, seed=1)
    dst = _descriptors(n=25, seed=2)
    matches = find_feature_correspondences(src, dst, k=5)

    sources = [m.source_idx for m in matches]
    assert len(sources) == len(set(sources))
    assert len(matches) <= len(src)
    assert all(0 <= m.target_idx < len(dst) for m in matches)


def test_non_reciprocal_match_is_rejected():
    # Both sources prefer target 0, but target 0 only points back at source 0
    src = DescriptorSet(DescriptorKind.EIGEN, np.array([[0.0], [0.4]]))
    dst = DescriptorSet(DescriptorKind.EIGEN, np.array([[0.1], [5.0]]))
    matches = find_feature_correspondences(src, dst, k=1)

    assert [(m.source_idx, m.target_idx) for m in matches] == [(0, 0)]
    assert matches[0].distance == pytest.approx(0.01)


def test_reciprocal_match_found_among_k_candidates():
    # With k=2, target 0 lists both sources among its neighbours
    src = DescriptorSet(DescriptorKind.EIGEN, np.array([[0.0], [0.4]]))
    dst = DescriptorSet(DescriptorKind.EIGEN, np.array([[0.1], [5.0]]))
    matches = find_feature_correspondences(src, dst, k=2)

    pairs = sorted((m.source_idx, m.target_idx) for m in matches)
    assert pairs == [(0, 0), (1, 0)]


def test_exact_duplicate_descriptors_resolve_to_lower_index():
    # Rows 0 and 1 are identical: both sources prefer target 0 and target 0
    # lists both sources, so the higher duplicate does not map to itself
    features = np.array([[0.0, 0.0], [0.0, 0.0], [1.0, 1.0]])
    desc = DescriptorSet(DescriptorKind.EIGEN, features)

    matches = find_feature_correspondences(desc, desc, k=2)

    assert [(m.source_idx, m.target_idx) for m in matches] == [(0, 0), (1, 0), (2, 2)]
    assert all(m.distance == 0.0 for m in matches)


def test_empty_descriptor_set_is_an_error():
    empty = DescriptorSet(DescriptorKind.EIGEN, np.empty((0, 8)))
    with pytest.raises(InputContractError):
        find_feature_correspondences(empty, _descriptors())
    with pytest.raises(InputContractError):
        find_feature_correspondences(_descriptors(), empty)


def test_mismatched_kinds_are_an_error():
    a = DescriptorSet(DescriptorKind.EIGEN, np.ones((3, 33)))
    b = DescriptorSet(DescriptorKind.FPFH, np.ones((3, 33)))
    with pytest.raises(InputContractError):
        find_feature_correspondences(a, b)
