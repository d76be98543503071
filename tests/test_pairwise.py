"""
Tests for pairwise registration: transform scoring, confidence and the
registration strategies on hand-built map features.
"""

from pathlib import Path
import sys

import numpy as np
import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from map_merge.alignment.pairwise import (
    PairwiseRegistration,
    confidence_from_score,
    generate_pairs,
    register_pair_task,
    transform_score,
)
from map_merge.features.descriptors import DescriptorKind, DescriptorSet
from map_merge.features.map_features import MapFeatures
from map_merge.utils.config import MapMergingParams
from map_merge.utils.exceptions import DegenerateScoreError


def _rigid(theta_deg: float, t) -> np.ndarray:
    th = np.deg2rad(theta_deg)
    T = np.eye(4)
    T[:3, :3] = np.array([[np.cos(th), -np.sin(th), 0.0], [np.sin(th), np.cos(th), 0.0], [0.0, 0.0, 1.0]])
    T[:3, 3] = t
    return T


def _apply(points: np.ndarray, T: np.ndarray) -> np.ndarray:
    return points @ T[:3, :3].T + T[:3, 3]


def _feature_pair(T: np.ndarray, seed: int = 0, n_keypoints: int = 60):
    """Source/target features with identical descriptors on corresponding keypoints."""
    rng = np.random.default_rng(seed)
    cloud = rng.uniform(-5.0, 5.0, size=(500, 3))
    # Noise keeps the transform score strictly positive
    target_cloud = _apply(cloud, T) + rng.normal(scale=0.01, size=cloud.shape)
    keypoints = cloud[:n_keypoints]
    desc = DescriptorSet(DescriptorKind.EIGEN, rng.random((n_keypoints, 8)))

    source = MapFeatures(cloud=cloud, normals=np.zeros_like(cloud), keypoints=keypoints, descriptors=desc)
    target = MapFeatures(
        cloud=target_cloud,
        normals=np.zeros_like(cloud),
        keypoints=_apply(keypoints, T),
        descriptors=desc,
    )
    return source, target


class TestTransformScore:
    def test_perfect_alignment_scores_zero(self):
        pts = np.random.default_rng(0).random((100, 3))
        assert transform_score(pts, pts, np.eye(4), 1.0) == pytest.approx(0.0)

    def test_residuals_are_clipped(self):
        src = np.zeros((4, 3))
        tgt = np.array([[10.0, 0.0, 0.0]])
        assert transform_score(src, tgt, np.eye(4), 2.0) == pytest.approx(2.0)

    def test_uses_transform(self):
        src = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
        T = np.eye(4)
        T[:3, 3] = [0.0, 0.0, 0.5]
        tgt = src + np.array([0.0, 0.0, 0.5])
        assert transform_score(src, tgt, T, 1.0) == pytest.approx(0.0)
        assert transform_score(src, tgt, np.eye(4), 1.0) == pytest.approx(0.5)

    def test_empty_input_scores_max_distance(self):
        assert transform_score(np.empty((0, 3)), np.zeros((3, 3)), np.eye(4), 1.5) == 1.5


def test_confidence_is_reciprocal_of_score():
    assert confidence_from_score(0.5) == pytest.approx(2.0)
    assert confidence_from_score(0.04) == pytest.approx(25.0)


@pytest.mark.parametrize("score", [0.0, -1.0, float("inf"), float("nan")])
def test_degenerate_scores_raise(score):
    with pytest.raises(DegenerateScoreError):
        confidence_from_score(score)


def test_matching_recovers_transform():
    T_true = _rigid(35.0, [2.0, -1.0, 0.3])
    source, target = _feature_pair(T_true)
    params = MapMergingParams(estimation_method="matching", refine_transform=False, descriptor_type="eigen")

    result = PairwiseRegistration(params).estimate_transform(source, target)

    assert result.success
    assert np.allclose(result.transform, T_true, atol=1e-6)
    assert result.diagnostics["method"] == "matching"
    assert result.diagnostics["correspondences"] == 60
    assert len(result.inliers) == 60


def test_register_pair_scores_successful_estimate():
    T_true = _rigid(-20.0, [1.0, 1.0, 0.0])
    source, target = _feature_pair(T_true, seed=1)
    params = MapMergingParams(estimation_method="matching", refine_transform=False, descriptor_type="eigen")

    est = PairwiseRegistration(params).register_pair(0, 1, source, target)

    assert est.pair == (0, 1)
    assert est.confidence > 1.0
    assert np.allclose(est.transform, T_true, atol=1e-6)


def test_refinement_stays_close_to_true_transform():
    T_true = _rigid(10.0, [0.5, 0.5, 0.1])
    source, target = _feature_pair(T_true, seed=2)
    params = MapMergingParams(estimation_method="matching", refine_transform=True, descriptor_type="eigen")

    result = PairwiseRegistration(params).estimate_transform(source, target)

    assert result.success
    assert result.diagnostics["refined"]
    assert np.allclose(result.transform, T_true, atol=0.05)


def test_collinear_keypoints_give_zero_confidence():
    rng = np.random.default_rng(3)
    line = np.column_stack([np.linspace(0.0, 5.0, 20), np.zeros(20), np.zeros(20)])
    desc = DescriptorSet(DescriptorKind.EIGEN, rng.random((20, 8)))
    cloud = rng.uniform(-5.0, 5.0, size=(200, 3))
    features = MapFeatures(cloud=cloud, normals=np.zeros_like(cloud), keypoints=line, descriptors=desc)
    params = MapMergingParams(estimation_method="matching", refine_transform=True, descriptor_type="eigen")

    est = PairwiseRegistration(params).register_pair(0, 1, features, features)

    assert est.confidence == 0.0
    assert not np.any(est.transform)


def test_sac_ia_strategy_reports_diagnostics():
    T_true = _rigid(15.0, [1.0, 0.0, 0.0])
    source, target = _feature_pair(T_true, seed=4)
    params = MapMergingParams(
        estimation_method="sac_ia", refine_transform=False, descriptor_type="eigen", max_iterations=50
    )

    result = PairwiseRegistration(params).estimate_transform(source, target)

    assert result.success
    assert result.transform.shape == (4, 4)
    assert {"method", "converged", "fitness"} <= set(result.diagnostics)
    assert result.inliers == []


def test_generate_pairs_skips_maps_without_keypoints():
    T = np.eye(4)
    a, b = _feature_pair(T, seed=5)
    empty = MapFeatures(
        cloud=a.cloud,
        normals=a.normals,
        keypoints=np.empty((0, 3)),
        descriptors=DescriptorSet(DescriptorKind.EIGEN, np.empty((0, 8))),
    )
    assert generate_pairs([a, empty, b]) == [(0, 2)]
    assert generate_pairs([a, b, a]) == [(0, 1), (0, 2), (1, 2)]


def test_register_pair_task_uses_indices():
    T_true = _rigid(5.0, [0.2, 0.0, 0.0])
    source, target = _feature_pair(T_true, seed=6)
    params = MapMergingParams(estimation_method="matching", refine_transform=False, descriptor_type="eigen")

    est = register_pair_task((0, 1), features=[source, target], params=params)

    assert est.pair == (0, 1)
    assert est.confidence > 0
