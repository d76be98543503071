"""
Tests for RANSAC + SVD registration from keypoint correspondences.
"""

from pathlib import Path
import sys

import numpy as np

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from map_merge.alignment.correspondence_registration import estimate_transform_from_correspondences
from map_merge.alignment.matching import Correspondence


def _rigid(theta_deg: float, t) -> np.ndarray:
    th = np.deg2rad(theta_deg)
    T = np.eye(4)
    T[:3, :3] = np.array([[np.cos(th), -np.sin(th), 0.0], [np.sin(th), np.cos(th), 0.0], [0.0, 0.0, 1.0]])
    T[:3, 3] = t
    return T


def _keypoints(n: int = 100, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.uniform(-5.0, 5.0, size=(n, 3))


def test_recovers_transform_despite_outlier_matches():
    src = _keypoints()
    T_true = _rigid(25.0, [1.0, -2.0, 0.5])
    dst = src @ T_true[:3, :3].T + T_true[:3, 3]

    rng = np.random.default_rng(1)
    correspondences = [Correspondence(i, i, 0.0) for i in range(80)]
    # 20 wrong matches
    correspondences += [Correspondence(i, int(rng.integers(0, 80)), 1.0) for i in range(80, 100)]

    result = estimate_transform_from_correspondences(src, dst, correspondences, inlier_threshold=0.05)

    assert result.success
    assert np.allclose(result.transform, T_true, atol=1e-6)
    assert len(result.inliers) >= 80
    assert all(c.source_idx == c.target_idx for c in result.inliers)


def test_identity_is_a_valid_result():
    src = _keypoints(seed=4)
    correspondences = [Correspondence(i, i, 0.0) for i in range(len(src))]

    result = estimate_transform_from_correspondences(src, src.copy(), correspondences, inlier_threshold=0.05)

    assert result.success
    assert np.allclose(result.transform, np.eye(4), atol=1e-9)
    assert len(result.inliers) == len(src)


def test_too_few_correspondences_fails_with_sentinel():
    src = _keypoints()
    correspondences = [Correspondence(0, 0, 0.0), Correspondence(1, 1, 0.0)]

    result = estimate_transform_from_correspondences(src, src, correspondences, inlier_threshold=0.05)

    assert not result.success
    assert not np.any(result.transform)
    assert result.inliers == []


def test_collinear_keypoints_fail():
    line = np.column_stack([np.linspace(0, 10, 30), np.zeros(30), np.zeros(30)])
    correspondences = [Correspondence(i, i, 0.0) for i in range(30)]

    result = estimate_transform_from_correspondences(line, line, correspondences, inlier_threshold=0.05)

    assert not result.success
    assert not np.any(result.transform)
