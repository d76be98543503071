"""
Tests for sample consensus initial alignment (SAC-IA).
"""

import numpy as np
from pathlib import Path
import sys

import pytest

# Ensure src is importable
sys.path.append(str(Path(__file__).parent.parent / "src"))

from map_merge.alignment.coarse_registration import (
    SampleConsensusInitialAlignment,
    estimate_transform_from_descriptors,
)
from map_merge.features.descriptors import DescriptorKind, DescriptorSet
from map_merge.utils.exceptions import InputContractError


def _nn_rmse(A: np.ndarray, B: np.ndarray) -> float:
    from sklearn.neighbors import NearestNeighbors  # type: ignore

    nbrs = NearestNeighbors(n_neighbors=1, algorithm="kd_tree").fit(B)
    d, _ = nbrs.kneighbors(A)
    return float(np.sqrt(np.mean(d ** 2)))


def _scene(seed: int = 0):
    rng = np.random.default_rng(seed)
    A = rng.uniform(-5.0, 5.0, size=(60, 3))
    th = np.deg2rad(40.0)
    Rz = np.array([[np.cos(th), -np.sin(th), 0], [np.sin(th), np.cos(th), 0], [0, 0, 1]])
    t = np.array([3.0, -1.0, 0.5])
    B = (A @ Rz.T) + t
    T = np.eye(4)
    T[:3, :3] = Rz
    T[:3, 3] = t
    # Distinctive descriptors shared by corresponding keypoints
    desc = DescriptorSet(DescriptorKind.EIGEN, rng.random((60, 8)))
    return A, B, desc, T


def test_sac_ia_recovers_transform_with_unique_descriptors():
    A, B, desc, T_true = _scene()

    before = _nn_rmse(A, B)
    sac_ia = SampleConsensusInitialAlignment(
        min_sample_distance=0.5,
        max_correspondence_distance=1.0,
        max_iterations=50,
        k_correspondence=1,
    )
    result = sac_ia.align(A, desc, B, desc)
    A2 = A @ result.transform[:3, :3].T + result.transform[:3, 3]

    assert result.converged
    assert _nn_rmse(A2, B) < before * 0.01
    assert np.allclose(result.transform, T_true, atol=1e-6)
    assert result.fitness == pytest.approx(0.0, abs=1e-9)


def test_functional_wrapper_returns_rigid_transform():
    A, B, desc, _ = _scene(seed=2)

    result = estimate_transform_from_descriptors(
        A, desc, B, desc, min_sample_distance=0.5, max_correspondence_distance=1.0, max_iterations=200
    )
    R = result.transform[:3, :3]

    assert result.transform.shape == (4, 4)
    assert np.allclose(R @ R.T, np.eye(3), atol=1e-9)
    assert np.linalg.det(R) == pytest.approx(1.0)
    assert np.allclose(result.transform[3], [0.0, 0.0, 0.0, 1.0])


def test_empty_descriptors_raise():
    A, B, desc, _ = _scene()
    empty = DescriptorSet(DescriptorKind.EIGEN, np.empty((0, 8)))

    with pytest.raises(InputContractError):
        SampleConsensusInitialAlignment().align(A[:0], empty, B, desc)
