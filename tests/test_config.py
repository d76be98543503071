"""Tests for configuration loading and derived merging parameters."""

import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).parent.parent / "src"))

from map_merge.utils.config import AppConfig, MapMergingParams, load_config


def test_default_config_file_matches_model_defaults():
    """config/default.yaml mirrors the built-in defaults."""
    cfg = load_config(None)

    assert cfg.merging.resolution == 0.1
    assert cfg.merging.estimation_method == "matching"
    assert cfg.merging.descriptor_type == "eigen"
    assert cfg.merging.keypoint_type == "iss"
    assert cfg.merging.confidence_threshold == pytest.approx(1.5)
    assert cfg.parallel.enabled is True
    assert cfg.parallel.n_workers is None
    assert cfg.logging.level == "INFO"


def test_radii_derive_from_resolution():
    params = MapMergingParams(resolution=0.2)

    assert params.descriptor_radius == pytest.approx(1.6)
    assert params.normal_radius == pytest.approx(1.2)
    assert params.inlier_threshold == pytest.approx(1.0)
    assert params.max_correspondence_distance == pytest.approx(2.0)
    assert params.confidence_threshold == pytest.approx(0.75)


def test_explicit_radii_are_kept():
    params = MapMergingParams(resolution=0.2, inlier_threshold=0.3, descriptor_radius=2.5)

    assert params.descriptor_radius == 2.5
    assert params.inlier_threshold == 0.3
    # Still derived, from the explicit inlier threshold
    assert params.max_correspondence_distance == pytest.approx(0.6)


def test_partial_yaml_uses_defaults(tmp_path):
    cfg_file = tmp_path / "custom.yaml"
    cfg_file.write_text("merging:\n  resolution: 0.5\n  estimation_method: sac_ia\nparallel:\n  n_workers: 2\n")

    cfg = load_config(cfg_file)

    assert cfg.merging.resolution == 0.5
    assert cfg.merging.estimation_method == "sac_ia"
    assert cfg.merging.normal_radius == pytest.approx(3.0)
    assert cfg.parallel.n_workers == 2
    assert cfg.paths.output_dir == AppConfig().paths.output_dir


def test_invalid_values_raise_value_error(tmp_path):
    cfg_file = tmp_path / "bad.yaml"
    cfg_file.write_text("merging:\n  descriptor_type: shot\n")

    with pytest.raises(ValueError, match="Invalid configuration"):
        load_config(cfg_file)


def test_missing_file(tmp_path):
    missing = tmp_path / "nope.yaml"

    assert isinstance(load_config(missing), AppConfig)
    with pytest.raises(FileNotFoundError):
        load_config(missing, allow_missing=False)


def test_explicit_confidence_threshold_is_kept():
    params = MapMergingParams(resolution=0.2, confidence_threshold=5.0)

    assert params.confidence_threshold == 5.0


def test_default_descriptor_needs_no_optional_extra():
    """The built-in descriptor is computed with numpy and scikit-learn only."""
    assert MapMergingParams().descriptor_type == "eigen"
