"""
Configuration management for map-merge.

Provides a typed pydantic model and YAML loader with sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Literal, Any, Dict

from pydantic import BaseModel, Field, ValidationError, model_validator
import yaml


# -----------------------
# Typed config structures
# -----------------------


class PathsConfig(BaseModel):
    output_dir: str = Field(default="data/merged")


class MapMergingParams(BaseModel):
    """Parameters of feature extraction, pairwise registration and consensus."""

    resolution: float = Field(default=0.1, gt=0, description="Registration resolution (voxel size, m)")
    descriptor_radius: Optional[float] = Field(
        default=None,
        description="Radius for local descriptors and outlier removal (None = 8 * resolution)",
    )
    outliers_min_neighbours: int = Field(
        default=50,
        ge=0,
        description="Points with fewer neighbours within descriptor_radius are removed",
    )
    normal_radius: Optional[float] = Field(
        default=None,
        description="Radius for surface normal estimation (None = 6 * resolution)",
    )
    keypoint_type: Literal["iss", "curvature", "uniform"] = Field(default="iss")
    keypoint_threshold: float = Field(
        default=0.01,
        ge=0,
        description="Saliency threshold for keypoint detection (meaning depends on keypoint_type)",
    )
    descriptor_type: Literal["eigen", "fpfh"] = Field(
        default="eigen",
        description="Local descriptor kind; fpfh needs the optional open3d extra",
    )
    estimation_method: Literal["matching", "sac_ia"] = Field(default="matching")
    refine_transform: bool = Field(default=True, description="Post-refine pairwise transforms with ICP")
    inlier_threshold: Optional[float] = Field(
        default=None,
        description="RANSAC inlier / ICP outlier rejection distance (None = 5 * resolution)",
    )
    max_correspondence_distance: Optional[float] = Field(
        default=None,
        description="Max correspondence distance for ICP, SAC-IA and scoring (None = 2 * inlier_threshold)",
    )
    max_iterations: int = Field(default=100, gt=0)
    matching_k: int = Field(default=5, ge=1, description="k for reciprocal descriptor matching")
    transform_epsilon: float = Field(default=1e-2, ge=0, description="ICP convergence epsilon on transform change")
    confidence_threshold: Optional[float] = Field(
        default=None,
        ge=0,
        description=(
            "Minimum edge confidence accepted in the graph "
            "(None = 1.5 / max_correspondence_distance: accepts exact fits overlapping a third of the source)"
        ),
    )
    output_resolution: float = Field(default=0.05, gt=0, description="Voxel size of the merged map")
    ransac_iterations: int = Field(default=1000, gt=0)
    seed: int = Field(default=0, description="Seed for the sampling-based estimators")

    @model_validator(mode="after")
    def _derive_radii(self) -> "MapMergingParams":
        if self.descriptor_radius is None:
            self.descriptor_radius = self.resolution * 8.0
        if self.normal_radius is None:
            self.normal_radius = self.resolution * 6.0
        if self.inlier_threshold is None:
            self.inlier_threshold = self.resolution * 5.0
        if self.max_correspondence_distance is None:
            self.max_correspondence_distance = self.inlier_threshold * 2.0
        if self.confidence_threshold is None:
            # Residuals are clipped at max_correspondence_distance, so a perfect
            # fit overlapping a fraction f of the source has confidence >= 1 / ((1 - f) * distance)
            self.confidence_threshold = 1.5 / self.max_correspondence_distance
        return self


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    file: Optional[str] = Field(default=None)


class ParallelConfig(BaseModel):
    enabled: bool = Field(default=True, description="Run pairwise registrations in a process pool")
    n_workers: Optional[int] = Field(default=None, description="Number of worker processes (None = auto-detect: cpu_count - 1)")


class AppConfig(BaseModel):
    paths: PathsConfig = Field(default_factory=PathsConfig)
    merging: MapMergingParams = Field(default_factory=MapMergingParams)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# -----------------------
# Loader
# -----------------------


def _project_root() -> Path:
    """
    Resolve the repository root directory.

    File is at: repo_root/src/map_merge/utils/config.py
    """
    return Path(__file__).resolve().parents[3]


def load_config(path: Optional[str | Path] = None, *, allow_missing: bool = True) -> AppConfig:
    """
    Load configuration from YAML into a typed AppConfig.

    Search order when path is None:
    1) repo_root/config/default.yaml
    2) if missing and allow_missing=True: return default AppConfig()

    Args:
        path: Explicit YAML file path.
        allow_missing: If True, returns defaults when file missing; otherwise raises.

    Returns:
        AppConfig instance
    """
    cfg_path: Path
    if path is None:
        cfg_path = _project_root() / "config" / "default.yaml"
    else:
        cfg_path = Path(path)

    if not cfg_path.exists():
        if allow_missing:
            return AppConfig()
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Dict[str, Any] = yaml.safe_load(f) or {}

    try:
        return AppConfig.model_validate(raw)
    except ValidationError as e:
        # Re-raise with context to help users fix the YAML
        raise ValueError(f"Invalid configuration in {cfg_path}: {e}")
