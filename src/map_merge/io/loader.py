"""
Map Loader

Loads partial maps as Nx3 float64 arrays from LAS/LAZ (laspy), NumPy .npy
or whitespace separated text (.xyz / .txt / .pts) files.
"""

from pathlib import Path
from typing import List, Sequence, Union

import laspy
import numpy as np

from ..utils.logging import setup_logger

logger = setup_logger(__name__)

SUPPORTED_SUFFIXES = (".las", ".laz", ".npy", ".xyz", ".txt", ".pts")


def load_map(file_path: Union[str, Path]) -> np.ndarray:
    """
    Load a single map.

    Args:
        file_path: Path to the map file

    Returns:
        Nx3 array of points

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file format is unsupported or the content is not Nx3
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValueError(f"Unsupported file format: {file_path.suffix}")

    logger.info(f"Loading map from {file_path}")
    if suffix in (".las", ".laz"):
        las = laspy.read(file_path)
        points = np.column_stack([
            np.asarray(las.x, dtype=np.float64),
            np.asarray(las.y, dtype=np.float64),
            np.asarray(las.z, dtype=np.float64),
        ])
    elif suffix == ".npy":
        points = np.load(file_path)
    else:
        points = np.loadtxt(file_path, ndmin=2)

    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] < 3:
        raise ValueError(f"Expected Nx3 points in {file_path}, got shape {points.shape}")
    points = points[:, :3]

    finite = np.isfinite(points).all(axis=1)
    if not finite.all():
        logger.warning(f"Dropping {int(np.sum(~finite))} non-finite points from {file_path}")
        points = points[finite]

    logger.info(f"Loaded {len(points):,} points from {file_path.name}")
    return points


def load_maps(file_paths: Sequence[Union[str, Path]]) -> List[np.ndarray]:
    return [load_map(p) for p in file_paths]
