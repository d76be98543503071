"""
Export utilities for map merging results.

Provides functions to export:
- the merged map to LAZ/LAS (laspy) or .npy
- the global transform table and single transforms to text files
"""

import re
from pathlib import Path
from typing import List, Optional, Union

import numpy as np

from ..graph.propagation import GlobalTransformTable
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

_REFERENCE_FRAME_RE = re.compile(r"reference frame (\d+)")


def export_map(points: np.ndarray, output_path: Union[str, Path]) -> str:
    """
    Export a merged map.

    LAZ/LAS outputs use LAS 1.4 point format 6; ``.npy`` writes the raw array.

    Returns:
        Path to created file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    points = np.asarray(points, dtype=np.float64)
    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"points must be (N, 3), got {points.shape}")

    suffix = output_path.suffix.lower()
    if suffix == ".npy":
        np.save(output_path, points)
    elif suffix in (".las", ".laz"):
        import laspy

        header = laspy.LasHeader(point_format=6, version="1.4")
        if len(points):
            header.offsets = points.min(axis=0)
        header.scales = np.array([0.001, 0.001, 0.001])
        las = laspy.LasData(header)
        las.x = points[:, 0]
        las.y = points[:, 1]
        las.z = points[:, 2]
        las.write(str(output_path))
    else:
        raise ValueError(f"Unsupported output format: {output_path.suffix}")

    logger.info(f"Exported {len(points):,} points to {output_path}")
    return str(output_path)


def save_transform_matrix(transform: np.ndarray, output_file: Union[str, Path]) -> None:
    """Save a 4x4 transformation matrix to a text file."""
    np.savetxt(output_file, transform, fmt='%.18e', header='4x4 transformation matrix')
    logger.info(f"Saved transformation matrix to {output_file}")


def load_transform_matrix(input_file: Union[str, Path]) -> np.ndarray:
    """Load a 4x4 transformation matrix from a text file."""
    transform = np.loadtxt(input_file)
    if transform.shape != (4, 4):
        raise ValueError(f"Expected 4x4 matrix, got shape {transform.shape}")
    return transform


def save_transform_table(table: GlobalTransformTable, output_file: Union[str, Path]) -> None:
    """
    Save a global transform table as stacked 4x4 blocks, one per map.

    Unregistered maps are written as the all-zero matrix.
    """
    matrices: List[np.ndarray] = table.as_matrices()
    stacked = np.vstack(matrices) if matrices else np.empty((0, 4))
    header = f"{len(matrices)} global transforms (4x4 each, all-zero = unregistered)"
    if table.reference_frame is not None:
        header += f"; reference frame {table.reference_frame}"
    np.savetxt(output_file, stacked, fmt='%.18e', header=header)
    logger.info(f"Saved {len(matrices)} global transforms to {output_file}")


def _read_reference_frame(input_file: Union[str, Path]) -> Optional[int]:
    """Reference frame recorded in the header written by save_transform_table."""
    with open(input_file, "r", encoding="utf-8") as f:
        for line in f:
            if not line.startswith("#"):
                break
            match = _REFERENCE_FRAME_RE.search(line)
            if match:
                return int(match.group(1))
    return None


def load_transform_table(input_file: Union[str, Path]) -> GlobalTransformTable:
    """
    Load a table written by save_transform_table.

    The reference frame is read from the header; files without one fall back
    to the first identity entry.
    """
    stacked = np.loadtxt(input_file, ndmin=2)
    if stacked.size == 0:
        return GlobalTransformTable(0)
    if stacked.shape[1] != 4 or stacked.shape[0] % 4 != 0:
        raise ValueError(f"Expected stacked 4x4 matrices, got shape {stacked.shape}")
    return GlobalTransformTable.from_matrices(
        list(stacked.reshape(-1, 4, 4)), reference_frame=_read_reference_frame(input_file)
    )
