"""
Map I/O Module

Loading partial maps and exporting the merged map and transform tables.
"""

from .loader import load_map, load_maps
from .export import (
    export_map,
    save_transform_matrix,
    load_transform_matrix,
    save_transform_table,
    load_transform_table,
)

__all__ = [
    "load_map",
    "load_maps",
    "export_map",
    "save_transform_matrix",
    "load_transform_matrix",
    "save_transform_table",
    "load_transform_table",
]
