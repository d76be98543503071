"""
Utility Functions Module

This module provides common utility functions used across the map-merge project.
- Logging setup
- Typed configuration loading
- Rigid transform helpers
- Exception hierarchy
"""

from .logging import setup_logger, configure_logging
from .config import AppConfig, MapMergingParams, load_config
from .exceptions import (
    MapMergeError,
    InputContractError,
    RegistrationError,
    DegenerateScoreError,
)
from .transforms import (
    apply_transformation,
    estimate_rigid_transform,
    invert_transform,
    is_sentinel,
)

__all__ = [
    "setup_logger",
    "configure_logging",
    "AppConfig",
    "MapMergingParams",
    "load_config",
    "MapMergeError",
    "InputContractError",
    "RegistrationError",
    "DegenerateScoreError",
    "apply_transformation",
    "estimate_rigid_transform",
    "invert_transform",
    "is_sentinel",
]
