"""
Pairwise Alignment Module

This module provides the registration strategies used between two maps:
reciprocal descriptor matching with RANSAC, sample consensus initial
alignment, ICP refinement, and the orchestrator that scores their result.
"""

from .matching import Correspondence, find_feature_correspondences
from .correspondence_registration import estimate_transform_from_correspondences
from .coarse_registration import SampleConsensusInitialAlignment, estimate_transform_from_descriptors
from .fine_registration import ICPRegistration, estimate_transform_icp
from .pairwise import PairwiseRegistration, transform_score, confidence_from_score

__all__ = [
    "Correspondence",
    "find_feature_correspondences",
    "estimate_transform_from_correspondences",
    "SampleConsensusInitialAlignment",
    "estimate_transform_from_descriptors",
    "ICPRegistration",
    "estimate_transform_icp",
    "PairwiseRegistration",
    "transform_score",
    "confidence_from_score",
]
