"""
Transform Graph Module

Consensus over pairwise transform estimates: connected components, maximum
spanning tree, tree centres and breadth-first global pose propagation.
"""

from .transform_graph import (
    TransformEstimate,
    SpanningTree,
    TransformGraph,
    largest_connected_component,
    max_spanning_tree,
    tree_centers,
)
from .propagation import GlobalTransformTable, propagate_global_transforms

__all__ = [
    "TransformEstimate",
    "SpanningTree",
    "TransformGraph",
    "largest_connected_component",
    "max_spanning_tree",
    "tree_centers",
    "GlobalTransformTable",
    "propagate_global_transforms",
]
