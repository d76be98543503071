"""
Map Merging Pipeline

Per-map features -> all-pairs transform estimates -> confidence-filtered
transform graph -> maximum spanning tree rooted at a tree centre -> global
transforms -> merged map.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from ..acceleration.parallel_executor import PairParallelExecutor
from ..alignment.pairwise import generate_pairs, register_pair_task
from ..features.map_features import MapFeatures, compute_map_features
from ..features.preprocessing import down_sample
from ..graph.propagation import GlobalTransformTable, propagate_global_transforms
from ..graph.transform_graph import SpanningTree, TransformEstimate, TransformGraph
from ..utils.config import MapMergingParams
from ..utils.exceptions import InputContractError
from ..utils.logging import setup_logger
from ..utils.transforms import apply_transformation, is_sentinel

logger = setup_logger(__name__)

TransformsLike = Union[GlobalTransformTable, Sequence[Optional[np.ndarray]]]


@dataclass
class MapMergeResult:
    global_transforms: GlobalTransformTable
    estimates: List[TransformEstimate] = field(default_factory=list)
    accepted: List[TransformEstimate] = field(default_factory=list)
    rejected: List[TransformEstimate] = field(default_factory=list)
    spanning_tree: Optional[SpanningTree] = None
    reference_frame: Optional[int] = None


def compute_global_transforms(
    estimates: Sequence[TransformEstimate],
    confidence_threshold: float,
    n_nodes: int,
) -> MapMergeResult:
    """
    Consensus over pairwise estimates: the largest connected component of the
    accepted edges, its maximum spanning tree, and poses propagated from the
    first tree centre.
    """
    graph = TransformGraph(estimates, confidence_threshold, n_nodes)
    reference = graph.reference_frame
    table = propagate_global_transforms(graph.spanning_tree, reference, graph.component.edges, n_nodes)

    dropped = [i for i in range(n_nodes) if not table.is_present(i)]
    if dropped:
        logger.info("Maps outside the largest connected component are dropped: %s", dropped)

    return MapMergeResult(
        global_transforms=table,
        estimates=list(estimates),
        accepted=graph.accepted,
        rejected=graph.rejected,
        spanning_tree=graph.spanning_tree,
        reference_frame=reference,
    )


def compose_maps(
    clouds: Sequence[np.ndarray],
    transforms: TransformsLike,
    resolution: float,
) -> np.ndarray:
    """
    Transform every registered map into the reference frame, concatenate and
    voxel down-sample the result.

    Args:
        clouds: Original maps (Nx3 each)
        transforms: GlobalTransformTable, or one 4x4 matrix / None per map;
            None and all-zero entries are skipped
        resolution: Voxel size of the merged map

    Returns:
        Merged Mx3 cloud (empty when no map is registered)

    Raises:
        InputContractError: if the number of clouds and transforms differ
    """
    if len(clouds) != len(transforms):
        raise InputContractError(
            f"compose_maps: clouds and transforms size must be the same ({len(clouds)} != {len(transforms)})"
        )

    aligned = []
    for cloud, transform in zip(clouds, transforms):
        if is_sentinel(transform):
            continue
        points = np.asarray(cloud, dtype=np.float64).reshape(-1, 3)
        aligned.append(apply_transformation(points, np.asarray(transform, dtype=np.float64)))

    if not aligned:
        return np.empty((0, 3), dtype=np.float64)

    merged = down_sample(np.vstack(aligned), resolution)
    logger.info("Composed %d of %d maps into %d points.", len(aligned), len(clouds), len(merged))
    return merged


class MapMerger:
    """
    End-to-end merging of partial maps with unknown relative poses.

    Example:
        merger = MapMerger(params, n_workers=4)
        merged, result = merger.merge(clouds)
    """

    def __init__(
        self,
        params: Optional[MapMergingParams] = None,
        *,
        parallel: bool = True,
        n_workers: Optional[int] = None,
    ):
        self.params = params if params is not None else MapMergingParams()
        self.parallel = parallel
        self.n_workers = n_workers

    def compute_features(self, clouds: Sequence[np.ndarray]) -> List[MapFeatures]:
        return [compute_map_features(np.asarray(c, dtype=np.float64).reshape(-1, 3), self.params) for c in clouds]

    def estimate_pairwise(self, features: List[MapFeatures]) -> List[TransformEstimate]:
        """One scored estimate per pair of maps that both have keypoints."""
        pairs = generate_pairs(features)
        skipped = [i for i, f in enumerate(features) if not f.has_keypoints]
        if skipped:
            logger.warning("Maps without keypoints take part in no pair: %s", skipped)

        executor = PairParallelExecutor(n_workers=self.n_workers if self.parallel else 1)
        return executor.map_pairs(
            pairs=pairs,
            worker_fn=register_pair_task,
            worker_kwargs={"features": features, "params": self.params},
        )

    def estimate_maps_transforms(self, clouds: Sequence[np.ndarray]) -> MapMergeResult:
        if len(clouds) == 0:
            raise InputContractError("at least one map is required")
        features = self.compute_features(clouds)
        estimates = self.estimate_pairwise(features)
        return compute_global_transforms(estimates, self.params.confidence_threshold, len(clouds))

    def merge(self, clouds: Sequence[np.ndarray]) -> Tuple[np.ndarray, MapMergeResult]:
        result = self.estimate_maps_transforms(clouds)
        merged = compose_maps(clouds, result.global_transforms, self.params.output_resolution)
        return merged, result


def estimate_maps_transforms(
    clouds: Sequence[np.ndarray],
    params: Optional[MapMergingParams] = None,
    *,
    n_workers: Optional[int] = None,
) -> MapMergeResult:
    """Functional wrapper around MapMerger.estimate_maps_transforms."""
    return MapMerger(params, n_workers=n_workers).estimate_maps_transforms(clouds)
