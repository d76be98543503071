"""
Global Pose Propagation

Chains pairwise transforms along the spanning tree, breadth-first from the
reference node, into one pose per map expressed in the reference frame.
"""

from __future__ import annotations

from collections import deque
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .transform_graph import SpanningTree, TransformEstimate
from ..utils.exceptions import InputContractError
from ..utils.logging import setup_logger
from ..utils.transforms import invert_transform, zero_transform

logger = setup_logger(__name__)


class GlobalTransformTable:
    """
    One entry per map: the pose mapping that map's points into the reference
    frame, or None when the map was not registered.
    """

    def __init__(self, n_nodes: int, reference_frame: Optional[int] = None):
        self._entries: List[Optional[np.ndarray]] = [None] * n_nodes
        self.reference_frame = reference_frame

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, idx: int) -> Optional[np.ndarray]:
        return self._entries[idx]

    def __iter__(self) -> Iterator[Optional[np.ndarray]]:
        return iter(self._entries)

    def set(self, idx: int, transform: np.ndarray) -> None:
        if self._entries[idx] is not None:
            raise InputContractError(f"global transform of node {idx} is already set")
        self._entries[idx] = np.asarray(transform, dtype=np.float64)

    def is_present(self, idx: int) -> bool:
        return self._entries[idx] is not None

    @property
    def present_indices(self) -> List[int]:
        return [i for i, t in enumerate(self._entries) if t is not None]

    def as_matrices(self) -> List[np.ndarray]:
        """Entries as 4x4 matrices; absent entries become the all-zero sentinel."""
        return [zero_transform() if t is None else t.copy() for t in self._entries]

    @classmethod
    def from_matrices(
        cls,
        matrices: Sequence[Optional[np.ndarray]],
        reference_frame: Optional[int] = None,
    ) -> "GlobalTransformTable":
        """
        Inverse of as_matrices: None or all-zero matrices become absent.

        Without an explicit ``reference_frame`` the first identity entry is
        taken as the reference.
        """
        table = cls(len(matrices))
        for i, m in enumerate(matrices):
            if m is not None and np.any(m):
                table.set(i, m)

        if reference_frame is None:
            reference_frame = next(
                (i for i, m in enumerate(table) if m is not None and np.allclose(m, np.eye(4))),
                None,
            )
        elif not 0 <= reference_frame < len(table) or not table.is_present(reference_frame):
            raise InputContractError(f"reference frame {reference_frame} has no global transform")
        table.reference_frame = reference_frame
        return table


def _estimate_lookup(estimates: Sequence[TransformEstimate]) -> Dict[Tuple[int, int], TransformEstimate]:
    return {e.pair: e for e in estimates}


def oriented_transform(
    lookup: Dict[Tuple[int, int], TransformEstimate],
    from_idx: int,
    to_idx: int,
) -> np.ndarray:
    """
    Pose of ``to_idx`` expressed in the frame of ``from_idx``.

    Stored estimates map source points into the target frame, so the estimate
    stored as (to, from) is used as is and the one stored as (from, to) is
    inverted.
    """
    if (to_idx, from_idx) in lookup:
        return lookup[(to_idx, from_idx)].transform
    if (from_idx, to_idx) in lookup:
        return invert_transform(lookup[(from_idx, to_idx)].transform)
    raise InputContractError(f"no transform estimate for tree edge ({from_idx}, {to_idx})")


def walk_breadth_first(tree: SpanningTree, root: int) -> Iterator[Tuple[int, int]]:
    """Yield tree edges as (from, to) in FIFO discovery order from ``root``."""
    adjacency = tree.adjacency()
    if root not in adjacency:
        raise InputContractError(f"root {root} is not a node of the spanning tree")
    visited = {root}
    queue = deque([root])
    while queue:
        node = queue.popleft()
        for nbr in adjacency[node]:
            if nbr not in visited:
                visited.add(nbr)
                queue.append(nbr)
                yield node, nbr


def propagate_global_transforms(
    tree: SpanningTree,
    root: int,
    estimates: Sequence[TransformEstimate],
    n_nodes: int,
) -> GlobalTransformTable:
    """
    Compose tree edge transforms into global poses.

    Args:
        tree: Spanning tree of the processed component
        root: Reference node (receives identity)
        estimates: Transform estimates to look edge transforms up in
        n_nodes: Total number of maps

    Returns:
        GlobalTransformTable; nodes not reached from ``root`` stay absent
    """
    if not 0 <= root < n_nodes:
        raise InputContractError(f"root {root} outside 0..{n_nodes - 1}")

    table = GlobalTransformTable(n_nodes, reference_frame=root)
    table.set(root, np.eye(4))
    lookup = _estimate_lookup(estimates)

    for from_idx, to_idx in walk_breadth_first(tree, root):
        table.set(to_idx, table[from_idx] @ oriented_transform(lookup, from_idx, to_idx))

    logger.info(
        "Propagated global transforms from reference map %d: %d of %d maps registered.",
        root,
        len(table.present_indices),
        n_nodes,
    )
    return table
