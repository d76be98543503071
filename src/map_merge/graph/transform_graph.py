"""
Transform Graph

Maps are nodes, pairwise transform estimates are confidence-weighted edges.
Provides confidence filtering, largest connected component extraction,
maximum spanning tree construction (Kruskal on descending confidence) and
tree centre selection by eccentricity.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ..utils.exceptions import InputContractError
from ..utils.logging import setup_logger

logger = setup_logger(__name__)


@dataclass(frozen=True)
class TransformEstimate:
    """
    Rigid transform mapping points of map ``source_idx`` into the frame of map
    ``target_idx``, with a confidence (higher is better).
    """

    source_idx: int
    target_idx: int
    transform: np.ndarray = field(repr=False, compare=False)
    confidence: float

    def __post_init__(self):
        if self.source_idx >= self.target_idx:
            raise InputContractError(
                f"estimate must be canonical (source < target), got ({self.source_idx}, {self.target_idx})"
            )
        if self.confidence < 0:
            raise InputContractError(f"confidence must be >= 0, got {self.confidence}")
        transform = np.asarray(self.transform, dtype=np.float64)
        if transform.shape != (4, 4):
            raise InputContractError(f"transform must be 4x4, got shape {transform.shape}")
        object.__setattr__(self, "transform", transform)

    @property
    def pair(self) -> Tuple[int, int]:
        return self.source_idx, self.target_idx


@dataclass(frozen=True)
class Component:
    nodes: Tuple[int, ...]
    edges: Tuple[TransformEstimate, ...]


@dataclass(frozen=True)
class SpanningTree:
    nodes: Tuple[int, ...]
    edges: Tuple[TransformEstimate, ...]

    def adjacency(self) -> Dict[int, List[int]]:
        """Neighbour lists in ascending node order."""
        adj: Dict[int, List[int]] = {n: [] for n in self.nodes}
        for e in self.edges:
            adj[e.source_idx].append(e.target_idx)
            adj[e.target_idx].append(e.source_idx)
        for nbrs in adj.values():
            nbrs.sort()
        return adj

    @property
    def total_weight(self) -> float:
        return float(sum(e.confidence for e in self.edges))


class _DisjointSet:
    def __init__(self, nodes: Iterable[int]):
        self.parent = {n: n for n in nodes}

    def find(self, n: int) -> int:
        root = n
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[n] != root:
            self.parent[n], n = root, self.parent[n]
        return root

    def union(self, a: int, b: int) -> bool:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return False
        # Smaller index becomes the representative
        if rb < ra:
            ra, rb = rb, ra
        self.parent[rb] = ra
        return True


def number_of_nodes(estimates: Sequence[TransformEstimate]) -> int:
    """Number of nodes implied by the highest map index in the estimates."""
    if not estimates:
        return 0
    return max(e.target_idx for e in estimates) + 1


def filter_estimates(
    estimates: Sequence[TransformEstimate],
    confidence_threshold: float,
) -> Tuple[List[TransformEstimate], List[TransformEstimate]]:
    """
    Split estimates into (accepted, rejected).

    Accepted edges have confidence >= threshold; zero-confidence estimates are
    failed registrations and are always rejected.
    """
    accepted, rejected = [], []
    for e in estimates:
        if e.confidence >= confidence_threshold and e.confidence > 0:
            accepted.append(e)
        else:
            rejected.append(e)
    return accepted, rejected


def connected_components(
    estimates: Sequence[TransformEstimate],
    n_nodes: int,
) -> List[Component]:
    """All connected components over nodes 0..n_nodes-1, isolated nodes included."""
    dsu = _DisjointSet(range(n_nodes))
    for e in estimates:
        if e.target_idx >= n_nodes:
            raise InputContractError(f"estimate {e.pair} references a node outside 0..{n_nodes - 1}")
        dsu.union(e.source_idx, e.target_idx)

    members: Dict[int, List[int]] = {}
    for n in range(n_nodes):
        members.setdefault(dsu.find(n), []).append(n)
    edges: Dict[int, List[TransformEstimate]] = {root: [] for root in members}
    for e in estimates:
        edges[dsu.find(e.source_idx)].append(e)

    components = [Component(tuple(nodes), tuple(edges[root])) for root, nodes in members.items()]
    components.sort(key=lambda c: c.nodes[0])
    return components


def largest_connected_component(
    estimates: Sequence[TransformEstimate],
    confidence_threshold: float,
    n_nodes: Optional[int] = None,
) -> Component:
    """
    Largest connected component (by node count) of the graph of accepted edges.

    Ties go to the component holding the smallest node index. With no accepted
    edges the result is the singleton of node 0.
    """
    if n_nodes is None:
        n_nodes = number_of_nodes(estimates)
    if n_nodes <= 0:
        raise InputContractError("transform graph needs at least one node")

    accepted, rejected = filter_estimates(estimates, confidence_threshold)
    components = connected_components(accepted, n_nodes)
    largest = max(components, key=lambda c: len(c.nodes))

    logger.info(
        "Transform graph: %d nodes, %d accepted / %d rejected edges, %d components, largest has %d nodes.",
        n_nodes,
        len(accepted),
        len(rejected),
        len(components),
        len(largest.nodes),
    )
    return largest


def max_spanning_tree(component: Component) -> SpanningTree:
    """
    Maximum total confidence spanning tree of a connected component.

    Kruskal over edges sorted by descending confidence; the sort is stable so
    equal weights keep their discovery order.
    """
    ordered = sorted(component.edges, key=lambda e: -e.confidence)
    dsu = _DisjointSet(component.nodes)
    tree_edges = [e for e in ordered if dsu.union(e.source_idx, e.target_idx)]

    if len(tree_edges) != len(component.nodes) - 1:
        raise InputContractError(
            f"component is not connected: {len(tree_edges)} tree edges for {len(component.nodes)} nodes"
        )
    return SpanningTree(component.nodes, tuple(tree_edges))


def _bfs_distances(adjacency: Dict[int, List[int]], start: int) -> Tuple[Dict[int, int], Dict[int, Optional[int]]]:
    dist = {start: 0}
    parent: Dict[int, Optional[int]] = {start: None}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        for nbr in adjacency[node]:
            if nbr not in dist:
                dist[nbr] = dist[node] + 1
                parent[nbr] = node
                queue.append(nbr)
    return dist, parent


def _farthest(dist: Dict[int, int]) -> int:
    # First node at maximum distance in ascending index order
    return min(dist, key=lambda n: (-dist[n], n))


def tree_centers(tree: SpanningTree) -> List[int]:
    """
    Centre node(s) of a tree: nodes of minimal eccentricity.

    Two BFS passes find a longest path; its middle one or two nodes are the
    centres. Returned in ascending order.
    """
    if not tree.nodes:
        return []
    if len(tree.nodes) == 1:
        return [tree.nodes[0]]

    adjacency = tree.adjacency()
    dist, _ = _bfs_distances(adjacency, tree.nodes[0])
    u = _farthest(dist)
    dist, parent = _bfs_distances(adjacency, u)
    v = _farthest(dist)

    path = [v]
    while parent[path[-1]] is not None:
        path.append(parent[path[-1]])

    length = len(path) - 1
    if length % 2 == 0:
        centers = [path[length // 2]]
    else:
        centers = [path[length // 2], path[length // 2 + 1]]
    return sorted(centers)


class TransformGraph:
    """
    Confidence-weighted graph over maps with the consensus structures derived
    from it.

    Example:
        graph = TransformGraph(estimates, confidence_threshold=5.0, n_nodes=4)
        root = graph.centers[0]
        tree = graph.spanning_tree
    """

    def __init__(
        self,
        estimates: Sequence[TransformEstimate],
        confidence_threshold: float,
        n_nodes: Optional[int] = None,
    ):
        self.estimates = list(estimates)
        self.confidence_threshold = confidence_threshold
        self.n_nodes = number_of_nodes(self.estimates) if n_nodes is None else n_nodes
        self.accepted, self.rejected = filter_estimates(self.estimates, confidence_threshold)
        self.component = largest_connected_component(self.estimates, confidence_threshold, self.n_nodes)
        self.spanning_tree = max_spanning_tree(self.component)
        self.centers = tree_centers(self.spanning_tree)

    @property
    def reference_frame(self) -> int:
        return self.centers[0]
