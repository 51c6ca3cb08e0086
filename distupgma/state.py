"""
Replicated clustering state for distUPGMA.

Every rank holds its own ClusterState. The state is a pure function of the
initial matrix and the ordered sequence of merges applied to it, so ranks that
apply the same merges stay identical without exchanging matrix contents.

Nodes live in an append-only arena: leaves take ids 0..N-1 and each merge
appends one internal node, so ids only grow and children always have smaller
ids than their parent.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterNode:
    """A leaf taxon or an internal merge in the dendrogram."""
    name: str = ""
    left: Optional[int] = None
    right: Optional[int] = None
    height: float = 0.0
    branch_length_left: float = 0.0
    branch_length_right: float = 0.0
    size: int = 1

    @property
    def is_leaf(self) -> bool:
        return self.left is None and self.right is None


@dataclass(frozen=True)
class MergeRecord:
    """One round of the merge loop."""
    round: int
    left: int
    right: int
    new_id: int
    distance: float
    height: float
    size: int

    def to_dict(self) -> dict:
        return {
            'round': self.round,
            'left': self.left,
            'right': self.right,
            'new_id': self.new_id,
            'distance': float(self.distance),
            'height': float(self.height),
            'size': self.size,
        }


class ClusterState:
    """
    Active clusters, the growing distance matrix and the partial dendrogram.

    The matrix is allocated for all 2N-1 nodes up front. Row k is written when
    node k is created; rows of merged clusters stay in place but are never
    read again.
    """

    def __init__(self, names: List[str], matrix: np.ndarray):
        """
        Initialize state with one leaf cluster per taxon.

        Args:
            names: Taxon names, one per matrix row
            matrix: Symmetric N x N matrix of finite distances

        Raises:
            ValueError: If the matrix is not square, is empty, does not match
                the names or contains non-finite values
        """
        matrix = np.asarray(matrix, dtype=float)
        n = len(names)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise ValueError(f"Distance matrix must be square, got shape {matrix.shape}")
        if n == 0:
            raise ValueError("At least one taxon is required")
        if matrix.shape[0] != n:
            raise ValueError(f"Distance matrix has {matrix.shape[0]} rows for {n} names")
        if not np.isfinite(matrix).all():
            raise ValueError("Distance matrix contains undefined or infinite values; map them before clustering")

        self.n_leaves = n
        capacity = 2 * n - 1
        self.distances = np.full((capacity, capacity), np.nan)
        self.distances[:n, :n] = matrix
        self.nodes: List[ClusterNode] = [ClusterNode(name=name) for name in names]
        self.active: List[int] = list(range(n))

    @property
    def n_active(self) -> int:
        return len(self.active)

    @property
    def is_complete(self) -> bool:
        return len(self.active) == 1

    @property
    def root(self) -> int:
        """Id of the sole remaining cluster."""
        if not self.is_complete:
            raise ValueError(f"Clustering is not complete: {len(self.active)} clusters remain")
        return self.active[0]

    def distance(self, i: int, j: int) -> float:
        return float(self.distances[i, j])

    def merge(self, distance: float, i: int, j: int) -> ClusterNode:
        """
        Merge active clusters i and j into a new node with the next id.

        Applies the UPGMA rule: the new node sits at half the merge distance,
        and its distance to every other active cluster is the size-weighted
        mean of the distances from i and j.

        Args:
            distance: Distance between clusters i and j
            i: Id of the cluster that becomes the left child
            j: Id of the cluster that becomes the right child

        Returns:
            The newly created node

        Raises:
            ValueError: If i or j is not active or i == j
        """
        if i == j:
            raise ValueError(f"Cannot merge cluster {i} with itself")
        active = set(self.active)
        if i not in active or j not in active:
            raise ValueError(f"Both clusters must be active to merge ({i}, {j})")

        node_i = self.nodes[i]
        node_j = self.nodes[j]
        height = distance / 2.0
        node = ClusterNode(
            left=i,
            right=j,
            height=height,
            branch_length_left=height - node_i.height,
            branch_length_right=height - node_j.height,
            size=node_i.size + node_j.size,
        )
        k = len(self.nodes)
        self.nodes.append(node)

        others = np.array([m for m in self.active if m != i and m != j], dtype=int)
        if others.size:
            row = (self.distances[i, others] * node_i.size +
                   self.distances[j, others] * node_j.size) / (node_i.size + node_j.size)
            self.distances[k, others] = row
            self.distances[others, k] = row
        self.distances[k, k] = 0.0

        # Retired rows are poisoned so any later read surfaces as NaN
        self.distances[[i, j], :] = np.nan
        self.distances[:, [i, j]] = np.nan

        # k is the largest id so far, keeping the active list in ascending order
        self.active = [m for m in self.active if m != i and m != j]
        self.active.append(k)

        logger.debug(f"Merged {i} and {j} into {k} at height {height:.6f}")
        return node

    def active_submatrix(self) -> np.ndarray:
        """Distances among active clusters, in active-list order."""
        idx = np.array(self.active, dtype=int)
        return self.distances[np.ix_(idx, idx)]

    def is_symmetric(self) -> bool:
        sub = self.active_submatrix()
        return bool(np.array_equal(sub, sub.T))
