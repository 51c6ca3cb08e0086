"""
Core clustering algorithm for distUPGMA.

This module implements distributed UPGMA (average-linkage hierarchical
clustering). Every rank keeps a full replica of the clustering state. Each
round, ranks scan their share of the active pairs for a local best candidate,
an all-reduce agrees on the global best, and every rank then applies the same
merge on its own replica. After the initial matrix broadcast the only traffic
is one small (distance, i, j) record per rank per round.
"""

import logging
import sys
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional

import numpy as np
from tqdm import tqdm

from .comm import Communicator, SerialCommunicator
from .newick import to_newick
from .partition import WorkerPartition
from .state import ClusterNode, ClusterState, MergeRecord


class MergeCandidate(NamedTuple):
    """
    A candidate merge, ordered as a single record.

    Tuple ordering compares distance first, then the smaller id, then the
    larger id. Reducing whole candidates with min therefore applies the
    tie-break atomically; the fields must never be reduced separately.
    """
    distance: float
    i: int
    j: int


# Loses against every real candidate; contributed by ranks with no pairs to scan
NO_CANDIDATE = MergeCandidate(float('inf'), sys.maxsize, sys.maxsize)


def best_candidate(a: MergeCandidate, b: MergeCandidate) -> MergeCandidate:
    """Reduction operator selecting the smaller of two candidates."""
    return b if b < a else a


def find_local_best(state: ClusterState, partition: WorkerPartition) -> MergeCandidate:
    """
    Scan the upper-triangular pairs of the owned rows for the best candidate.

    Args:
        state: Clustering state replica
        partition: Active-list positions owned by this rank

    Returns:
        Smallest (distance, i, j) among pairs (active[p], active[q]) with p
        owned and q > p, or NO_CANDIDATE if the rank owns no pairs
    """
    active = np.array(state.active, dtype=int)
    best = NO_CANDIDATE

    for p in partition.positions():
        if p + 1 >= len(active):
            continue
        i = active[p]
        columns = active[p + 1:]
        row = state.distances[i, columns]
        # argmin returns the first minimum, i.e. the smallest j for this row
        q = int(np.argmin(row))
        candidate = MergeCandidate(float(row[q]), int(i), int(columns[q]))
        if candidate < best:
            best = candidate

    return best


class PartitionedMinReducer:
    """Finds the globally agreed merge for a round."""

    def __init__(self, comm: Communicator, policy: str = "block"):
        self.comm = comm
        self.policy = policy

    def partition(self, state: ClusterState) -> WorkerPartition:
        return WorkerPartition(self.comm.rank, self.comm.size, state.n_active, self.policy)

    def local_best(self, state: ClusterState) -> MergeCandidate:
        return find_local_best(state, self.partition(state))

    def reduce(self, state: ClusterState) -> MergeCandidate:
        """
        Compute the global best candidate; the result is identical on every rank.

        Args:
            state: This rank's replica

        Returns:
            The winning candidate

        Raises:
            RuntimeError: If no rank found a valid, finite candidate
        """
        candidate = self.comm.allreduce(self.local_best(state), best_candidate)
        if candidate == NO_CANDIDATE or not np.isfinite(candidate.distance):
            raise RuntimeError(
                f"No valid merge candidate among {state.n_active} active clusters: {candidate}"
            )
        return candidate


class MergeCoordinator:
    """Applies agreed merges to a replica and records them."""

    def __init__(self, state: ClusterState):
        self.state = state
        self.history: List[MergeRecord] = []

    def apply(self, candidate: MergeCandidate) -> MergeRecord:
        node = self.state.merge(candidate.distance, candidate.i, candidate.j)
        record = MergeRecord(
            round=len(self.history) + 1,
            left=candidate.i,
            right=candidate.j,
            new_id=len(self.state.nodes) - 1,
            distance=candidate.distance,
            height=node.height,
            size=node.size,
        )
        self.history.append(record)
        return record


@dataclass
class ClusteringResult:
    """Final dendrogram and merge history."""
    nodes: List[ClusterNode]
    root: int
    merges: List[MergeRecord] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [node.name for node in self.nodes if node.is_leaf]

    def newick(self, precision: int = 6) -> str:
        return to_newick(self.nodes, self.root, precision=precision)


class DistributedUPGMA:
    """
    Distributed UPGMA clustering engine.

    Every rank of a worker group calls run() with the same names and the same
    matrix; all ranks return the same result.
    """

    def __init__(self, partition: str = "block",
                 show_progress: bool = True,
                 validate: bool = False,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the clustering engine.

        Args:
            partition: Row partition policy for the local scan ("block" or "cyclic")
            show_progress: If True, show a progress bar on the root rank
            validate: If True, check matrix symmetry after every merge
            logger: Optional logger instance for output; uses default logging if None
        """
        self.partition = partition
        self.show_progress = show_progress
        self.validate = validate
        self.logger = logger or logging.getLogger(__name__)

    def run(self, comm: Communicator, names: List[str], matrix: np.ndarray) -> ClusteringResult:
        """
        Cluster the taxa down to a single root.

        Args:
            comm: Communicator of this rank
            names: Taxon names, identical on every rank
            matrix: Symmetric finite distance matrix, identical on every rank

        Returns:
            ClusteringResult with the node arena, root id and N-1 merge records
        """
        state = ClusterState(names, matrix)
        reducer = PartitionedMinReducer(comm, self.partition)
        coordinator = MergeCoordinator(state)
        n = state.n_leaves

        if comm.is_root:
            self.logger.info(f"Clustering {n} taxa on {comm.size} worker(s) with {self.partition} partitioning")

        pbar = None
        if self.show_progress and comm.is_root and n > 1:
            pbar = tqdm(total=n - 1, desc="Clustering", unit=" merges")

        while not state.is_complete:
            candidate = reducer.reduce(state)
            record = coordinator.apply(candidate)

            if self.validate and not state.is_symmetric():
                raise RuntimeError(f"Distance matrix lost symmetry after merge round {record.round}")

            if pbar:
                pbar.update(1)
                pbar.set_postfix({"clusters": state.n_active, "height": f"{record.height:.4f}"})

        if pbar:
            pbar.close()

        if comm.is_root:
            root_height = state.nodes[state.root].height
            self.logger.info(f"Clustering complete: {len(coordinator.history)} merges, root height {root_height:.6f}")

        return ClusteringResult(nodes=list(state.nodes), root=state.root, merges=coordinator.history)


def cluster(names: List[str], matrix: np.ndarray, **kwargs) -> ClusteringResult:
    """Run the engine in-process on a single rank."""
    kwargs.setdefault('show_progress', False)
    with SerialCommunicator() as comm:
        return DistributedUPGMA(**kwargs).run(comm, names, matrix)


def sequential_upgma(names: List[str], matrix) -> ClusteringResult:
    """
    Plain single-process UPGMA, kept as the reference the engine must match.

    Pairs are scanned in ascending (i, j) order and only a strictly smaller
    distance replaces the current best, which yields the same lexicographic
    tie-break as the distributed reduction.

    Args:
        names: Taxon names
        matrix: Symmetric matrix of finite distances (nested lists or array)

    Returns:
        ClusteringResult equivalent to DistributedUPGMA.run
    """
    n = len(names)
    if n == 0:
        raise ValueError("At least one taxon is required")

    D = [[float(value) for value in row] for row in matrix]
    nodes = [ClusterNode(name=name) for name in names]
    active = list(range(n))
    merges = []

    while len(active) > 1:
        min_dist = float('inf')
        min_i, min_j = -1, -1
        for a in range(len(active) - 1):
            for b in range(a + 1, len(active)):
                i, j = active[a], active[b]
                if D[i][j] < min_dist:
                    min_dist = D[i][j]
                    min_i, min_j = i, j

        node_i, node_j = nodes[min_i], nodes[min_j]
        height = min_dist / 2.0
        new_node = ClusterNode(
            left=min_i,
            right=min_j,
            height=height,
            branch_length_left=height - node_i.height,
            branch_length_right=height - node_j.height,
            size=node_i.size + node_j.size,
        )
        k = len(nodes)
        nodes.append(new_node)

        new_row = [0.0] * (k + 1)
        for m in active:
            if m != min_i and m != min_j:
                new_row[m] = (D[min_i][m] * node_i.size + D[min_j][m] * node_j.size) / (node_i.size + node_j.size)
        for m, row in enumerate(D):
            row.append(new_row[m])
        D.append(new_row)

        active = [m for m in active if m != min_i and m != min_j] + [k]
        merges.append(MergeRecord(
            round=len(merges) + 1, left=min_i, right=min_j, new_id=k,
            distance=min_dist, height=height, size=new_node.size,
        ))

    return ClusteringResult(nodes=nodes, root=active[0], merges=merges)
