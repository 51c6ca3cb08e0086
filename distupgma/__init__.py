"""
distUPGMA: Distributed UPGMA phylogenetic tree construction

A Python package that builds average-linkage (UPGMA) trees from pairwise
genetic distances across a group of cooperating worker processes, producing
exactly the tree of a single-process run for any number of workers.
"""

__version__ = "0.1.0"

from .core import (
    DistributedUPGMA,
    ClusteringResult,
    MergeCandidate,
    cluster,
    sequential_upgma
)
from .comm import (
    Communicator,
    SerialCommunicator,
    PipeCommunicator,
    MPICommunicator,
    WorkerGroup,
    CommunicationError,
    CollectiveMismatchError,
    WorkerAbortedError,
    WorkerGroupError
)
from .distance import LARGE_DISTANCE, jukes_cantor_distance
from .matrix_builder import DistanceMatrixBuilder, calculate_distance_matrix
from .newick import to_newick, leaf_names
from .pipeline import RunConfig, build_tree, run_rank
from .state import ClusterNode, ClusterState, MergeRecord
from .utils import (
    InputFormatError,
    load_distance_matrix,
    load_sequences,
    load_sequences_from_fasta,
    format_distance_matrix
)

__all__ = [
    "DistributedUPGMA",
    "ClusteringResult",
    "MergeCandidate",
    "cluster",
    "sequential_upgma",
    "Communicator",
    "SerialCommunicator",
    "PipeCommunicator",
    "MPICommunicator",
    "WorkerGroup",
    "CommunicationError",
    "CollectiveMismatchError",
    "WorkerAbortedError",
    "WorkerGroupError",
    "LARGE_DISTANCE",
    "jukes_cantor_distance",
    "DistanceMatrixBuilder",
    "calculate_distance_matrix",
    "to_newick",
    "leaf_names",
    "RunConfig",
    "build_tree",
    "run_rank",
    "ClusterNode",
    "ClusterState",
    "MergeRecord",
    "InputFormatError",
    "load_distance_matrix",
    "load_sequences",
    "load_sequences_from_fasta",
    "format_distance_matrix"
]
