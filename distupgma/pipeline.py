"""
Per-rank program and drivers for distUPGMA runs.

run_rank() is the program every rank executes: the root loads the input, the
matrix is built or distributed, and all ranks run the merge loop in lock step.
build_tree() launches it on the requested backend and returns the root's result.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .comm import Communicator, MPICommunicator, WorkerGroup, run_serial
from .core import ClusteringResult, DistributedUPGMA
from .matrix_builder import DistanceMatrixBuilder
from .partition import PARTITION_POLICIES
from .utils import load_distance_matrix, load_sequences, load_sequences_from_fasta

logger = logging.getLogger(__name__)

INPUT_FORMATS = ("matrix", "sequences", "fasta")
BACKENDS = ("serial", "processes", "mpi")


@dataclass
class RunConfig:
    """Options shared by every rank of a run."""
    input_path: Optional[str] = None
    input_format: str = "matrix"
    names: Optional[List[str]] = None
    matrix: Optional[np.ndarray] = None
    sequences: Optional[List[str]] = None
    partition: str = "block"
    show_progress: bool = True
    validate: bool = False

    def __post_init__(self):
        if self.input_format not in INPUT_FORMATS:
            raise ValueError(f"Unknown input format: {self.input_format}")
        if self.partition not in PARTITION_POLICIES:
            raise ValueError(f"Unknown partition policy: {self.partition}")
        in_memory = self.matrix is not None or self.sequences is not None
        if in_memory == (self.input_path is not None):
            raise ValueError("Provide exactly one of input_path or in-memory matrix/sequences")
        if in_memory and self.names is None:
            raise ValueError("Names are required with an in-memory matrix or sequences")

    @property
    def uses_sequences(self) -> bool:
        if self.input_path is None:
            return self.sequences is not None
        return self.input_format in ("sequences", "fasta")


def load_input(config: RunConfig):
    """
    Load the run's input on the root rank.

    Returns:
        Tuple of (names, matrix_or_sequences)
    """
    if config.input_path is None:
        data = config.sequences if config.uses_sequences else config.matrix
        return list(config.names), data

    logger.info(f"Loading {config.input_format} input from {config.input_path}")
    if config.input_format == "matrix":
        names, data = load_distance_matrix(config.input_path)
    elif config.input_format == "fasta":
        names, data = load_sequences_from_fasta(config.input_path)
    else:
        names, data = load_sequences(config.input_path)
    logger.info(f"Loaded {len(names)} taxa")
    return names, data


def run_rank(comm: Communicator, config: RunConfig) -> Optional[ClusteringResult]:
    """
    Program executed by every rank of a worker group.

    Args:
        comm: Communicator of this rank
        config: Run options, identical on every rank

    Returns:
        The clustering result on the root rank, None elsewhere
    """
    names, data = load_input(config) if comm.is_root else (None, None)

    builder = DistanceMatrixBuilder(show_progress=config.show_progress)
    if config.uses_sequences:
        names, matrix = builder.build(comm, names, data)
    else:
        names, matrix = builder.distribute(comm, names, data)

    engine = DistributedUPGMA(
        partition=config.partition,
        show_progress=config.show_progress,
        validate=config.validate,
    )
    result = engine.run(comm, names, matrix)
    return result if comm.is_root else None


def build_tree(config: RunConfig,
               num_workers: int = 1,
               backend: str = "processes",
               start_method: Optional[str] = None,
               log_level: Optional[int] = None) -> Optional[ClusteringResult]:
    """
    Run distributed UPGMA and return the root rank's result.

    Args:
        config: Run options
        num_workers: Number of ranks for the "processes" backend
        backend: "serial" (in-process, one rank), "processes" (multiprocessing)
            or "mpi" (this process is one rank of an mpirun job)
        start_method: multiprocessing start method for the "processes" backend
        log_level: Logging level configured inside worker processes

    Returns:
        ClusteringResult; under "mpi" only rank 0 receives it, other ranks get None
    """
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend: {backend}")

    if backend == "mpi":
        with MPICommunicator() as comm:
            return run_rank(comm, config)

    if backend == "serial" or num_workers == 1:
        return run_serial(run_rank, config)[0]

    with WorkerGroup(num_workers, start_method=start_method, log_level=log_level) as group:
        return group.run(run_rank, config)[0]
