"""
Partitioned construction of the initial distance matrix.

Rows are split across ranks in contiguous blocks (see partition.row_block).
Each rank computes the upper-triangular part of its rows, non-root ranks send
them to the root one message per row, and the root assembles, mirrors and
sanitizes the matrix before broadcasting it once to every rank.
"""

import logging
from typing import Callable, List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .comm import ROOT, Communicator
from .distance import LARGE_DISTANCE, jukes_cantor_distance, map_undefined
from .partition import row_block

ROW_TAG = 11


def compute_rows(sequences: List[str], start: int, end: int,
                 distance_function: Callable[[str, str], float] = jukes_cantor_distance,
                 pbar=None) -> List[np.ndarray]:
    """
    Compute rows [start, end) of the upper triangle.

    Args:
        sequences: All sequences
        start: First row index
        end: One past the last row index
        distance_function: Pairwise distance, NaN when undefined
        pbar: Optional progress bar, advanced once per comparison

    Returns:
        One array per row r holding distances to columns r+1..n-1
    """
    n = len(sequences)
    rows = []
    for r in range(start, end):
        row = np.empty(n - r - 1)
        for offset, c in enumerate(range(r + 1, n)):
            row[offset] = distance_function(sequences[r], sequences[c])
        if pbar is not None:
            pbar.update(n - r - 1)
        rows.append(row)
    return rows


def mirror_upper(upper_rows: List[np.ndarray]) -> np.ndarray:
    """Assemble upper-triangular rows into a full symmetric matrix with a zero diagonal."""
    n = len(upper_rows)
    matrix = np.zeros((n, n))
    for r, row in enumerate(upper_rows):
        matrix[r, r + 1:] = row
        matrix[r + 1:, r] = row
    return matrix


def calculate_distance_matrix(sequences: List[str],
                              show_progress: bool = True,
                              distance_function: Callable[[str, str], float] = jukes_cantor_distance) -> np.ndarray:
    """
    Calculate the pairwise distance matrix in a single process.

    Undefined distances are left as NaN so callers can report them.

    Args:
        sequences: List of aligned sequences
        show_progress: Whether to show a progress bar
        distance_function: Pairwise distance function

    Returns:
        Numpy array of pairwise distances (n x n), NaN where undefined
    """
    n = len(sequences)
    total_comparisons = (n * (n - 1)) // 2

    pbar = None
    if show_progress and total_comparisons > 0:
        pbar = tqdm(total=total_comparisons,
                    desc="Calculating distances",
                    unit=" comparisons")

    rows = compute_rows(sequences, 0, n, distance_function, pbar)

    if pbar:
        pbar.close()

    return mirror_upper(rows)


class DistanceMatrixBuilder:
    """
    Builds the initial matrix across a worker group.

    All ranks must call build() (or distribute()) together; every rank
    returns the same names and the same finite matrix.
    """

    def __init__(self, distance_function: Callable[[str, str], float] = jukes_cantor_distance,
                 show_progress: bool = True,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize the builder.

        Args:
            distance_function: Pairwise distance, returning NaN when undefined
            show_progress: If True, show a progress bar for the root's rows
            logger: Optional logger instance; uses default logging if None
        """
        self.distance_function = distance_function
        self.show_progress = show_progress
        self.logger = logger or logging.getLogger(__name__)

    def build(self, comm: Communicator,
              names: Optional[List[str]],
              sequences: Optional[List[str]]) -> Tuple[List[str], np.ndarray]:
        """
        Compute the distance matrix from sequences held by the root.

        Args:
            comm: Communicator of this rank
            names: Taxon names (only read on the root)
            sequences: Aligned sequences (only read on the root)

        Returns:
            Tuple of (names, matrix) with undefined distances mapped to LARGE_DISTANCE
        """
        names, sequences = comm.bcast((names, sequences) if comm.is_root else None)
        n = len(sequences)
        start, end = row_block(n, comm.size, comm.rank)
        self.logger.debug(f"Rank {comm.rank} computing rows [{start}, {end}) of {n}")

        pbar = None
        own_comparisons = sum(n - r - 1 for r in range(start, end))
        if self.show_progress and comm.is_root and own_comparisons > 0:
            pbar = tqdm(total=own_comparisons, desc="Calculating distances", unit=" comparisons")
        rows = compute_rows(sequences, start, end, self.distance_function, pbar)
        if pbar:
            pbar.close()

        matrix = None
        if not comm.is_root:
            requests = [comm.isend((r, row), dest=ROOT, tag=ROW_TAG)
                        for r, row in zip(range(start, end), rows)]
            for request in requests:
                request.wait()
        else:
            upper_rows = rows + [None] * (n - len(rows))
            for rank in range(1, comm.size):
                rank_start, rank_end = row_block(n, comm.size, rank)
                for expected in range(rank_start, rank_end):
                    r, row = comm.recv(source=rank, tag=ROW_TAG)
                    if r != expected:
                        raise RuntimeError(f"Rank {rank} sent row {r}, expected row {expected}")
                    upper_rows[r] = row
            matrix = self.sanitize(mirror_upper(upper_rows))

        matrix = comm.bcast(matrix)
        return names, matrix

    def distribute(self, comm: Communicator,
                   names: Optional[List[str]],
                   matrix: Optional[np.ndarray]) -> Tuple[List[str], np.ndarray]:
        """
        Broadcast a pre-built matrix held by the root.

        Args:
            comm: Communicator of this rank
            names: Taxon names (only read on the root)
            matrix: Distance matrix (only read on the root)

        Returns:
            Tuple of (names, matrix) with undefined distances mapped to LARGE_DISTANCE
        """
        payload = None
        if comm.is_root:
            payload = (list(names), self.sanitize(np.asarray(matrix, dtype=float)))
        return comm.bcast(payload)

    def sanitize(self, matrix: np.ndarray) -> np.ndarray:
        """Map undefined (NaN) distances to LARGE_DISTANCE."""
        undefined = int(np.isnan(matrix).sum())
        if undefined:
            self.logger.warning(
                f"{undefined // 2} pairs have no valid distance; using {LARGE_DISTANCE:g} for them"
            )
        return map_undefined(matrix)
