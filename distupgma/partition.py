"""
Work partitioning across ranks.

Rows are split into contiguous blocks of floor(n / size) rows, with the
remainder given one row each to the first n % size ranks. The cyclic policy
deals rows round-robin instead, which evens out the triangular scan cost.
"""

from dataclasses import dataclass
from typing import List, Tuple

PARTITION_POLICIES = ("block", "cyclic")


def row_block(n_rows: int, size: int, rank: int) -> Tuple[int, int]:
    """
    Compute the contiguous row block [start, end) owned by a rank.

    Args:
        n_rows: Number of rows to distribute
        size: Number of ranks
        rank: Rank whose block is requested

    Returns:
        Tuple of (start, end); empty when the rank receives no rows
    """
    if size < 1:
        raise ValueError(f"Worker count must be positive, got {size}")
    if not 0 <= rank < size:
        raise ValueError(f"Rank {rank} outside worker group of size {size}")

    base, remainder = divmod(n_rows, size)
    start = rank * base + min(rank, remainder)
    end = start + base + (1 if rank < remainder else 0)
    return start, end


@dataclass(frozen=True)
class WorkerPartition:
    """Positions of the active list assigned to one rank for a round."""
    rank: int
    size: int
    n_rows: int
    policy: str = "block"

    def __post_init__(self):
        if self.policy not in PARTITION_POLICIES:
            raise ValueError(f"Unknown partition policy: {self.policy}")
        # Validates rank and size
        row_block(self.n_rows, self.size, self.rank)

    def positions(self) -> range:
        """Row positions owned by this rank, in ascending order."""
        if self.policy == "cyclic":
            return range(self.rank, self.n_rows, self.size)
        start, end = row_block(self.n_rows, self.size, self.rank)
        return range(start, end)

    def __len__(self) -> int:
        return len(self.positions())


def all_partitions(n_rows: int, size: int, policy: str = "block") -> List[WorkerPartition]:
    """Return the partition of every rank for a given row count."""
    return [WorkerPartition(rank, size, n_rows, policy) for rank in range(size)]
