"""
Random sequence generation for exercising distUPGMA.

Generates sequences in the header-prefixed sequence file format: a header line
``<n> <m>`` followed by one ``Org<i> <symbols>`` line per organism.
"""

from typing import List, Optional, Tuple

import numpy as np

NUCLEOTIDES = np.array(list("ATCG"))
GAP = "-"
AMBIGUOUS = "N"


def generate_sequences(n: int, m: int,
                       gap_prob: float = 0.0,
                       ambiguous_prob: float = 0.0,
                       seed: Optional[int] = None) -> Tuple[List[str], List[str]]:
    """
    Generate random sequences with optional gaps and ambiguous bases.

    Each position is a gap with probability gap_prob, an N with probability
    ambiguous_prob, and otherwise a uniformly drawn nucleotide.

    Args:
        n: Number of organisms
        m: Sequence length
        gap_prob: Probability of a gap at each position
        ambiguous_prob: Probability of an ambiguous base at each position
        seed: Seed for the random generator

    Returns:
        Tuple of (names, sequences)

    Raises:
        ValueError: If n or m is not positive or a probability is out of range
    """
    if n <= 0 or m <= 0:
        raise ValueError(f"Number of organisms and sequence length must be positive (got {n}, {m})")
    if not (0 <= gap_prob <= 1 and 0 <= ambiguous_prob <= 1):
        raise ValueError("Probabilities must lie between 0 and 1")
    if gap_prob + ambiguous_prob > 1:
        raise ValueError("Gap and ambiguous probabilities must not sum to more than 1")

    rng = np.random.default_rng(seed)
    draws = rng.random((n, m))
    bases = NUCLEOTIDES[rng.integers(0, 4, size=(n, m))]

    symbols = np.where(draws < gap_prob, GAP,
                       np.where(draws < gap_prob + ambiguous_prob, AMBIGUOUS, bases))

    names = [f"Org{i + 1}" for i in range(n)]
    sequences = ["".join(row) for row in symbols]
    return names, sequences


def format_sequences(names: List[str], sequences: List[str]) -> str:
    """Format sequences as a header-prefixed sequence file."""
    length = len(sequences[0]) if sequences else 0
    lines = [f"{len(sequences)} {length}"]
    for name, seq in zip(names, sequences):
        lines.append(f"{name:<9} {seq}")
    return "\n".join(lines) + "\n"
