"""
Pairwise evolutionary distances for distUPGMA.

Distances follow the Jukes-Cantor correction of the observed proportion of
differing sites. Pairs for which the model is undefined are reported as NaN,
which the matrix builder later maps to LARGE_DISTANCE before clustering.
"""

import math
from typing import Iterable

import numpy as np

# Substitute for undefined distances; the merge loop needs finite, ordered values
LARGE_DISTANCE = 1_000_000.0

VALID_BASES = frozenset('ACGT')

# Jukes-Cantor is undefined at and beyond this proportion of differences
MAX_DIFFERENCE_PROPORTION = 0.75


def count_differences(seq1: str, seq2: str) -> tuple:
    """
    Count comparable and differing sites between two aligned sequences.

    Only positions where both sequences carry an unambiguous nucleotide are
    comparable; gaps, N and IUPAC codes are skipped.

    Args:
        seq1: First sequence
        seq2: Second sequence (same length as seq1)

    Returns:
        Tuple of (differences, total_comparable)
    """
    differences = 0
    total = 0
    for base1, base2 in zip(seq1.upper(), seq2.upper()):
        if base1 in VALID_BASES and base2 in VALID_BASES:
            total += 1
            if base1 != base2:
                differences += 1
    return differences, total


def jukes_cantor_distance(seq1: str, seq2: str) -> float:
    """
    Compute the Jukes-Cantor corrected distance between two sequences.

    Args:
        seq1: First sequence
        seq2: Second sequence

    Returns:
        Corrected distance -3/4 * ln(1 - 4/3 * p), or np.nan when no sites are
        comparable or p >= 0.75

    Raises:
        ValueError: If the sequences differ in length
    """
    if len(seq1) != len(seq2):
        raise ValueError(f"Sequences must have equal length ({len(seq1)} != {len(seq2)})")

    differences, total = count_differences(seq1, seq2)
    if total == 0:
        return np.nan

    p = differences / total
    if p >= MAX_DIFFERENCE_PROPORTION:
        return np.nan

    return -0.75 * math.log(1.0 - (4.0 / 3.0) * p)


def is_undefined(distance: float) -> bool:
    """Return True if the distance is the undefined sentinel."""
    return distance is None or math.isnan(distance)


def map_undefined(values: Iterable[float]) -> np.ndarray:
    """Replace undefined (NaN) distances with LARGE_DISTANCE."""
    array = np.array(values, dtype=float)
    array[np.isnan(array)] = LARGE_DISTANCE
    return array
