"""
Utility functions for distUPGMA.

This module provides input parsing for sequence files, FASTA files and distance
matrix files, plus helpers to format and save distance matrices.
"""

import logging
from collections import Counter
from typing import List, Tuple, Optional, TextIO

import numpy as np
from Bio import SeqIO

from .distance import LARGE_DISTANCE, VALID_BASES, is_undefined

UNDEFINED_TOKEN = "N/A"


class InputFormatError(ValueError):
    """Raised when an input file is empty, truncated or malformed."""
    pass


def _read_lines(path: str) -> List[str]:
    with open(path) as f:
        return [line.strip() for line in f if line.strip()]


def parse_sequence_lines(lines: List[str]) -> Tuple[List[str], List[str]]:
    """
    Parse the sequence file format.

    The first line is a header ``<numSequences> <sequenceLength>``; each of the
    following numSequences lines is ``<name> <symbols>``.

    Args:
        lines: Non-empty, stripped input lines

    Returns:
        Tuple of (names, sequences)

    Raises:
        InputFormatError: On an empty input, a short or non-numeric header,
            too few sequence lines, a malformed line or a length mismatch
    """
    if not lines:
        raise InputFormatError("Input file is empty")

    header = lines[0].split()
    if len(header) < 2:
        raise InputFormatError(f"Invalid header line: '{lines[0]}' (expected '<numSequences> <sequenceLength>')")
    try:
        num_sequences = int(header[0])
        sequence_length = int(header[1])
    except ValueError:
        raise InputFormatError(f"Invalid number format in header line: '{lines[0]}'")
    if num_sequences < 1 or sequence_length < 0:
        raise InputFormatError(f"Header values out of range: {num_sequences} sequences of length {sequence_length}")

    body = lines[1:]
    if len(body) < num_sequences:
        raise InputFormatError(
            f"Not enough sequences in the input file: header declares {num_sequences}, found {len(body)}"
        )

    names = []
    sequences = []
    for line_no, line in enumerate(body[:num_sequences], 2):
        tokens = line.split()
        if len(tokens) < 2:
            raise InputFormatError(f"Invalid sequence line {line_no}: '{line}'")
        name, data = tokens[0], "".join(tokens[1:])
        if len(data) != sequence_length:
            raise InputFormatError(
                f"Sequence '{name}' has length {len(data)}, header declares {sequence_length}"
            )
        names.append(name)
        sequences.append(data.upper())

    if len(body) > num_sequences:
        logging.warning(f"Ignoring {len(body) - num_sequences} lines after the declared {num_sequences} sequences")

    return names, sequences


def load_sequences(path: str) -> Tuple[List[str], List[str]]:
    """
    Load sequences from a header-prefixed sequence file.

    Args:
        path: Path to the sequence file

    Returns:
        Tuple of (names, sequences)
    """
    return parse_sequence_lines(_read_lines(path))


def load_sequences_from_fasta(fasta_path: str) -> Tuple[List[str], List[str]]:
    """
    Load aligned sequences from a FASTA file.

    Args:
        fasta_path: Path to the FASTA file

    Returns:
        Tuple of (names, sequences)

    Raises:
        InputFormatError: If the file holds no records or the records differ in length
    """
    names = []
    sequences = []

    try:
        for record in SeqIO.parse(fasta_path, "fasta"):
            names.append(record.id)
            sequences.append(str(record.seq).upper())
    except Exception as e:
        logging.error(f"Error reading FASTA file: {e}")
        raise

    if not sequences:
        raise InputFormatError(f"No sequences found in FASTA file {fasta_path}")
    lengths = {len(seq) for seq in sequences}
    if len(lengths) > 1:
        raise InputFormatError(
            f"FASTA sequences must be aligned to equal length, found lengths {sorted(lengths)}"
        )

    return names, sequences


def _parse_distance_token(token: str, line_no: int) -> float:
    if token.upper() == UNDEFINED_TOKEN:
        return LARGE_DISTANCE
    try:
        value = float(token)
    except ValueError:
        raise InputFormatError(f"Invalid distance value '{token}' on line {line_no}")
    if np.isnan(value):
        return LARGE_DISTANCE
    return value


def _is_triangular(row_lengths: List[int]) -> bool:
    """True if row i carries i values, or i + 1 values including the diagonal, for every row."""
    n = len(row_lengths)
    return row_lengths == list(range(n)) or row_lengths == list(range(1, n + 1))


def _is_zero(token: str) -> bool:
    try:
        return float(token) == 0.0
    except ValueError:
        return False


def _counted_rows_fit(body: List[str], count: int) -> bool:
    """True if the lines after a count line form a matrix of exactly that many rows."""
    if len(body) != count:
        return False
    tokens = [line.split()[1:] for line in body]
    lengths = [len(values) for values in tokens]
    if all(length == count for length in lengths) or lengths == list(range(count)):
        return True
    # Lower triangle with diagonal: the last value of each row must be zero
    return lengths == list(range(1, count + 1)) and all(_is_zero(values[-1]) for values in tokens)


def parse_matrix_lines(lines: List[str]) -> Tuple[List[str], np.ndarray]:
    """
    Parse a distance matrix in the ``<name> <d1> ... <dn>`` row format.

    The first line may carry the taxon count on its own; it is taken as a count
    only when the rows below match it, and otherwise as a numeric taxon name
    of a lower-triangular matrix. Rows are either full
    (n values) or lower-triangular (row i carries i values, the diagonal
    optional). ``N/A`` tokens are mapped to LARGE_DISTANCE. Square matrices are
    symmetrized from their upper triangle.

    Args:
        lines: Non-empty, stripped input lines

    Returns:
        Tuple of (names, symmetric n x n matrix)

    Raises:
        InputFormatError: On an empty file, a wrong row count, a malformed row
            or an unparsable number
    """
    if not lines:
        raise InputFormatError("Distance matrix file is empty")

    declared = None
    first = lines[0].split()
    if len(first) == 1 and first[0].isdigit():
        count = int(first[0])
        body = lines[1:]
        if _counted_rows_fit(body, count):
            declared = count
            lines = body
        elif _is_triangular([len(line.split()) - 1 for line in lines]):
            # A numeric taxon name opening a lower-triangular matrix
            logging.debug(f"Reading first line '{lines[0]}' as a taxon name")
        elif len(body) != count:
            raise InputFormatError(f"Matrix header declares {count} rows, found {len(body)}")
        else:
            declared = count
            lines = body

    if not lines:
        raise InputFormatError("Distance matrix has no rows")

    n = len(lines)
    names = []
    rows = []
    for line_no, line in enumerate(lines, 1 if declared is None else 2):
        tokens = line.split()
        names.append(tokens[0])
        rows.append([_parse_distance_token(token, line_no) for token in tokens[1:]])

    matrix = np.zeros((n, n))
    if all(len(row) == n for row in rows):
        full = np.array(rows, dtype=float)
        upper = np.triu(full, k=1)
        if not np.array_equal(upper, np.triu(full.T, k=1)):
            logging.warning("Distance matrix is not symmetric; using the upper triangle")
        matrix = upper + upper.T
    elif _is_triangular([len(row) for row in rows]):
        for i, row in enumerate(rows):
            for j in range(i):
                matrix[i, j] = row[j]
                matrix[j, i] = row[j]
    else:
        bad = next(i for i, row in enumerate(rows) if len(row) != n)
        raise InputFormatError(
            f"Row '{names[bad]}' has {len(rows[bad])} values, expected {n} (square) or {bad} (lower-triangular)"
        )

    if (matrix < 0).any():
        logging.warning("Distance matrix contains negative values")

    return names, matrix


def load_distance_matrix(path: str) -> Tuple[List[str], np.ndarray]:
    """
    Load a named distance matrix from a file.

    Args:
        path: Path to the matrix file

    Returns:
        Tuple of (names, matrix)
    """
    return parse_matrix_lines(_read_lines(path))


def format_distance_matrix(names: List[str], matrix: np.ndarray,
                           precision: int = 4,
                           include_count: bool = False) -> str:
    """
    Format a distance matrix as fixed-width text rows.

    Undefined distances (NaN) are rendered as ``N/A``, never as a number.

    Args:
        names: Row labels
        matrix: n x n distance matrix, possibly containing NaN
        precision: Decimal places for defined distances
        include_count: If True, prefix the output with the row count

    Returns:
        Formatted matrix text (newline terminated)
    """
    output_lines = []
    if include_count:
        output_lines.append(str(len(names)))

    for name, row in zip(names, matrix):
        cells = []
        for value in row:
            if is_undefined(value):
                cells.append(f"{UNDEFINED_TOKEN:>8}")
            else:
                cells.append(f"{value:8.{precision}f}")
        output_lines.append(f"{name:>10} " + "".join(cells))

    return "\n".join(output_lines) + "\n"


def save_distance_matrix(names: List[str], matrix: np.ndarray,
                         output: Optional[TextIO] = None,
                         output_path: Optional[str] = None,
                         precision: int = 4):
    """
    Write a formatted distance matrix to a stream or file.

    Args:
        names: Row labels
        matrix: Distance matrix, NaN for undefined pairs
        output: Open text stream to write to
        output_path: Path to write to (used when output is None)
        precision: Decimal places for defined distances
    """
    text = format_distance_matrix(names, matrix, precision=precision)
    if output is not None:
        output.write(text)
    elif output_path is not None:
        with open(output_path, 'w') as f:
            f.write(text)
    else:
        raise ValueError("Either output or output_path is required")


def count_excluded_symbols(sequences: List[str]) -> Counter:
    """
    Count the symbols that distance calculation skips.

    Only A, C, G and T are compared; every other symbol, such as gaps, N or
    IUPAC ambiguity codes, removes its site from each pair it appears in.

    Args:
        sequences: Aligned sequences

    Returns:
        Counter mapping each excluded symbol to its number of occurrences
    """
    excluded = Counter()
    for seq in sequences:
        excluded.update(symbol for symbol in seq.upper() if symbol not in VALID_BASES)
    return excluded


def validate_sequences(sequences: List[str],
                       names: Optional[List[str]] = None) -> Tuple[bool, List[str]]:
    """
    Check sequences before computing Jukes-Cantor distances.

    A sequence fails when it is empty or has no A, C, G or T site at all, so
    every distance to it would be undefined. Symbols outside the IUPAC
    nucleotide alphabet are reported too; they are skipped like gaps but
    usually point at a corrupt input.

    Args:
        sequences: Aligned sequences
        names: Optional labels used in the messages

    Returns:
        Tuple of (is_valid, messages)
    """
    iupac_symbols = set('ACGTUNRYKMSWBDHV-?.')
    messages = []

    if not sequences:
        return False, ["No sequences provided"]

    for i, seq in enumerate(sequences):
        label = names[i] if names else f"Sequence {i+1}"
        if not seq:
            messages.append(f"{label} is empty")
            continue

        symbols = set(seq.upper())
        if not symbols & VALID_BASES:
            messages.append(f"{label} has no A/C/G/T sites; all its distances are undefined")

        unknown = symbols - iupac_symbols
        if unknown:
            messages.append(
                f"{label} contains non-nucleotide symbols, excluded from comparison: {sorted(unknown)}"
            )

    return len(messages) == 0, messages
