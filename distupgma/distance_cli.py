"""
Command-line interface for computing distance matrices.

Writes the Jukes-Cantor distance matrix of a set of aligned sequences in the
row format read by ``distupgma``; pairs without a defined distance are
written as N/A.
"""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np

from .cli import setup_logging
from .matrix_builder import calculate_distance_matrix
from .utils import (
    count_excluded_symbols,
    load_sequences,
    load_sequences_from_fasta,
    save_distance_matrix,
    validate_sequences
)


def main():
    """Main entry point for the distupgma-dist CLI."""
    parser = argparse.ArgumentParser(
        description='Compute a Jukes-Cantor distance matrix from aligned DNA sequences',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  distupgma-dist seqs.txt > DistanceMatrix
  distupgma-dist aligned.fasta --format fasta -o DistanceMatrix
        """
    )
    parser.add_argument(
        'input',
        help='Input sequence file'
    )
    parser.add_argument(
        '--format',
        choices=['sequences', 'fasta'],
        default='sequences',
        help='Input format (default: sequences)'
    )
    parser.add_argument(
        '-o', '--output',
        help='Output file for the distance matrix (default: stdout)'
    )
    parser.add_argument(
        '--precision',
        type=int,
        default=4,
        help='Decimal places for distances (default: 4)'
    )
    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bar'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        input_path = Path(args.input)
        if not input_path.exists():
            logging.error(f"Input file not found: {args.input}")
            sys.exit(1)

        logging.info(f"Loading sequences from {args.input}")
        if args.format == 'fasta':
            names, sequences = load_sequences_from_fasta(str(input_path))
        else:
            names, sequences = load_sequences(str(input_path))
        logging.info(f"Loaded {len(sequences)} sequences")

        _, problems = validate_sequences(sequences, names)
        for problem in problems:
            logging.warning(problem)
        excluded = count_excluded_symbols(sequences)
        if excluded:
            logging.info(f"Symbols excluded from comparison: {dict(sorted(excluded.items()))}")

        matrix = calculate_distance_matrix(sequences, show_progress=not args.no_progress)

        undefined = int(np.isnan(matrix).sum()) // 2
        if undefined:
            logging.info(f"{undefined} pairs have no defined distance (written as N/A)")

        if args.output:
            save_distance_matrix(names, matrix, output_path=args.output, precision=args.precision)
            logging.info(f"Wrote {len(names)} x {len(names)} distance matrix to {args.output}")
        else:
            save_distance_matrix(names, matrix, output=sys.stdout, precision=args.precision)

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
