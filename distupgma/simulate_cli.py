"""
Command-line interface for generating random test sequences.
"""

import argparse
import logging
import sys

from .cli import setup_logging
from .simulate import format_sequences, generate_sequences


def main():
    """Main entry point for the distupgma-simulate CLI."""
    parser = argparse.ArgumentParser(
        description='Generate random DNA sequences in the distupgma sequence format',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  distupgma-simulate 10 200 > seqs.txt
  distupgma-simulate 50 1000 0.05 0.01 --seed 42 -o seqs.txt
        """
    )
    parser.add_argument('n', type=int, help='Number of organisms')
    parser.add_argument('m', type=int, help='Length of each sequence')
    parser.add_argument(
        'gap_prob', type=float, nargs='?', default=0.0,
        help='Probability of a gap at each position (default: 0)'
    )
    parser.add_argument(
        'ambiguous_prob', type=float, nargs='?', default=0.0,
        help='Probability of an ambiguous base at each position (default: 0)'
    )
    parser.add_argument('--seed', type=int, help='Random seed')
    parser.add_argument('-o', '--output', help='Output file (default: stdout)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    args = parser.parse_args()
    setup_logging(args.verbose)

    try:
        names, sequences = generate_sequences(
            args.n, args.m,
            gap_prob=args.gap_prob,
            ambiguous_prob=args.ambiguous_prob,
            seed=args.seed,
        )
    except ValueError as e:
        logging.error(f"Error: Invalid inputs. {e}")
        sys.exit(1)

    text = format_sequences(names, sequences)
    if args.output:
        with open(args.output, 'w') as f:
            f.write(text)
        logging.info(f"Wrote {args.n} sequences of length {args.m} to {args.output}")
    else:
        sys.stdout.write(text)


if __name__ == '__main__':
    main()
