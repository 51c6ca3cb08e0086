"""
Command-line interface for distUPGMA.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from .comm import MPICommunicator
from .partition import PARTITION_POLICIES
from .pipeline import BACKENDS, INPUT_FORMATS, RunConfig, build_tree, run_rank


def setup_logging(verbose: bool = False):
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='distUPGMA: distributed UPGMA phylogenetic tree construction',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  distupgma DistanceMatrix                       # Newick tree on stdout
  distupgma seqs.txt --format sequences -j 4     # Distances computed on 4 workers
  distupgma aligned.fasta --format fasta -o tree.nwk
  distupgma DistanceMatrix -j 4 --partition cyclic --export-merges merges.json
  mpirun -n 8 distupgma DistanceMatrix --backend mpi
        """
    )

    parser.add_argument(
        'input',
        help='Input distance matrix, sequence file or FASTA file'
    )
    parser.add_argument(
        '--format',
        choices=INPUT_FORMATS,
        default='matrix',
        help='Input format (default: matrix)'
    )
    parser.add_argument(
        '-o', '--output',
        help='Write the Newick tree to this file instead of stdout'
    )
    parser.add_argument(
        '-j', '--workers',
        type=int,
        default=1,
        help='Number of worker processes (default: 1, ignored with --backend mpi)'
    )
    parser.add_argument(
        '--backend',
        choices=BACKENDS,
        default='processes',
        help='Worker backend: serial (in-process), processes (multiprocessing) '
             'or mpi (run under mpirun) (default: processes)'
    )
    parser.add_argument(
        '--partition',
        choices=PARTITION_POLICIES,
        default='block',
        help='How active rows are split across workers each round (default: block)'
    )
    parser.add_argument(
        '--precision',
        type=int,
        default=6,
        help='Decimal places for branch lengths (default: 6)'
    )
    parser.add_argument(
        '--export-merges',
        help='Export the merge history to a JSON file'
    )
    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )
    return parser


def main():
    """Main entry point for the distUPGMA CLI."""
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(args.verbose)

    try:
        input_path = Path(args.input)
        if not input_path.exists():
            logging.error(f"Input file not found: {args.input}")
            sys.exit(1)
        if args.workers < 1:
            logging.error(f"Worker count must be positive, got {args.workers}")
            sys.exit(1)
        if args.precision < 0:
            logging.error(f"Precision must not be negative, got {args.precision}")
            sys.exit(1)
        if args.backend == 'serial' and args.workers > 1:
            logging.warning("Serial backend runs a single worker; ignoring --workers")

        config = RunConfig(
            input_path=str(input_path),
            input_format=args.format,
            partition=args.partition,
            show_progress=not args.no_progress,
        )

        if args.backend == 'mpi':
            with MPICommunicator() as comm:
                result = run_rank(comm, config)
            if not comm.is_root:
                return
        else:
            result = build_tree(
                config,
                num_workers=args.workers,
                backend=args.backend,
                log_level=logging.DEBUG if args.verbose else logging.INFO,
            )

        newick = result.newick(precision=args.precision)
        if args.output:
            with open(args.output, 'w') as f:
                f.write(newick + "\n")
            logging.info(f"Wrote tree with {len(result.names)} taxa to {args.output}")
        else:
            print(newick)

        if args.export_merges:
            logging.info(f"Exporting merge history to {args.export_merges}")
            with open(args.export_merges, 'w') as f:
                json.dump([record.to_dict() for record in result.merges], f, indent=2)

        logging.debug("Done!")

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
