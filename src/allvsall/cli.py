"""
Command-line interface: perform all-vs-all global alignments for the input sequences.
"""
from argparse import ArgumentParser, ArgumentTypeError, RawDescriptionHelpFormatter, Namespace
from dataclasses import dataclass
from pathlib import Path
import sys
from time import perf_counter
from typing import Optional, Sequence

from allvsall import __version__
from allvsall.containers.alignment import InvariantError
from allvsall.engines.dispatch import align_all, n_pairs, WorkerError
from allvsall.engines.pairwise import ScoreMatrix
from allvsall.io import read_records, ParserError
from allvsall.io.tabular import ResultSink
from allvsall.lib.resources import RESOURCES
from allvsall.utils import Config


# Classes --------------------------------------------------------------------------------------------------------------
@dataclass
class AlignConfig(Config):
    """Run parameters; penalties are stored as magnitudes and applied as negative scores."""
    in_file: Path
    out_file: Path
    threads: int = 1
    gap_open: int = 10
    gap_extend: int = 1
    show_aln_ops: bool = False
    digits: int = 3
    verbose: bool = False

    @property
    def gap_open_score(self) -> int: return -self.gap_open
    @property
    def gap_extend_score(self) -> int: return -self.gap_extend


# Functions ------------------------------------------------------------------------------------------------------------
def exists(file_name: str) -> Path:
    """Argument type for a path that must already exist."""
    if not (path := Path(file_name)).exists(): raise ArgumentTypeError(f'file {file_name} does not exist')
    return path


def doesnt_exist(file_name: str) -> Path:
    """Argument type for a path that must NOT already exist."""
    if (path := Path(file_name)).exists(): raise ArgumentTypeError(f'file {file_name} already exists')
    return path


def bounded_int(low: int, high: int = None):
    """Argument type for an integer in ``[low, high]``."""
    def parse(value: str) -> int:
        try: n = int(value)
        except ValueError: raise ArgumentTypeError(f'{value!r} is not an integer') from None
        if n < low or (high is not None and n > high):
            raise ArgumentTypeError(f'{n} is not in range {low}..{"" if high is None else high}')
        return n
    return parse


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog='allvsall',
        description='Perform all-vs-all global alignments for the input sequences',
        epilog=f"""Output columns:

x, y       sequence ids
xlen, ylen sequence lengths
alnlen     alignment length (matches + substitutions + gaps)
matches    identical columns
pid        matches / alnlen
ops        (--show-aln-ops) M match, S substitution, D gap in y, I gap in x

Every pair is reported twice (x vs y and y vs x), and every sequence against itself.
This machine reports {RESOURCES.available_cpus} CPUs.""",
        formatter_class=RawDescriptionHelpFormatter
    )
    parser.add_argument('in_file', type=exists, help='FASTA file input')
    parser.add_argument('out_file', type=doesnt_exist, help='Output file name')
    parser.add_argument('-t', '--threads', default=1, type=bounded_int(1, 255), metavar='N',
                        help='Number of worker threads for aligning (default: %(default)s). '
                             'The total number of threads used will be threads + 2.')
    parser.add_argument('--gap-open', default=10, type=bounded_int(0, 255), metavar='N',
                        help='Gap open penalty (default: %(default)s)')
    parser.add_argument('--gap-extend', default=1, type=bounded_int(0, 255), metavar='N',
                        help='Gap extend penalty (default: %(default)s). EMBOSS needle uses 0.5, '
                             'but only integers are accepted.')
    parser.add_argument('--show-aln-ops', action='store_true', help='Show the alignment operations')
    parser.add_argument('--digits', default=3, type=bounded_int(0, 17), metavar='N',
                        help='Decimal places for percent identity (default: %(default)s)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Print a run summary to stderr')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def run(config: AlignConfig) -> int:
    """
    Reads the records, aligns every pair and writes the identity table.

    Returns:
        The number of pairs aligned.
    """
    start = perf_counter()
    score_matrix = ScoreMatrix.blosum62()
    records = read_records(config.in_file, score_matrix)
    with ResultSink(config.out_file, show_operations=config.show_aln_ops) as sink:
        n = align_all(records, sink, threads=config.threads, gap_open=config.gap_open_score,
                      gap_extend=config.gap_extend_score, score_matrix=score_matrix,
                      show_operations=config.show_aln_ops, digits=config.digits)
    if config.verbose:
        print(f'Aligned {len(records)} records ({n} pairs of {n_pairs(len(records))}) with {config.threads} '
              f'worker(s) in {perf_counter() - start:.2f}s', file=sys.stderr)
    return n


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args: Namespace = parser.parse_args(argv)
    config = AlignConfig.from_args(args)
    try:
        run(config)
    except (OSError, ParserError) as e:
        parser.exit(1, f'{parser.prog}: error: {e}\n')
    except (WorkerError, InvariantError) as e:
        parser.exit(1, f'{parser.prog}: fatal: {e}\n')
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
