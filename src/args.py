"""Argument parsing functionality for depsim."""

import argparse
from constants import Constants


def _positive_int(text):
    try:
        value = int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {text!r}") from exc
    if value < 1:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return value


def build_parser():
    """Build the argument parser (separate from parsing for testability)."""
    parser = argparse.ArgumentParser(
        prog="depsim",
        description=(
            "depsim - find PyPI packages similar to, or commonly used alongside, a package"
        ),
        add_help=True,
    )

    input_group = parser.add_mutually_exclusive_group(required=True)
    input_group.add_argument("-p", "--package",
                             dest="SINGLE",
                             help="Package to rank against (repeatable).",
                             action="append", type=str)
    input_group.add_argument("-l", "--load_list",
                             dest="LIST_FROM_FILE",
                             help="Load list of packages from a file, one per line",
                             action="store", type=str)

    parser.add_argument("-n", "--limit",
                        dest="LIMIT",
                        help=f"Results per ranking (1-{Constants.MAX_LIMIT}, default {Constants.DEFAULT_LIMIT})",
                        action="store", type=_positive_int,
                        default=Constants.DEFAULT_LIMIT)
    parser.add_argument("-m", "--mode",
                        dest="MODE",
                        help="Rankings to compute: similar, cooccur or both (default: both)",
                        action="store", type=str.lower,
                        choices=Constants.MODES,
                        default="both")
    parser.add_argument("--data-dir",
                        dest="DATA_DIR",
                        help=f"Directory holding the on-disk indexes (default: ${Constants.ENV_DATA_DIR} or ./data)",
                        action="store", type=str)
    parser.add_argument("--peer-group",
                        dest="PEER_GROUP",
                        help="Restrict similarity candidates to the query's curated peer group",
                        action="store_true")
    parser.add_argument("--peer-only",
                        dest="PEER_ONLY",
                        help="Score only the query's UI/web framework peers from cached reverse sets (similar mode)",
                        action="store_true")
    parser.add_argument("--max-dependents",
                        dest="MAX_DEPENDENTS",
                        help="Dependents of the query to sample for candidates",
                        action="store", type=_positive_int)
    parser.add_argument("--max-live-candidates",
                        dest="MAX_LIVE_CANDIDATES",
                        help="Upper bound on live reverse-dependency fetches per query",
                        action="store", type=_positive_int)
    parser.add_argument("--top-search-limit",
                        dest="TOP_SEARCH_LIMIT",
                        help="Popular packages always considered as candidates",
                        action="store", type=_positive_int)
    parser.add_argument("--no-cache",
                        dest="NO_CACHE",
                        help="Bypass the result cache and the precomputed index",
                        action="store_true")
    parser.add_argument("--popular-url",
                        dest="POPULAR_URL",
                        help="Download the popular-packages list from this URL when popular.json is missing",
                        action="store", type=str)
    parser.add_argument("--libraries-io-key",
                        dest="LIBRARIES_IO_KEY",
                        help=f"Libraries.io API key for live reverse dependents (or ${Constants.ENV_LIBRARIES_IO_API_KEY})",
                        action="store", type=str)

    parser.add_argument("-o", "--output",
                        dest="OUTPUT",
                        help="Path to output file (JSON or CSV)",
                        action="store",
                        type=str)
    parser.add_argument("-f", "--format",
                        dest="OUTPUT_FORMAT",
                        help="Output format (json or csv). If not specified, inferred from --output extension; defaults to json.",
                        action="store",
                        type=str.lower,
                        choices=Constants.OUTPUT_FORMATS)

    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str.upper,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("-q", "--quiet",
                        dest="QUIET",
                        help="Do not print results to the console.",
                        action="store_true")
    parser.add_argument("--error-on-empty",
                        dest="ERROR_ON_EMPTY",
                        help="Exit with a non-zero status code if any ranking is empty.",
                        action="store_true")

    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to configuration file (YAML, YML, or JSON)",
                        action="store",
                        type=str)
    parser.add_argument("--set",
                        dest="CONFIG_SET",
                        help="Engine configuration override, e.g. limits.max_candidates_to_evaluate=2000 (repeatable)",
                        action="append",
                        type=str,
                        default=[])
    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)
