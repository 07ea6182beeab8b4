"""depsim - PyPI package similarity and co-occurrence ranking.

    Raises:
        SystemExit: with an ``ExitCodes`` value when the run ends.

    Returns:
        int: Exit code
"""
import asyncio
import csv
import json
import logging
import os
import sys

from args import parse_args
from cli_config import build_engine_config, resolve_data_dir
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from common.names import normalize_name
from constants import Constants, ExitCodes, Modes
from index.store import IndexStore
from registry.pypi.client import PyPIDataSource
from similarity.engine import SimilarityEngine
from similarity.errors import InvalidInput
from similarity.models import QueryOptions
from similarity.service import SimilarityService

CSV_HEADERS = [
    "query",
    "ranking",
    "rank",
    "name",
    "jaccard",
    "sharedDependents",
    "source",
    "strategy",
]


def load_pkgs_file(file_name):
    """Loads the packages from a file.

    Blank lines and ``#`` comments are skipped.

    Args:
        file_name (str): File path containing the list of packages.

    Returns:
        list: List of packages
    """
    try:
        with open(file_name, encoding='utf-8') as file:
            lines = [line.strip() for line in file]
    except FileNotFoundError as e:
        logging.error("File not found: %s, aborting", e)
        sys.exit(ExitCodes.FILE_ERROR.value)
    except IOError as e:
        logging.error("IO error: %s, aborting", e)
        sys.exit(ExitCodes.FILE_ERROR.value)
    return [line for line in lines if line and not line.startswith("#")]


def build_pkglist(args):
    """Package names from CLI inputs, de-duplicated by normalized name."""
    if args.LIST_FROM_FILE:
        tokens = load_pkgs_file(args.LIST_FROM_FILE)
    else:
        tokens = [tok.strip() for tok in args.SINGLE or [] if tok and tok.strip()]
    seen = {}
    for tok in tokens:
        seen.setdefault(normalize_name(tok), tok)
    return list(seen.values())


def build_query_options(args):
    return QueryOptions(
        restrict_to_peer_group=bool(getattr(args, "PEER_GROUP", False)),
        max_dependents_to_scan=getattr(args, "MAX_DEPENDENTS", None),
        max_live_candidates=getattr(args, "MAX_LIVE_CANDIDATES", None),
        top_search_limit=getattr(args, "TOP_SEARCH_LIMIT", None),
    )


def resolve_output_format(args):
    """Explicit ``--format`` wins, then the ``--output`` extension, then json."""
    if getattr(args, "OUTPUT_FORMAT", None):
        return args.OUTPUT_FORMAT.lower()
    lower = (getattr(args, "OUTPUT", None) or "").lower()
    if lower.endswith(".csv"):
        return "csv"
    return "json"


async def run_queries(args, pkglist, config, data_dir):
    """Compute the requested rankings for every package.

    Returns:
        dict: normalized name -> ``{"similar": RankedResult, "cooccur": RankedResult}``
        (only the keys the mode asks for).
    """
    store = IndexStore.from_data_dir(data_dir, popular_url=getattr(args, "POPULAR_URL", None))
    options = build_query_options(args)
    use_cache = not getattr(args, "NO_CACHE", False)
    mode = getattr(args, "MODE", Modes.BOTH.value)
    results = {}
    async with PyPIDataSource(config.fetch) as data_source:
        engine = SimilarityEngine(store, data_source, config)
        service = SimilarityService(engine)
        for pkg in pkglist:
            name = normalize_name(pkg)
            if mode == Modes.BOTH.value:
                found = await service.lookup(pkg, args.LIMIT, use_cache=use_cache, options=options)
                results[name] = {"similar": found.similar, "cooccur": found.cooccur}
            elif mode == Modes.SIMILAR.value and getattr(args, "PEER_ONLY", False):
                ranked = await engine.compute_similar_peer_only(pkg, args.LIMIT)
                results[name] = {"similar": ranked}
            elif mode == Modes.SIMILAR.value:
                ranked = await service.similar(
                    pkg, args.LIMIT, use_precomputed=use_cache,
                    initial=service.initial_options(options),
                )
                results[name] = {"similar": ranked}
            else:
                ranked = await engine.compute_cooccurrence(pkg, args.LIMIT, options)
                results[name] = {"cooccur": ranked}
    return results


def print_results(results):
    for query, rankings in results.items():
        for ranking, ranked in rankings.items():
            print(f"{query} [{ranking}] strategy={ranked.strategy.value} base={ranked.base_size}")
            if not ranked:
                print("  (no results)")
            for rank, item in enumerate(ranked, start=1):
                print(
                    f"  {rank:>3}. {item.name:<40} {item.jaccard:.4f}"
                    f"  shared={item.shared_count}  {item.source.value}"
                )


def export_csv(results, path):
    """Exports the rankings to a CSV file, one row per ranked entry.

    Args:
        results (dict): Output of ``run_queries``.
        path (str): File path to export the CSV.
    """
    rows = [CSV_HEADERS]
    for query, rankings in results.items():
        for ranking, ranked in rankings.items():
            for rank, item in enumerate(ranked, start=1):
                rows.append([
                    query,
                    ranking,
                    rank,
                    item.name,
                    item.jaccard,
                    item.shared_count,
                    item.source.value,
                    ranked.strategy.value,
                ])
    try:
        with open(path, 'w', newline='', encoding='utf-8') as file:
            export = csv.writer(file)
            export.writerows(rows)
        logging.info("CSV file has been successfully exported at: %s", path)
    except (OSError, csv.Error) as e:
        logging.error("CSV file couldn't be written to disk: %s", e)
        sys.exit(1)


def export_json(results, path):
    """Exports the rankings to a JSON file.

    Args:
        results (dict): Output of ``run_queries``.
        path (str): File path to export the JSON.
    """
    data = []
    for query, rankings in results.items():
        entry = {"package": query}
        for ranking, ranked in rankings.items():
            entry[ranking] = ranked.to_dict()
        data.append(entry)
    try:
        with open(path, 'w', encoding='utf-8') as file:
            json.dump(data, file, ensure_ascii=False, indent=4)
        logging.info("JSON file has been successfully exported at: %s", path)
    except OSError as e:
        logging.error("JSON file couldn't be written to disk: %s", e)
        sys.exit(1)


def _setup_logging(args):
    # Honor CLI --loglevel by passing it to centralized logger via env
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()
    configure_logging()
    logging.getLogger().setLevel(getattr(logging, str(args.LOG_LEVEL).upper(), logging.INFO))
    if getattr(args, "LOG_FILE", None):
        handler = logging.FileHandler(args.LOG_FILE, encoding="utf-8")
        handler.setFormatter(logging.Formatter(Constants.LOG_FILE_FORMAT))
        logging.getLogger().addHandler(handler)


def main(argv=None):
    """Main function of the program."""
    logger = logging.getLogger(__name__)

    args = parse_args(argv)
    _setup_logging(args)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action="main")
        )

    if args.LIMIT > Constants.MAX_LIMIT:
        logging.warning("Limit %d exceeds maximum, using %d", args.LIMIT, Constants.MAX_LIMIT)
        args.LIMIT = Constants.MAX_LIMIT

    pkglist = build_pkglist(args)
    if not pkglist:
        logging.warning("No packages found in the input list.")
        sys.exit(ExitCodes.SUCCESS.value)
    for pkg in pkglist:
        try:
            SimilarityEngine.validate(pkg, args.LIMIT)
        except InvalidInput as e:
            logging.error("%s", e)
            sys.exit(ExitCodes.INVALID_INPUT.value)
    logging.info("Package list imported: %s", str(pkglist))

    config = build_engine_config(args)
    data_dir = resolve_data_dir(args)
    try:
        results = asyncio.run(run_queries(args, pkglist, config, data_dir))
    except InvalidInput as e:
        logging.error("%s", e)
        sys.exit(ExitCodes.INVALID_INPUT.value)

    if not getattr(args, "QUIET", False):
        print_results(results)

    if getattr(args, "OUTPUT", None):
        if resolve_output_format(args) == "csv":
            export_csv(results, args.OUTPUT)
        else:
            export_json(results, args.OUTPUT)

    empty = [
        f"{query}/{ranking}"
        for query, rankings in results.items()
        for ranking, ranked in rankings.items()
        if not ranked
    ]
    if empty:
        logging.warning("Empty rankings: %s", ", ".join(empty))
        if args.ERROR_ON_EMPTY:
            logging.error("Empty rankings present, exiting with non-zero status code.")
            sys.exit(ExitCodes.EXIT_WARNINGS.value)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI finished",
            extra=extra_context(event="function_exit", component="cli", action="main", outcome="success")
        )
    sys.exit(ExitCodes.SUCCESS.value)


if __name__ == "__main__":
    main()
