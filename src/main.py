"""
Compare two family trees by wave propagation from an anchor pair.

1) Load both GEDCOM files into tree indexes.
2) Sanity-check both trees for cycles and impossible ages.
3) Propagate matches ring by ring from the anchor pair.
4) Print a summary, then write the report, the detailed log and the SQLite run.
5) Persist interactive decisions to the confirmed mappings file.
"""

import argparse
import json
from pathlib import Path
import sys
import threading
from concurrent.futures import ThreadPoolExecutor

from loguru import logger

from config import get_config, setup_logging
from database import create_database, store_result
from engine import WaveEngine
from graph import TreeGraph, to_person_graph
from interactive import ConsoleConfirmation
from matcher import FuzzyMatcher
from models import ThresholdStrategy, WaveCompareResult, WaveError, WaveState
from names import NameVariants
from parsing import load_tree
from report import build_report
from store import ConfirmedMappingsStore
from validation import MappingValidator, validate_tree
from wave_log import format_level_summary, format_log, format_unmatched


EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


# ============================================================================
# Arguments
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gedwave",
        description="Match the persons of two GEDCOM trees starting from one known pair.",
    )
    parser.add_argument("source", type=Path, help="Source GEDCOM file")
    parser.add_argument("dest", type=Path, help="Destination GEDCOM file")
    parser.add_argument("--anchor-source", required=True, help="Anchor person id in the source tree")
    parser.add_argument("--anchor-dest", required=True, help="Anchor person id in the destination tree")
    parser.add_argument("--max-level", type=int, help="Maximum ring distance from the anchor")
    parser.add_argument(
        "--strategy",
        choices=[s.value.lower() for s in ThresholdStrategy],
        help="Threshold strategy",
    )
    parser.add_argument("--threshold", type=int, help="Base threshold for the fixed strategy")
    parser.add_argument("--interactive", action="store_true", default=None, help="Ask about uncertain matches")
    parser.add_argument("--confirmed-mappings", type=Path, help="JSON file of earlier decisions")
    parser.add_argument("--report", type=Path, help="Write the high-confidence report as JSON")
    parser.add_argument("--log", type=Path, help="Write the detailed text log")
    parser.add_argument("--db", type=Path, help="Store the run in a SQLite database")
    parser.add_argument("--state", type=Path, help="Resume from / save a cancelled run to this file")
    parser.add_argument("--resolve-conflicts", action="store_true", default=None, help="Reassign ambiguous mappings")
    parser.add_argument("--given-variants", type=Path, help="CSV of extra given name variant groups")
    parser.add_argument("--surname-variants", type=Path, help="CSV of extra surname variant groups")
    parser.add_argument("--log-level", help="Console and file log level")
    return parser


# ============================================================================
# Output
# ============================================================================


def print_summary(result: WaveCompareResult) -> None:
    stats = result.statistics
    print(f"  Anchor: {result.anchors.source_summary} <-> {result.anchors.destination_summary}")
    print(f"  Mappings: {stats.total_mappings} of {stats.total_source_persons} source persons")
    print(f"  Unmatched: {stats.unmatched_source_count} source, {stats.unmatched_destination_count} destination")
    print(format_level_summary(result.level_statistics))

    if result.validation_issues:
        print(f"  Found {len(result.validation_issues)} validation issues:")
        for issue in result.validation_issues[:10]:  # Show first 10 issues
            print(f"    - [{issue.severity.value}] {issue.type.value}: {issue.message}")
        if len(result.validation_issues) > 10:
            print(f"    ... and {len(result.validation_issues) - 10} more")
    else:
        print("  No validation issues found")

    if result.unmatched_source:
        print("  Unmatched source persons:")
        print(format_unmatched(result.unmatched_source, limit=10))


def check_tree(label: str, tree: TreeGraph) -> None:
    warnings = validate_tree(to_person_graph(tree))
    dangling = tree.dangling_references()
    if dangling:
        warnings.append(f"{len(dangling)} family references to unknown persons")
    if warnings:
        print(f"  {label}: {len(warnings)} warnings")
        for w in warnings[:5]:
            print(f"    - {w}")
    else:
        print(f"  {label}: no issues found")


def write_outputs(args, result: WaveCompareResult, engine: WaveEngine, source: TreeGraph, dest: TreeGraph) -> None:
    config = get_config()

    if args.report:
        report = build_report(result, source, dest, config.report_threshold, config.report_depth)
        with open(args.report, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2, ensure_ascii=False)
        print(f"Report saved to {args.report}")

    if args.log and engine.last_log is not None:
        args.log.write_text(format_log(engine.last_log), encoding="utf-8")
        print(f"Log saved to {args.log}")

    if args.db:
        conn = create_database(args.db)
        try:
            run_id = store_result(conn, result)
        finally:
            conn.close()
        print(f"Run {run_id} stored in {args.db}")

    if args.confirmed_mappings and result.decisions:
        ConfirmedMappingsStore.record_decisions(
            args.confirmed_mappings, result.decisions, result.source_file, result.destination_file
        )
        print(f"{len(result.decisions)} decisions saved to {args.confirmed_mappings}")

    if args.state:
        if result.pending is not None:
            args.state.write_text(json.dumps(result.pending.to_dict(), indent=2), encoding="utf-8")
            print(f"Pending state saved to {args.state}")
        elif args.state.exists():
            args.state.unlink()


# ============================================================================
# Main
# ============================================================================


def run(args) -> int:
    config = get_config()
    setup_logging(args.log_level or config.log_level, config.log_file)

    options = config.wave_options(
        max_level=args.max_level,
        threshold_strategy=ThresholdStrategy[args.strategy.upper()] if args.strategy else None,
        base_threshold=args.threshold,
        interactive=args.interactive,
        resolve_conflicts=args.resolve_conflicts,
    )

    print(f"Loading source tree: {args.source}")
    source = load_tree(args.source)
    print(f"  Found {len(source)} persons and {len(source.families_by_id)} families")
    print(f"Loading destination tree: {args.dest}")
    dest = load_tree(args.dest)
    print(f"  Found {len(dest)} persons and {len(dest.families_by_id)} families")

    print("Validating trees...")
    check_tree("Source", source)
    check_tree("Destination", dest)

    variants = NameVariants.from_csv(args.given_variants, args.surname_variants)
    matcher = FuzzyMatcher(variants, config.matching_options())
    matcher.bind_persons(source.persons_by_id, dest.persons_by_id)
    confirmed = ConfirmedMappingsStore.load(args.confirmed_mappings)
    engine = WaveEngine(
        matcher,
        MappingValidator(suspicious_score=options.suspicious_score),
        confirmation=ConsoleConfirmation() if options.interactive else None,
        store_decisions=ConfirmedMappingsStore.decisions(confirmed),
    )

    stop = threading.Event()
    print(f"Comparing from anchor {args.anchor_source} <-> {args.anchor_dest} (max level {options.max_level})...")
    compare_args = (source, dest, args.anchor_source, args.anchor_dest, options)
    compare_kwargs = {"cancel": stop.is_set, "source_file": str(args.source), "destination_file": str(args.dest)}
    with ThreadPoolExecutor(max_workers=1) as executor:
        if args.state and args.state.exists():
            state = WaveState.from_dict(json.loads(args.state.read_text(encoding="utf-8")))
            print(f"  Resuming from {args.state}")
            future = executor.submit(engine.resume, state, *compare_args, **compare_kwargs)
        else:
            future = executor.submit(engine.compare, *compare_args, **compare_kwargs)
        try:
            result = future.result()
        except KeyboardInterrupt:
            stop.set()
            print("  Interrupted, finishing the current level...")
            result = future.result()

    print_summary(result)
    write_outputs(args, result, engine, source, dest)

    if result.is_partial:
        print("Compare was cancelled, results are partial")
        return EXIT_PARTIAL
    print("Done!")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except WaveError as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
