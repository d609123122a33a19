"""CLI entrypoint: search DBLP, add records to a bibliography, convert formats."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from bib_file import (
    Format,
    append_record,
    conversion_blocked,
    convert_file,
    encode,
    find_unique_bib,
    read_records,
    record_already_exists,
)
from dblp_feed import bib_url, search_records
from models import DecodeReport, MatchResult
from ranker import RankConfig, rank


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(
        prog="dblp-bib",
        description="Search DBLP and manage a bibliography in condensed or standard format",
    )
    parser.add_argument(
        "-b",
        "--bibtex",
        metavar="FILE",
        default=None,
        help="Bibliography file (default: the only *.bib file in the current directory)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "WARNING"),
        help="Logging level (default: LOG_LEVEL env var or WARNING)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Search DBLP and print ranked matches")
    _add_ranking_args(search)
    search.add_argument(
        "--format",
        choices=[f.value for f in Format],
        default=None,
        help="Print matches encoded in this format instead of a summary",
    )

    add = sub.add_parser("add", help="Search DBLP and append the chosen match to the bibliography")
    _add_ranking_args(add)
    add.add_argument("--pick", type=int, default=1, help="1-based position of the match to add (default: 1)")
    add.add_argument(
        "--format",
        choices=[f.value for f in Format],
        default=None,
        help="Encoding for the new record (default: the file's current format)",
    )

    convert = sub.add_parser("convert", help="Rewrite the bibliography in another format")
    convert.add_argument("--to", required=True, choices=[f.value for f in Format])
    convert.add_argument(
        "--skip-invalid",
        action="store_true",
        help="Drop records that fail to decode instead of aborting (they stay in the backup)",
    )
    convert.add_argument(
        "--drop-extra-fields",
        action="store_true",
        help="Convert entries even if fields such as pages or doi are lost (they stay in the backup)",
    )

    local = sub.add_parser("rank", help="Rank the records of a local file against a query")
    _add_ranking_args(local, with_hits=False)
    local.add_argument("--input", required=True, metavar="FILE", help="Condensed or standard file to search")

    return parser.parse_args(argv)


def _add_ranking_args(parser: argparse.ArgumentParser, with_hits: bool = True) -> None:
    parser.add_argument("query", nargs="+", help="Free-text author/title query")
    parser.add_argument("--limit", type=int, default=10, help="Maximum number of results (default: 10)")
    parser.add_argument(
        "--threshold",
        type=float,
        default=float(os.getenv("DBLP_MIN_SCORE", "0.0")),
        help="Minimum match score in [0, 1] (default: DBLP_MIN_SCORE env var or 0.0)",
    )
    if with_hits:
        parser.add_argument(
            "--max-hits",
            type=int,
            default=None,
            help="Hits requested from DBLP (default: DBLP_MAX_HITS env var or 30)",
        )


def _rank_config(args: argparse.Namespace) -> RankConfig:
    workers = int(os.getenv("DBLP_RANK_WORKERS", "1"))
    return RankConfig(threshold=args.threshold, limit=args.limit, workers=workers)


def _resolve_bib_path(args: argparse.Namespace) -> Path | None:
    if args.bibtex:
        return Path(args.bibtex)
    return find_unique_bib(Path.cwd())


def _print_results(results: list[MatchResult], fmt: Format | None) -> None:
    if fmt is not None:
        separator = "\n" if fmt is Format.CONDENSED else "\n\n"
        print(separator.join(encode(result.record, fmt) for result in results))
        return

    for position, result in enumerate(results, start=1):
        record = result.record
        details = " ".join(str(part) for part in (record.venue, record.year) if part)
        print(f"{position:>2}. [{result.score:.2f}] {record.title}")
        if record.authors:
            print(f"    {', '.join(record.authors)}")
        if details:
            print(f"    {details}")
        url = bib_url(record)
        if url:
            print(f"    {url}")


def _report_failures(report: DecodeReport) -> None:
    for failure in report.failures:
        logging.error("Line %s: %s\n%s", failure.line, failure.error, failure.raw)


def _fetch_and_rank(args: argparse.Namespace) -> list[MatchResult] | None:
    query = " ".join(args.query)
    fetched = search_records(query, max_hits=args.max_hits)
    if fetched.error:
        logging.error("DBLP search failed: %s", fetched.error)
        return None
    results = rank(query, fetched.records, _rank_config(args))
    logging.info("Query %r: fetched=%s ranked=%s", query, len(fetched.records), len(results))
    return results


def run_search(args: argparse.Namespace) -> int:
    results = _fetch_and_rank(args)
    if results is None:
        return 1
    if not results:
        print("No matches.")
        return 0
    _print_results(results, Format(args.format) if args.format else None)
    return 0


def run_add(args: argparse.Namespace) -> int:
    bib_path = _resolve_bib_path(args)
    if bib_path is None:
        logging.error("Missing bibliography file: pass --bibtex or keep exactly one *.bib here")
        return 1

    results = _fetch_and_rank(args)
    if results is None:
        return 1
    if not 1 <= args.pick <= len(results):
        logging.error("No match at position %s (%s available)", args.pick, len(results))
        return 1

    record = results[args.pick - 1].record
    if record_already_exists(bib_path, record):
        logging.info("Skipping existing key=%s in %s", record.identifier, bib_path)
        print(f"Already present: {record.identifier}")
        return 0

    append_record(bib_path, record, Format(args.format) if args.format else None)
    print(f"Added: {record.identifier or record.title}")
    return 0


def run_convert(args: argparse.Namespace) -> int:
    bib_path = _resolve_bib_path(args)
    if bib_path is None:
        logging.error("Missing bibliography file: pass --bibtex or keep exactly one *.bib here")
        return 1

    report = convert_file(
        bib_path,
        Format(args.to),
        skip_invalid=args.skip_invalid,
        drop_extra_fields=args.drop_extra_fields,
    )
    _report_failures(report)
    if conversion_blocked(report, args.skip_invalid):
        return 1
    print(f"Converted {len(report.records)} record(s) to {args.to}")
    return 0


def run_rank(args: argparse.Namespace) -> int:
    report = read_records(args.input)
    _report_failures(report)
    results = rank(" ".join(args.query), report.records, _rank_config(args))
    if not results:
        print("No matches.")
        return 0
    _print_results(results, None)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Initialize config and dispatch the chosen command."""
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    handlers = {
        "search": run_search,
        "add": run_add,
        "convert": run_convert,
        "rank": run_rank,
    }
    try:
        return handlers[args.command](args)
    except (OSError, ValueError) as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
