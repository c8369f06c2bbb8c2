"""Argument parsing helpers for the bookhub CLI."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence


def _add_shared_arguments(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    parser.add_argument(
        "--config",
        default=None,
        help=(
            "Path to a configuration override JSON file (defaults to conf/config.local.json "
            "if present)."
        ),
    )
    parser.add_argument("--cache-dir", help="Override the disk cache directory.")
    parser.add_argument(
        "--no-fallback",
        action="store_true",
        help="Disable OpenLibrary fallback and enrichment.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging output.")
    return parser


def build_cli_parser() -> argparse.ArgumentParser:
    """Build the CLI parser with one sub-command per lookup operation."""

    parser = argparse.ArgumentParser(
        prog="bookhub", description="bookhub book lookup", allow_abbrev=False
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    lookup_parser = subparsers.add_parser("lookup", help="Resolve a book by id", allow_abbrev=False)
    lookup_parser.add_argument("book_id", help="Provider or canonical book id.")
    _add_shared_arguments(lookup_parser)

    isbn_parser = subparsers.add_parser(
        "isbn", help="Resolve every edition matching an ISBN", allow_abbrev=False
    )
    isbn_parser.add_argument("isbn", help="ISBN-10 or ISBN-13, hyphens allowed.")
    _add_shared_arguments(isbn_parser)

    search_parser = subparsers.add_parser("search", help="Search for books", allow_abbrev=False)
    search_parser.add_argument("query", help="Search query; field:value qualifiers allowed.")
    search_parser.add_argument("--start-index", type=int, default=0, help="Offset of the first result.")
    search_parser.add_argument(
        "--max-results", type=int, default=20, help="Number of results to return."
    )
    search_parser.add_argument("--language", help="Restrict results to a language code.")
    _add_shared_arguments(search_parser)

    similar_parser = subparsers.add_parser(
        "similar", help="List books similar to a book", allow_abbrev=False
    )
    similar_parser.add_argument("book_id", help="Provider or canonical book id.")
    similar_parser.add_argument("--count", type=int, default=5, help="Number of books to return.")
    _add_shared_arguments(similar_parser)

    bestseller_parser = subparsers.add_parser(
        "bestsellers", help="Ingest a bestseller list", allow_abbrev=False
    )
    bestseller_parser.add_argument("list_code", help="List name, e.g. hardcover-fiction.")
    _add_shared_arguments(bestseller_parser)

    warm_parser = subparsers.add_parser(
        "warm", help="Resolve a batch of ids to warm the caches", allow_abbrev=False
    )
    warm_parser.add_argument("book_ids", nargs="+", help="Ids to resolve.")
    warm_parser.add_argument(
        "--concurrency", type=int, default=4, help="Maximum concurrent resolutions."
    )
    _add_shared_arguments(warm_parser)

    return parser


def parse_cli_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_cli_parser().parse_args(argv)


__all__ = ["build_cli_parser", "parse_cli_args"]
