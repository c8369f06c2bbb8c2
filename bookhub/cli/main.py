"""Console-script entry point for bookhub."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Optional, Sequence, TypeVar

from bookhub import logging_manager as log_mgr
from bookhub.config_manager import apply_settings_updates, load_configuration
from bookhub.services.metadata import (
    BookDataOrchestrator,
    ValidationError,
    create_orchestrator,
)

from .args import parse_cli_args

logger = log_mgr.get_logger().getChild("cli")

T = TypeVar("T")


def run_sync(awaitable: Awaitable[T]) -> T:
    """Block on ``awaitable``; only for entry points without a running loop."""

    async def _runner() -> T:
        return await awaitable

    return asyncio.run(_runner())


async def _dispatch(orchestrator: BookDataOrchestrator, args: argparse.Namespace) -> Any:
    try:
        if args.command == "lookup":
            book = await orchestrator.resolve_by_id(args.book_id)
            return book.to_dict() if book else None
        if args.command == "isbn":
            return [book.to_dict() for book in await orchestrator.resolve_by_isbn(args.isbn)]
        if args.command == "search":
            books = await orchestrator.search(
                args.query, args.start_index, args.max_results, args.language
            )
            return [book.to_dict() for book in books]
        if args.command == "similar":
            books = await orchestrator.get_similar(args.book_id, args.count)
            return [book.to_dict() for book in books]
        if args.command == "bestsellers":
            books = await orchestrator.ingest_bestseller_list(args.list_code)
            return [book.to_dict() for book in books]
        if args.command == "warm":
            return await orchestrator.warm(args.book_ids, concurrency=args.concurrency)
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await orchestrator.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the bookhub CLI and print the result as JSON."""

    args = parse_cli_args(argv)
    settings = load_configuration(args.config)
    updates: dict[str, Any] = {}
    if args.cache_dir:
        updates["cache_dir"] = args.cache_dir
    if args.no_fallback:
        updates["external_fallback_enabled"] = False
    if args.debug:
        updates["debug"] = True
    settings = apply_settings_updates(settings, updates)
    log_mgr.setup_logging(
        logging.DEBUG if settings.debug else logging.INFO, log_dir=settings.log_dir
    )

    orchestrator = create_orchestrator(settings)
    try:
        result = run_sync(_dispatch(orchestrator, args))
    except ValidationError as exc:
        print(f"Invalid input: {exc}", file=sys.stderr)
        return 2
    if result is None or result == []:
        print("No books found.", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    return 0


if __name__ == "__main__":  # pragma: no cover - manual execution
    sys.exit(main())
