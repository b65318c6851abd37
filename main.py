"""CLI entrypoint for the research paper workspace."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import Any

from dotenv import load_dotenv

from analysis_client import AnalysisServiceError
from data_store import DataStore
from local_store import LocalStorageError
from ranker import COMPLEXITY_BUCKETS, DATE_RANGES, SORT_OPTIONS, SearchFilters, describe_result, perform_search
from remote_store import RemoteStoreError
from workflow import (
    PaperNotFoundError,
    TextExtractionError,
    generate_code_for_paper,
    generate_visualization_for_paper,
    summarize_paper,
    upload_paper,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Analyze, store and search research papers")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("whoami", help="Print the current user id and storage mode")
    sub.add_parser("papers", help="List papers visible in the current storage mode")
    sub.add_parser("sign-out", help="Sign out (clears the guest session in local mode)")

    upload = sub.add_parser("upload", help="Analyze and store a plain-text paper")
    upload.add_argument("path")
    upload.add_argument("--title", default=None)

    summarize = sub.add_parser("summarize", help="Get or generate an age-targeted summary")
    summarize.add_argument("paper_id")
    summarize.add_argument("--age", type=int, required=True)

    code = sub.add_parser("code", help="Generate an implementation of the paper's methods")
    code.add_argument("paper_id")
    code.add_argument("--language", default="python")
    code.add_argument("--framework", default="numpy")

    visualize = sub.add_parser("visualize", help="Generate a visualization config")
    visualize.add_argument("paper_id")
    visualize.add_argument("--type", dest="visualization_type", default="infographic")

    visualizations = sub.add_parser("visualizations", help="List stored visualizations for a paper")
    visualizations.add_argument("paper_id")

    search = sub.add_parser("search", help="Rank stored papers against a query")
    search.add_argument("query")
    search.add_argument("--date-range", choices=sorted(DATE_RANGES), default="all")
    search.add_argument("--complexity", action="append", choices=COMPLEXITY_BUCKETS, default=[])
    search.add_argument("--domain", action="append", default=[])
    search.add_argument("--sort", choices=sorted(SORT_OPTIONS), default="relevance")

    return parser.parse_args(argv)


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2, default=str, ensure_ascii=False))


def run(args: argparse.Namespace, store: DataStore) -> None:
    """Dispatch one sub-command against the data store."""
    if args.command == "whoami":
        backend = store.resolve_backend()
        _print_json({"user_id": backend.user_id, "mode": backend.mode})
    elif args.command == "papers":
        papers = store.get_papers()
        logging.info("Listing %s papers", len(papers))
        for paper in papers:
            print(f"{paper.id}\t{paper.created_at or ''}\t{paper.title}")
    elif args.command == "upload":
        paper = upload_paper(store, args.path, title=args.title)
        _print_json(paper.to_dict())
    elif args.command == "summarize":
        _print_json(summarize_paper(store, args.paper_id, args.age))
    elif args.command == "code":
        _print_json(asdict(generate_code_for_paper(store, args.paper_id, args.language, args.framework)))
    elif args.command == "visualize":
        _print_json(asdict(generate_visualization_for_paper(store, args.paper_id, args.visualization_type)))
    elif args.command == "visualizations":
        _print_json([asdict(v) for v in store.get_visualizations(args.paper_id)])
    elif args.command == "search":
        filters = SearchFilters(
            date_range=args.date_range,
            complexity=frozenset(args.complexity),
            domains=frozenset(args.domain),
            sort_by=args.sort,
        )
        results = perform_search(args.query, store, filters)
        logging.info("Search returned %s results", len(results))
        _print_json([describe_result(r) for r in results])
    elif args.command == "sign-out":
        store.sign_out()
        print("Signed out.")


def main(argv: list[str] | None = None) -> int:
    """Initialize config and execute one command."""
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    try:
        run(args, DataStore.from_env())
    except (
        AnalysisServiceError,
        LocalStorageError,
        PaperNotFoundError,
        RemoteStoreError,
        TextExtractionError,
    ) as exc:
        logging.error("%s failed: %s", args.command, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
