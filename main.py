"""CLI entrypoint for building citation graphs from OpenAlex."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from graph_builder import (
    GraphBuildError,
    build_author_graph,
    build_graph,
    hydrate_metadata,
)
from models import BuildProgress, BuildResult
from openalex_client import OpenAlexClient
from slim_cache import from_slim_cache, read_slim_cache, to_slim_cache, write_slim_cache


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Build a ranked citation graph around a paper or an author")
    parser.add_argument("identifier", help="OpenAlex id or URL, DOI, search text, or a slim cache path (hydrate)")
    parser.add_argument(
        "--mode",
        choices=["paper", "author", "search", "hydrate"],
        default="paper",
        help=(
            "'paper' (default): build the root/branch graph around a work. "
            "'author': graph of an author's works. "
            "'search': autocomplete works by text or DOI. "
            "'hydrate': fetch full metadata for every node of a slim cache file."
        ),
    )
    parser.add_argument("--n-roots", type=int, default=None, help="Root papers to keep (env GRAPH_N_ROOTS, 25)")
    parser.add_argument("--n-branches", type=int, default=None, help="Branch papers to keep (env GRAPH_N_BRANCHES, 25)")
    parser.add_argument(
        "--branch-seeds-limit",
        type=int,
        default=None,
        help="Maximum number of citing works used as branch seeds (env GRAPH_BRANCH_SEEDS_LIMIT, 200)",
    )
    parser.add_argument("--max-works", type=int, default=None, help="Author mode: works to fetch (env AUTHOR_MAX_WORKS, 100)")
    parser.add_argument("--output", type=Path, default=None, help="Write JSON here instead of stdout")
    parser.add_argument("--slim-cache", type=Path, default=None, help="Also write the slim cache form to this path")
    return parser.parse_args(argv)


def _log_progress(progress: BuildProgress) -> None:
    logging.info(
        "Progress %s%% (%s/%s): %s",
        progress.percent,
        progress.completed,
        progress.total,
        progress.message,
    )


def result_to_dict(result: BuildResult) -> dict[str, Any]:
    """JSON-ready view of a build result."""
    return asdict(result)


def _emit(payload: Any, output: Path | None) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    if output is None:
        sys.stdout.write(text + "\n")
        return
    output.write_text(text, encoding="utf-8")
    logging.info("Wrote %s", output)


def run(args: argparse.Namespace) -> None:
    """Execute one CLI request."""
    client = OpenAlexClient()

    if args.mode == "search":
        results = client.fetch_autocomplete(args.identifier)
        logging.info("Search: query=%r results=%s", args.identifier, len(results))
        _emit([asdict(result) for result in results], args.output)
        return

    if args.mode == "hydrate":
        nodes = from_slim_cache(read_slim_cache(args.identifier))
        metadata = hydrate_metadata(
            [node.id for node in nodes],
            on_progress=lambda done, total: logging.info("Hydrating %s/%s chunks", done, total),
            client=client,
        )
        _emit({paper_id: asdict(paper) for paper_id, paper in metadata.items()}, args.output)
        return

    if args.mode == "author":
        result = build_author_graph(
            args.identifier,
            max_works=args.max_works,
            on_progress=_log_progress,
            client=client,
        )
    else:
        result = build_graph(
            args.identifier,
            n_roots=args.n_roots,
            n_branches=args.n_branches,
            branch_seeds_limit=args.branch_seeds_limit,
            on_progress=_log_progress,
            client=client,
        )

    _emit(result_to_dict(result), args.output)

    if args.slim_cache is not None:
        cache = to_slim_cache(
            result.nodes,
            graph_type=result.metadata.graph_type,
            author_id=result.metadata.author_id,
        )
        write_slim_cache(args.slim_cache, cache)


def main(argv: list[str] | None = None) -> int:
    """Initialize config and execute the CLI."""
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    args = parse_args(argv)

    try:
        run(args)
    except GraphBuildError as exc:
        logging.error("Build failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
