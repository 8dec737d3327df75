"""Build citation graphs around a source paper or an author.

The paper pipeline runs strictly stage after stage:

1. resolve and fetch the source (the only fatal step)
2. expand roots: the source's references, then their references
3. rank roots and keep the top ``n_roots``
4. fetch works citing the source (branch seeds)
5. keep references shared by at least two branch seeds (branch candidates)
6. rank branches and keep the top ``n_branches``
7. re-fetch every kept paper in the full projection
8. assemble nodes and edges and summarize the build
"""

from __future__ import annotations

import logging
import math
import os
import queue
import threading
import time
from collections import Counter
from dataclasses import replace
from datetime import UTC, datetime
from typing import Callable, Iterable

from graph_assembly import assemble, assemble_author_graph
from identifiers import normalize_id, resolve_work_id
from models import BuildProgress, BuildResult, GraphMetadata, Paper, SlimPaper
from openalex_client import OpenAlexClient
from ranking import compute_branch_ranks, compute_root_ranks, get_top_ranked

DEFAULT_N_ROOTS = 25
DEFAULT_N_BRANCHES = 25
DEFAULT_BRANCH_SEEDS_LIMIT = 200
DEFAULT_AUTHOR_WORKS_LIMIT = 100
MIN_BRANCH_REF_FREQUENCY = 2
# Rough number of references per root seed, used before the real count is known
ROOT_EXPANSION_FACTOR = 25

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[BuildProgress], None]


class GraphBuildError(RuntimeError):
    """The build could not produce a graph (unresolvable source or author)."""


class BuildCancelledError(GraphBuildError):
    """The caller cancelled the build before it finished."""


class ProgressChannel:
    """Unbounded progress queue usable as an ``on_progress`` callback.

    Publishing never blocks, so a slow consumer cannot stall the build;
    consumers call :meth:`drain` whenever they like.
    """

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[BuildProgress] = queue.SimpleQueue()

    def __call__(self, progress: BuildProgress) -> None:
        self._queue.put_nowait(progress)

    def drain(self) -> list[BuildProgress]:
        events: list[BuildProgress] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


class ProgressTracker:
    """Approximate progress in remote calls.

    ``total`` is an estimate that is revised as stages learn real sizes.
    ``completed`` never decreases and stays below ``total`` until
    :meth:`finish`, which is the only place they become equal.
    """

    def __init__(self, on_progress: ProgressCallback | None = None, total: int = 1) -> None:
        self.on_progress = on_progress
        self.completed = 0
        self.total = max(1, total)
        self.finished = False

    @property
    def percent(self) -> int:
        return max(0, min(100, round(self.completed / self.total * 100)))

    def set_total(self, total: int) -> None:
        self.total = max(total, self.completed + 1)

    def set_remaining(self, remaining: int) -> None:
        self.set_total(self.completed + remaining)

    def advance(self, count: int = 1) -> None:
        self.completed += max(0, count)
        if self.completed >= self.total:
            self.total = self.completed + 1

    def report(self, message: str) -> None:
        LOGGER.debug("Progress %s/%s: %s", self.completed, self.total, message)
        if self.on_progress is None:
            return
        progress = BuildProgress(
            message=message,
            percent=self.percent,
            completed=self.completed,
            total=self.total,
        )
        try:
            self.on_progress(progress)
        except Exception as exc:  # progress is best-effort, never fatal to the build
            LOGGER.warning("Progress callback failed (ignored): %s", exc)

    def batch_callback(self, message: str) -> Callable[[], None]:
        def on_batch_complete() -> None:
            self.advance()
            self.report(message)

        return on_batch_complete

    def finish(self, message: str) -> None:
        self.completed = self.total
        self.finished = True
        self.report(message)


def _setting(value: int | None, env_name: str, default: int) -> int:
    """Explicit argument, else the environment variable, else *default*."""
    if value is not None:
        return value
    return int(os.getenv(env_name, str(default)))


def _check_cancelled(cancel_event: threading.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        LOGGER.info("Build cancelled before stage: %s", stage)
        raise BuildCancelledError(f"Build cancelled before {stage}")


def _batches(count: int, size: int) -> int:
    return math.ceil(count / size) if count > 0 else 0


def _keep_after(papers: dict[str, SlimPaper], min_year: int) -> dict[str, SlimPaper]:
    """Drop papers published before *min_year* or never cited."""
    return {
        paper_id: paper
        for paper_id, paper in papers.items()
        if paper.citation_count > 0 and paper.year >= min_year
    }


def build_graph(
    source_identifier: str,
    *,
    n_roots: int | None = None,
    n_branches: int | None = None,
    branch_seeds_limit: int | None = None,
    on_progress: ProgressCallback | None = None,
    client: OpenAlexClient | None = None,
    cancel_event: threading.Event | None = None,
    current_year: int | None = None,
) -> BuildResult:
    """Build the ranked citation graph around one source work.

    Args:
        source_identifier: OpenAlex id, OpenAlex URL, DOI or DOI URL.
        n_roots: Root candidates to keep (default ``GRAPH_N_ROOTS`` or 25).
        n_branches: Branch candidates to keep (default ``GRAPH_N_BRANCHES`` or 25).
        branch_seeds_limit: Citing works to consider (default ``GRAPH_BRANCH_SEEDS_LIMIT`` or 200).
        on_progress: Receives :class:`BuildProgress` events, best-effort.
        client: OpenAlex client; a fresh one per build when omitted.
        cancel_event: When set, the build stops at the next stage boundary.
        current_year: Reference year for recency weighting.

    Raises:
        GraphBuildError: The source paper could not be fetched.
        BuildCancelledError: ``cancel_event`` was set during the build.
    """
    n_roots = _setting(n_roots, "GRAPH_N_ROOTS", DEFAULT_N_ROOTS)
    n_branches = _setting(n_branches, "GRAPH_N_BRANCHES", DEFAULT_N_BRANCHES)
    branch_seeds_limit = _setting(branch_seeds_limit, "GRAPH_BRANCH_SEEDS_LIMIT", DEFAULT_BRANCH_SEEDS_LIMIT)

    client = client or OpenAlexClient()
    client.reset_call_count()
    start_time = time.perf_counter()
    max_ids = client.max_filter_ids

    tracker = ProgressTracker(on_progress)
    on_batch_complete = tracker.batch_callback("Fetching papers...")

    # Step 1: source paper
    source_id = resolve_work_id(source_identifier)
    tracker.report("Fetching source paper...")
    result = client.fetch_work(source_id)
    if not result.ok or result.value is None:
        LOGGER.error("Could not fetch source paper %s: %s", source_id or source_identifier, result.error)
        raise GraphBuildError(f"Could not fetch source paper: {source_id or source_identifier}")
    source = result.value
    tracker.advance()

    ref_count = len(source.references)
    citing_calls = max(1, _batches(branch_seeds_limit, client.max_per_page))
    est_branch_seed_batches = _batches(branch_seeds_limit, max_ids)
    est_branch_ref_batches = _batches(branch_seeds_limit * MIN_BRANCH_REF_FREQUENCY, max_ids)
    est_hydration_batches = _batches(ref_count + branch_seeds_limit + n_roots + n_branches, max_ids)
    tracker.set_remaining(
        _batches(ref_count, max_ids)
        + _batches(ref_count * ROOT_EXPANSION_FACTOR, max_ids)
        + citing_calls
        + est_branch_seed_batches
        + est_branch_ref_batches
        + est_hydration_batches
    )
    tracker.report(f"Source: {source.title} ({source.year})")

    # Step 2: roots
    _check_cancelled(cancel_event, "root expansion")
    tracker.report("Building roots...")
    root_seeds: dict[str, SlimPaper] = client.fetch_bulk_slim(source.references, on_batch_complete)

    root_ref_ids = dict.fromkeys(ref for seed in root_seeds.values() for ref in seed.references)
    for seed_id in root_seeds:
        root_ref_ids.pop(seed_id, None)

    tracker.set_remaining(
        _batches(len(root_ref_ids), max_ids)
        + citing_calls
        + est_branch_seed_batches
        + est_branch_ref_batches
        + est_hydration_batches
    )
    tracker.report(f"Expanding roots: {len(root_ref_ids)} papers...")
    root_papers: dict[str, SlimPaper] = client.fetch_bulk_slim(list(root_ref_ids), on_batch_complete)

    # Step 3: rank roots
    tracker.report("Ranking roots...")
    root_ranks = compute_root_ranks(root_seeds, root_papers)
    top_root_ids = get_top_ranked(root_ranks, n_roots)

    # Step 4: branch seeds
    _check_cancelled(cancel_event, "branch discovery")
    tracker.report("Fetching citing papers...")
    citing_ids = client.fetch_citing(source.id, branch_seeds_limit)
    tracker.advance(citing_calls)

    tracker.report(f"Fetching {len(citing_ids)} branch seeds...")
    min_year = (source.year or 0) + 1
    branch_seeds = _keep_after(client.fetch_bulk_slim(citing_ids, on_batch_complete), min_year)

    # Step 5: branch candidates
    frequency: Counter[str] = Counter()
    for seed in branch_seeds.values():
        frequency.update(set(seed.references))
    branch_ref_ids = [
        ref_id
        for ref_id, count in frequency.items()
        if count >= MIN_BRANCH_REF_FREQUENCY and ref_id not in branch_seeds and ref_id != source.id
    ]

    tracker.set_remaining(_batches(len(branch_ref_ids), max_ids) + est_hydration_batches)
    tracker.report(f"Expanding branches: {len(branch_ref_ids)} refs...")
    branch_papers = _keep_after(client.fetch_bulk_slim(branch_ref_ids, on_batch_complete), min_year)

    # Step 6: rank branches
    tracker.report("Ranking branches...")
    branch_ranks = compute_branch_ranks(source, branch_seeds, branch_papers, current_year)
    top_branch_ids = get_top_ranked(branch_ranks, n_branches)

    # Step 7: full metadata for everything that stays
    _check_cancelled(cancel_event, "metadata hydration")
    ids_needing_full_data = list(dict.fromkeys([*root_seeds, *branch_seeds, *top_root_ids, *top_branch_ids]))
    tracker.set_remaining(_batches(len(ids_needing_full_data), max_ids))
    tracker.report(f"Fetching full metadata for {len(ids_needing_full_data)} papers...")
    full_papers = client.fetch_bulk_full(ids_needing_full_data, on_batch_complete)

    top_papers: dict[str, Paper] = {}
    for paper_id in top_root_ids:
        if paper_id in full_papers:
            top_papers[paper_id] = replace(full_papers[paper_id], role="root")
    for paper_id in top_branch_ids:
        if paper_id in full_papers:
            top_papers[paper_id] = replace(full_papers[paper_id], role="branch")

    full_root_seeds = [replace(full_papers[pid], role="root_seed") for pid in root_seeds if pid in full_papers]
    full_branch_seeds = [replace(full_papers[pid], role="branch_seed") for pid in branch_seeds if pid in full_papers]

    # Step 8: assemble
    assembled = assemble(source, [*full_root_seeds, *full_branch_seeds], top_papers.values())
    all_ranks = {**root_ranks, **branch_ranks}

    elapsed = round(time.perf_counter() - start_time, 2)
    tracker.finish(f"Complete in {elapsed:.2f}s")

    metadata = GraphMetadata(
        papers_in_graph=len(top_papers),
        edges_in_graph=len(assembled.edges),
        build_time_seconds=elapsed,
        timestamp=datetime.now(UTC).isoformat(),
        api_calls=client.call_count,
        graph_type="paper",
        source_year=source.year,
        total_root_seeds=len(root_seeds),
        total_root_papers=len(root_papers),
        total_branch_seeds=len(branch_seeds),
        total_branch_papers=len(branch_papers),
        n_roots=len(top_root_ids),
        n_branches=len(top_branch_ids),
    )
    LOGGER.info(
        "Graph built: source=%s root_seeds=%s root_papers=%s branch_seeds=%s branch_papers=%s "
        "papers=%s nodes=%s edges=%s api_calls=%s seconds=%s",
        source.id,
        metadata.total_root_seeds,
        metadata.total_root_papers,
        metadata.total_branch_seeds,
        metadata.total_branch_papers,
        metadata.papers_in_graph,
        len(assembled.nodes),
        metadata.edges_in_graph,
        metadata.api_calls,
        elapsed,
    )

    return BuildResult(
        source_paper=source,
        root_seeds=full_root_seeds,
        branch_seeds=full_branch_seeds,
        papers=list(top_papers.values()),
        edges=assembled.edges,
        nodes=assembled.nodes,
        metadata=metadata,
        ranks={paper_id: all_ranks[paper_id] for paper_id in top_papers},
    )


def build_author_graph(
    author_identifier: str,
    *,
    max_works: int | None = None,
    on_progress: ProgressCallback | None = None,
    client: OpenAlexClient | None = None,
    cancel_event: threading.Event | None = None,
) -> BuildResult:
    """Build a graph of an author's works and the citations among them.

    No ranking: every fetched work is kept, and ``a -> b`` exists when work
    ``a`` references work ``b``.

    Raises:
        GraphBuildError: The author could not be fetched.
    """
    max_works = _setting(max_works, "AUTHOR_MAX_WORKS", DEFAULT_AUTHOR_WORKS_LIMIT)
    client = client or OpenAlexClient()
    client.reset_call_count()
    start_time = time.perf_counter()

    tracker = ProgressTracker(on_progress, total=1 + max(1, _batches(max_works, client.max_per_page)))

    author_id = normalize_id(author_identifier)
    tracker.report("Fetching author info...")
    author = client.fetch_author(author_id)
    if author is None:
        raise GraphBuildError(f"Could not fetch author: {author_id or author_identifier}")
    tracker.advance()

    _check_cancelled(cancel_event, "author works")
    message = f"Fetching works by {author.display_name}..."
    tracker.report(message)
    works = client.fetch_author_works(author.id, max_works, tracker.batch_callback(message))

    _check_cancelled(cancel_event, "author graph assembly")
    tracker.report("Building citation network...")
    assembled = assemble_author_graph(works.values())

    elapsed = round(time.perf_counter() - start_time, 2)
    tracker.finish(f"Complete in {elapsed:.2f}s")

    metadata = GraphMetadata(
        papers_in_graph=len(works),
        edges_in_graph=len(assembled.edges),
        build_time_seconds=elapsed,
        timestamp=datetime.now(UTC).isoformat(),
        api_calls=client.call_count,
        graph_type="author",
        author_id=author.id,
        author_name=author.display_name,
        author_orcid=author.orcid,
        author_affiliation=author.affiliation,
        author_works_count=author.works_count,
        author_cited_by_count=author.cited_by_count,
        author_h_index=author.h_index,
        author_i10_index=author.i10_index,
    )
    LOGGER.info(
        "Author graph built: author=%s works=%s edges=%s api_calls=%s seconds=%s",
        author.id,
        metadata.papers_in_graph,
        metadata.edges_in_graph,
        metadata.api_calls,
        elapsed,
    )

    return BuildResult(
        source_paper=None,
        root_seeds=[],
        branch_seeds=[],
        papers=list(works.values()),
        edges=assembled.edges,
        nodes=assembled.nodes,
        metadata=metadata,
    )


def hydrate_metadata(
    node_ids: Iterable[str],
    on_progress: Callable[[int, int], None] | None = None,
    client: OpenAlexClient | None = None,
) -> dict[str, Paper]:
    """Fetch full metadata for previously cached node ids, in any order.

    ``on_progress(completed_chunks, total_chunks)`` fires once per chunk.
    Ids whose chunk failed are simply missing from the result.
    """
    client = client or OpenAlexClient()
    unique_ids = list(dict.fromkeys(filter(None, (normalize_id(node_id) for node_id in node_ids))))
    total = _batches(len(unique_ids), client.max_filter_ids)
    completed = 0

    def on_batch_complete() -> None:
        nonlocal completed
        completed += 1
        if on_progress is None:
            return
        try:
            on_progress(completed, total)
        except Exception as exc:  # best-effort
            LOGGER.warning("Hydration progress callback failed (ignored): %s", exc)

    papers = client.fetch_bulk_full(unique_ids, on_batch_complete)
    LOGGER.info("Hydrated metadata: requested=%s returned=%s", len(unique_ids), len(papers))
    return papers
