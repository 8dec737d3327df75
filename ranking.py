"""Ranking passes that pick the most relevant roots and branches.

Roots are papers one hop behind the source's references; branches are papers
published after the source and cited by the works that cite it. Both passes
return a :class:`RankInfo` per candidate and share :func:`get_top_ranked`.

Scores are sums of plain counts (plus one recency-weighted count for
branches), so they are pure functions of their inputs and the injected
``current_year``.
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from datetime import UTC, datetime
from typing import Mapping, Protocol, Sequence

from identifiers import normalize_id
from models import RankInfo

CITATION_HALF_LIFE = 4


class Rankable(Protocol):
    """Anything with an id, a year and a reference list (SlimPaper or Paper)."""

    id: str
    year: int
    references: Sequence[str]


def recency_weight(
    paper_year: int,
    current_year: int | None = None,
    half_life: float = CITATION_HALF_LIFE,
) -> float:
    """``1 + ln(1 + half_life / max(1, current_year - paper_year))``."""
    if current_year is None:
        current_year = datetime.now(UTC).year
    years_since = max(1, current_year - paper_year)
    return 1 + math.log(1 + half_life / years_since)


def compute_root_ranks(
    root_seeds: Mapping[str, Rankable],
    root_papers: Mapping[str, Rankable],
) -> dict[str, RankInfo]:
    """Rank root candidates against the source's references (the seeds).

    (a) **cited**: number of seeds whose references contain the candidate.
    (b) **co_cited**: every paper citing k seeds adds k to each of its other
        known references.
    (c) **co_citing**: references the candidate shares with the union of
        seed references.
    """
    all_papers = {**root_seeds, **root_papers}
    seed_ids = set(root_seeds)

    cited_counts: Counter[str] = Counter()
    for seed in root_seeds.values():
        for ref_id in set(seed.references):
            if ref_id in root_papers:
                cited_counts[ref_id] += 1

    co_cited_counts: Counter[str] = Counter()
    for paper in all_papers.values():
        refs = set(paper.references)
        seeds_in_refs = len(refs & seed_ids)
        if not seeds_in_refs:
            continue
        for ref_id in refs:
            if ref_id not in seed_ids and ref_id in all_papers:
                co_cited_counts[ref_id] += seeds_in_refs

    seed_refs: set[str] = set()
    for seed in root_seeds.values():
        seed_refs.update(seed.references)

    co_citing_counts: Counter[str] = Counter()
    for paper_id, paper in root_papers.items():
        if paper_id in seed_ids:
            continue
        shared = len(set(paper.references) & seed_refs)
        if shared:
            co_citing_counts[paper_id] = shared

    ranks: dict[str, RankInfo] = {}
    for paper_id in root_papers:
        cited = cited_counts[paper_id]
        co_cited = co_cited_counts[paper_id]
        co_citing = co_citing_counts[paper_id]
        ranks[paper_id] = RankInfo(
            rank=cited + co_cited + co_citing,
            cited_count=cited,
            co_cited_count=co_cited,
            co_citing_count=co_citing,
        )
    return ranks


def compute_branch_ranks(
    source: Rankable,
    branch_seeds: Mapping[str, Rankable],
    branch_papers: Mapping[str, Rankable],
    current_year: int | None = None,
) -> dict[str, RankInfo]:
    """Rank branch candidates against the works citing the source.

    (a) **citing**: branch seeds the candidate itself cites.
    (b) **co_citing**: references shared with the source.
    (c) **co_cited**: for each paper citing both the source and the
        candidate, ``recency_weight(paper.year)``; stored rounded to 2 places.
    """
    if current_year is None:
        current_year = datetime.now(UTC).year
    subject_id = normalize_id(source.id)
    subject_refs = set(source.references)
    branch_seed_ids = set(branch_seeds)
    all_papers = {**branch_seeds, **branch_papers}

    citing_counts: Counter[str] = Counter()
    co_citing_counts: Counter[str] = Counter()
    for paper_id, paper in branch_papers.items():
        refs = set(paper.references)
        citing = len(refs & branch_seed_ids)
        if citing:
            citing_counts[paper_id] = citing
        shared = len(refs & subject_refs)
        if shared:
            co_citing_counts[paper_id] = shared

    co_cited_counts: defaultdict[str, float] = defaultdict(float)
    for paper in all_papers.values():
        ref_ids = {normalize_id(ref) for ref in paper.references}
        if subject_id not in ref_ids:
            continue
        weight = recency_weight(paper.year or current_year, current_year)
        for ref_id in ref_ids:
            if ref_id and ref_id != subject_id and ref_id in branch_papers:
                co_cited_counts[ref_id] += weight

    ranks: dict[str, RankInfo] = {}
    for paper_id in branch_papers:
        citing = citing_counts[paper_id]
        co_citing = co_citing_counts[paper_id]
        co_cited = co_cited_counts.get(paper_id, 0.0)
        ranks[paper_id] = RankInfo(
            rank=citing + co_citing + co_cited,
            citing_count=citing,
            co_citing_count=co_citing,
            co_cited_count=round(co_cited, 2),
        )
    return ranks


def get_top_ranked(ranks: Mapping[str, RankInfo], n: int = 50) -> list[str]:
    """Return the ids of the *n* best-ranked entries.

    Sorted by rank descending; equal ranks fall back to id ascending so the
    selection does not depend on dict insertion order.
    """
    if n <= 0:
        return []
    ordered = sorted(ranks.items(), key=lambda item: (-item[1].rank, item[0]))
    return [paper_id for paper_id, _ in ordered[:n]]
