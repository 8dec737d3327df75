"""Shared typed models for the citation graph pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Literal, TypeVar

T = TypeVar("T")

Role = Literal["root", "branch", "root_seed", "branch_seed"]
GraphType = Literal["paper", "author"]


@dataclass(frozen=True, slots=True)
class Author:
    """One authorship entry, truncated to what the graph displays."""

    name: str
    id: str | None = None
    orcid: str | None = None
    affiliation: str | None = None
    affiliation_country: str | None = None


@dataclass(frozen=True, slots=True)
class TopicClassification:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class PrimaryTopic:
    """Topic hierarchy: domain > field > subfield > topic."""

    id: str
    name: str
    subfield: TopicClassification
    field: TopicClassification
    domain: TopicClassification


@dataclass(frozen=True, slots=True)
class Sdg:
    """Sustainable Development Goal tag."""

    id: str
    name: str
    score: float


@dataclass(frozen=True, slots=True)
class CitationPercentile:
    value: float
    is_in_top_1_percent: bool
    is_in_top_10_percent: bool


@dataclass(frozen=True, slots=True)
class SlimPaper:
    """Minimal record used only for ranking."""

    id: str
    year: int
    citation_count: int
    references: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Paper:
    """Normalized work record with full display metadata."""

    id: str
    year: int
    title: str
    authors: tuple[Author, ...] = ()
    citation_count: int = 0
    references_count: int = 0
    references: tuple[str, ...] = ()
    doi: str | None = None
    source_url: str | None = None
    type: str | None = None
    venue_type: str | None = None
    venue_name: str | None = None
    open_access: bool | None = None
    language: str | None = None
    abstract: str = ""
    fwci: float | None = None
    citation_percentile: CitationPercentile | None = None
    primary_topic: PrimaryTopic | None = None
    sdgs: tuple[Sdg, ...] | None = None
    keywords: tuple[str, ...] | None = None
    is_retracted: bool | None = None
    role: Role | None = None

    @property
    def author_names(self) -> list[str]:
        return [author.name for author in self.authors]


@dataclass(frozen=True, slots=True)
class RankInfo:
    """Score of one candidate in one ranking pass, with its components."""

    rank: float
    cited_count: int | None = None
    co_cited_count: float | None = None
    co_citing_count: int | None = None
    citing_count: int | None = None


@dataclass(frozen=True, slots=True)
class GraphEdge:
    source: str
    target: str
    type: Literal["cites"] = "cites"


@dataclass(frozen=True, slots=True)
class GraphNode:
    """Node of the finished graph.

    ``connections`` holds in-graph references only; ``cited_by`` is its exact
    inverse. ``metadata`` is ``None`` for nodes loaded from a slim cache that
    have not been hydrated yet.
    """

    id: str
    order: int
    connections: tuple[str, ...]
    cited_by: tuple[str, ...]
    metadata: Paper | None = None
    is_source: bool = False


@dataclass(frozen=True, slots=True)
class BuildProgress:
    message: str
    percent: int
    completed: int
    total: int


@dataclass(frozen=True, slots=True)
class FetchResult(Generic[T]):
    """Outcome of one remote request: a payload or a failure reason."""

    value: T | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> FetchResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> FetchResult[T]:
        return cls(error=error)


@dataclass(frozen=True, slots=True)
class AuthorProfile:
    id: str
    display_name: str
    orcid: str | None = None
    affiliation: str | None = None
    works_count: int = 0
    cited_by_count: int = 0
    h_index: int = 0
    i10_index: int = 0


@dataclass(frozen=True, slots=True)
class AutocompleteResult:
    id: str
    display_name: str
    hint: str | None
    cited_by_count: int
    entity_type: str
    external_id: str | None


@dataclass(slots=True)
class GraphMetadata:
    """Build summary returned alongside the graph."""

    papers_in_graph: int
    edges_in_graph: int
    build_time_seconds: float
    timestamp: str
    api_calls: int
    graph_type: GraphType = "paper"
    source_year: int | None = None
    total_root_seeds: int | None = None
    total_root_papers: int | None = None
    total_branch_seeds: int | None = None
    total_branch_papers: int | None = None
    n_roots: int | None = None
    n_branches: int | None = None
    author_id: str | None = None
    author_name: str | None = None
    author_orcid: str | None = None
    author_affiliation: str | None = None
    author_works_count: int | None = None
    author_cited_by_count: int | None = None
    author_h_index: int | None = None
    author_i10_index: int | None = None


@dataclass(slots=True)
class BuildResult:
    """Everything one build hands back to its caller."""

    source_paper: Paper | None
    root_seeds: list[Paper]
    branch_seeds: list[Paper]
    papers: list[Paper]
    edges: list[GraphEdge]
    nodes: list[GraphNode]
    metadata: GraphMetadata
    ranks: dict[str, RankInfo] = field(default_factory=dict)
