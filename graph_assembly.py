"""Turn selected papers into graph nodes, edges and the cited-by index."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Mapping

from identifiers import normalize_id
from models import GraphEdge, GraphNode, Paper


@dataclass(frozen=True, slots=True)
class AssembledGraph:
    nodes: list[GraphNode]
    edges: list[GraphEdge]


def collect_universe(*groups: Iterable[Paper]) -> dict[str, Paper]:
    """Merge paper groups by id; the first occurrence of an id wins."""
    universe: dict[str, Paper] = {}
    for group in groups:
        for paper in group:
            paper_id = normalize_id(paper.id)
            if paper_id and paper_id not in universe:
                universe[paper_id] = paper if paper.id == paper_id else replace(paper, id=paper_id)
    return universe


def _in_graph_references(paper: Paper, universe: Mapping[str, Paper] | set[str]) -> list[str]:
    refs = (normalize_id(ref) for ref in paper.references)
    return [ref_id for ref_id in dict.fromkeys(refs) if ref_id in universe]


def build_edges(papers: Mapping[str, Paper]) -> list[GraphEdge]:
    """One ``cites`` edge per in-graph reference; dangling references are dropped."""
    edges: list[GraphEdge] = []
    for paper_id, paper in papers.items():
        for ref_id in _in_graph_references(paper, papers):
            edges.append(GraphEdge(source=paper_id, target=ref_id))
    return edges


def build_nodes(papers: Mapping[str, Paper], source_id: str | None = None) -> list[GraphNode]:
    """Build nodes with filtered connections and the reverse ``cited_by`` index.

    Nodes are ordered by year descending, then id ascending.
    """
    connections = {paper_id: _in_graph_references(paper, papers) for paper_id, paper in papers.items()}

    cited_by: dict[str, list[str]] = {paper_id: [] for paper_id in papers}
    for paper_id, refs in connections.items():
        for ref_id in refs:
            cited_by[ref_id].append(paper_id)

    nodes = [
        GraphNode(
            id=paper_id,
            order=paper.year,
            connections=tuple(connections[paper_id]),
            cited_by=tuple(cited_by[paper_id]),
            metadata=paper,
            is_source=paper_id == source_id,
        )
        for paper_id, paper in papers.items()
    ]
    return sort_nodes(nodes)


def sort_nodes(nodes: Iterable[GraphNode]) -> list[GraphNode]:
    return sorted(nodes, key=lambda node: (-(node.order or 0), node.id))


def assemble(
    source: Paper,
    seeds: Iterable[Paper],
    selected: Iterable[Paper],
) -> AssembledGraph:
    """Assemble the bounded subgraph around *source*.

    The node universe is source + seeds + selected papers. Every edge points
    inside that universe and ``cited_by`` is the exact inverse of
    ``connections``.
    """
    universe = collect_universe([source], seeds, selected)
    return AssembledGraph(
        nodes=build_nodes(universe, source_id=normalize_id(source.id)),
        edges=build_edges(universe),
    )


def assemble_author_graph(works: Iterable[Paper]) -> AssembledGraph:
    """Author variant: every fetched work is a node, no source."""
    universe = collect_universe(works)
    return AssembledGraph(nodes=build_nodes(universe), edges=build_edges(universe))
