"""Compact persisted form of a finished graph.

Only ``{id, order, connections}`` survive, with ids stored as integers
(``W2741809807`` -> ``2741809807``). ``cited_by`` is rebuilt on load and
display metadata comes back through ``graph_builder.hydrate_metadata``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from identifiers import from_numeric_id, to_numeric_id
from models import GraphNode, GraphType

LOGGER = logging.getLogger(__name__)


def to_slim_cache(
    nodes: Iterable[GraphNode],
    graph_type: GraphType = "paper",
    author_id: str | None = None,
) -> dict[str, Any]:
    """Encode nodes; the source node (if any) is recorded as ``sourceId``."""
    nodes = list(nodes)
    source = next((node for node in nodes if node.is_source), None) if graph_type == "paper" else None

    cache: dict[str, Any] = {
        "slim": True,
        "nodes": [
            {
                "id": to_numeric_id(node.id),
                "order": node.order,
                "connections": [to_numeric_id(conn) for conn in node.connections],
            }
            for node in nodes
        ],
        "graphType": graph_type,
    }
    if source is not None:
        cache["sourceId"] = to_numeric_id(source.id)
    if graph_type == "author" and author_id:
        cache["authorId"] = author_id
    return cache


def from_slim_cache(cache: dict[str, Any]) -> list[GraphNode]:
    """Decode nodes with ``cited_by`` rebuilt and no metadata yet."""
    if not cache.get("slim"):
        raise ValueError("Not a slim graph cache")

    source_id = cache.get("sourceId")
    source_key = from_numeric_id(source_id) if source_id is not None else None

    decoded: dict[str, tuple[int, list[str]]] = {}
    for raw in cache.get("nodes") or []:
        node_id = from_numeric_id(raw["id"])
        decoded[node_id] = (raw.get("order", 0), [from_numeric_id(conn) for conn in raw.get("connections") or []])

    cited_by: dict[str, list[str]] = {node_id: [] for node_id in decoded}
    for node_id, (_, connections) in decoded.items():
        for conn in connections:
            if conn in cited_by:
                cited_by[conn].append(node_id)

    return [
        GraphNode(
            id=node_id,
            order=order,
            connections=tuple(connections),
            cited_by=tuple(cited_by[node_id]),
            metadata=None,
            is_source=node_id == source_key,
        )
        for node_id, (order, connections) in decoded.items()
    ]


def write_slim_cache(path: str | Path, cache: dict[str, Any]) -> Path:
    path = Path(path)
    path.write_text(json.dumps(cache, separators=(",", ":")), encoding="utf-8")
    LOGGER.info("Wrote slim cache: path=%s nodes=%s", path, len(cache.get("nodes") or []))
    return path


def read_slim_cache(path: str | Path) -> dict[str, Any]:
    with Path(path).open(encoding="utf-8") as fh:
        return json.load(fh)
