from __future__ import annotations

import json

import pytest

from graph_assembly import assemble
from models import Paper
from slim_cache import from_slim_cache, read_slim_cache, to_slim_cache, write_slim_cache


@pytest.fixture()
def graph_nodes():
    source = Paper(id="W100", year=2015, title="S", references=("W1", "W2"))
    seeds = [
        Paper(id="W1", year=2010, title="R1", references=("W11",)),
        Paper(id="W2", year=2011, title="R2", references=("W11", "W1")),
    ]
    return assemble(source, seeds, [Paper(id="W11", year=2000, title="C1")]).nodes


def test_slim_cache_keeps_only_structure(graph_nodes) -> None:
    cache = to_slim_cache(graph_nodes)

    assert cache["slim"] is True
    assert cache["graphType"] == "paper"
    assert cache["sourceId"] == 100
    assert {"id": 2, "order": 2011, "connections": [11, 1]} in cache["nodes"]
    assert all(set(node) == {"id", "order", "connections"} for node in cache["nodes"])
    assert "authorId" not in cache


def test_slim_cache_restores_index_without_metadata(graph_nodes) -> None:
    restored = from_slim_cache(to_slim_cache(graph_nodes))
    by_id = {node.id: node for node in restored}

    assert set(by_id) == {node.id for node in graph_nodes}
    for original in graph_nodes:
        node = by_id[original.id]
        assert node.connections == original.connections
        assert set(node.cited_by) == set(original.cited_by)
        assert node.order == original.order
        assert node.metadata is None
        assert node.is_source == original.is_source


def test_author_cache_records_author_id(graph_nodes) -> None:
    cache = to_slim_cache(graph_nodes, graph_type="author", author_id="A42")

    assert cache["graphType"] == "author"
    assert cache["authorId"] == "A42"
    assert "sourceId" not in cache
    assert not any(node.is_source for node in from_slim_cache(cache))


def test_from_slim_cache_rejects_full_payload() -> None:
    with pytest.raises(ValueError, match="slim"):
        from_slim_cache({"nodes": []})


def test_write_and_read_slim_cache(tmp_path, graph_nodes) -> None:
    path = write_slim_cache(tmp_path / "graph.json", to_slim_cache(graph_nodes))

    raw = path.read_text(encoding="utf-8")
    assert " " not in raw
    assert read_slim_cache(path) == json.loads(raw)
    assert len(from_slim_cache(read_slim_cache(path))) == len(graph_nodes)
