import json

import pytest

from hymem.config import Neo4jConfig
from hymem.graph.base import RelationshipGraphStore
from hymem.graph.neo4j_store import GraphStore
from hymem.memory.models import MemoryCategory
from hymem.memory.store import MemoryStore


class RecordingStore(RelationshipGraphStore):
    def __init__(self, rows=None):
        self.rows = rows or []
        self.queries = []

    def run(self, query, params=None):
        self.queries.append((query, params or {}))
        return self.rows


class CannedNeo4jStore(GraphStore):
    """Neo4j store that answers every query with fixed rows and no driver."""

    def __post_init__(self):
        self.rows = []

    def run(self, query, params=None):
        return self.rows


def test_memory_store_lookups(make_record):
    store = MemoryStore()
    store.add_many(
        [
            make_record(id="a", category=MemoryCategory.PERSON, related_entities=frozenset({"Alice"})),
            make_record(id="b", content="Bob called", category=MemoryCategory.FACT),
            make_record(id="c", is_forgotten=True),
        ]
    )
    assert len(store) == 3
    assert [r.id for r in store.all()] == ["a", "b"]
    assert [r.id for r in store.by_category([MemoryCategory.PERSON])] == ["a"]
    assert [r.id for r in store.by_entities(["alice", "bob"])] == ["a", "b"]
    assert store.remove("b")
    assert "b" not in store


def test_jsonl_roundtrip_skips_bad_lines(tmp_path, make_record):
    store = MemoryStore()
    store.add(make_record(id="a", content="first"))
    store.add(make_record(id="b", content="second"))
    path = tmp_path / "memories.jsonl"
    assert store.dump_jsonl(path) == 2
    with path.open("a", encoding="utf-8") as handle:
        handle.write("{not json}\n\n")

    loaded = MemoryStore()
    assert loaded.load_jsonl(path) == 2
    assert loaded.get("b").content == "second"


def test_relation_rows_are_parsed(now):
    row = {
        "a": "Bob",
        "b": "Alice",
        "type": "colleague",
        "confidence": 0.6,
        "description": "same team",
        "source": "event_inferred",
        "valid_from": "2024-01-01T00:00:00+00:00",
        "valid_to": None,
    }
    store = RecordingStore([row])
    edge = store.relation_between("Bob", "Alice")
    assert edge.key == ("Alice", "Bob")
    assert edge.relation_type.value == "colleague"
    assert edge.is_active(now)
    _, params = store.queries[0]
    assert params == {"a": "Alice", "b": "Bob"}


def test_soft_delete_reports_update_count(now):
    assert RecordingStore([{"updated": 1}]).soft_delete_relationship("A", "B", now)
    assert not RecordingStore([{"updated": 0}]).soft_delete_relationship("A", "B", now)


def test_vector_scan_applies_metadata_filter():
    rows = [
        {"id": "x", "embedding": [1.0, 0.0], "metadata": json.dumps({"category": "fact"})},
        {"id": "y", "embedding": [0.9, 0.1], "metadata": json.dumps({"category": "person"})},
        {"id": "z", "embedding": [0.0, 1.0], "metadata": None},
    ]
    store = RecordingStore(rows)
    assert [i for i, _ in store.query_vector([1.0, 0.0], k=5)] == ["x", "y", "z"]
    assert [i for i, _ in store.query_vector([1.0, 0.0], k=5, metadata_filter={"category": "person"})] == ["y"]


def test_neo4j_vector_scores_are_mapped_back_to_cosine():
    store = CannedNeo4jStore(config=Neo4jConfig())
    store.rows = [
        {"id": "same", "metadata": None, "score": 1.0},
        {"id": "loose", "metadata": None, "score": 0.7},
        {"id": "opposite", "metadata": None, "score": 0.0},
    ]
    hits = dict(store.query_vector([1.0, 0.0], k=3))
    assert hits["same"] == pytest.approx(1.0)
    assert hits["loose"] == pytest.approx(0.4)
    assert hits["opposite"] == pytest.approx(-1.0)
