from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from hymem.config import RetryConfig
from hymem.errors import Outcome, TransientServiceError
from hymem.graph.base import RelationshipGraphStore, matches_filter
from hymem.graph.models import RelationshipEdge
from hymem.memory.models import MemoryCategory, MemoryRecord
from hymem.utils import canonical_pair, cosine_similarity

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class FakeGraphStore(RelationshipGraphStore):
    """In-memory stand-in for the Cypher backends."""

    def __init__(self):
        self.edges: dict[tuple[str, str], RelationshipEdge] = {}
        self.people: set[str] = set()
        self.vectors: dict[str, tuple[list[float], dict]] = {}
        self.fail = False
        self.calls = 0

    def _check(self):
        self.calls += 1
        if self.fail:
            raise TransientServiceError("graph store down")

    def run(self, query, params=None):
        raise NotImplementedError("fake store has no Cypher engine")

    def upsert_relationship(self, edge):
        self._check()
        self.edges[edge.key] = edge
        self.people.update(edge.key)

    def soft_delete_relationship(self, a, b, at):
        self._check()
        edge = self.edges.get(canonical_pair(a, b))
        if edge is None or not edge.is_active(at):
            return False
        self.edges[edge.key] = replace(edge, valid_to=at)
        return True

    def relation_between(self, a, b):
        self._check()
        return self.edges.get(canonical_pair(a, b))

    def relations_of(self, name):
        self._check()
        return [edge for edge in self.edges.values() if edge.involves(name)]

    def all_relationships(self):
        self._check()
        return list(self.edges.values())

    def active_relationships(self, now):
        self._check()
        return [edge for edge in self.edges.values() if edge.is_active(now)]

    def persons(self):
        self._check()
        return sorted(self.people)

    def add_person(self, name):
        self.people.add(name)

    def persist_vector(self, memory_id, vector, metadata):
        self._check()
        self.vectors[memory_id] = (list(vector), dict(metadata))

    def delete_vector(self, memory_id):
        self._check()
        self.vectors.pop(memory_id, None)

    def query_vector(self, vector, k, metadata_filter=None):
        self._check()
        scored = [
            (memory_id, cosine_similarity(vector, stored))
            for memory_id, (stored, metadata) in self.vectors.items()
            if matches_filter(metadata, metadata_filter)
        ]
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[:k]


class FakeVectorService:
    """Vector service keyed by exact text, with switchable failures."""

    def __init__(self, embeddings=None):
        self.embeddings = dict(embeddings or {})
        self.persisted: dict[str, list[float]] = {}
        self.embed_calls = 0
        self.deleted: list[str] = []
        self.fail_embed = False

    def embed(self, text):
        self.embed_calls += 1
        if self.fail_embed or text not in self.embeddings:
            return Outcome.failure(TransientServiceError("embedding endpoint down"))
        return Outcome.success(self.embeddings[text])

    def persist(self, memory_id, vector, metadata):
        self.persisted[memory_id] = list(vector)
        return Outcome.success(None)

    def query(self, vector, k, metadata_filter=None):
        scored = [
            (memory_id, cosine_similarity(vector, stored))
            for memory_id, stored in self.persisted.items()
        ]
        scored.sort(key=lambda item: (-item[1], item[0]))
        return Outcome.success(scored[:k])

    def delete(self, memory_id):
        self.deleted.append(memory_id)
        self.persisted.pop(memory_id, None)
        return Outcome.success(None)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def fast_retry():
    return RetryConfig(max_attempts=2, min_wait_s=0.0, max_wait_s=0.0)


@pytest.fixture
def graph_store():
    return FakeGraphStore()


@pytest.fixture
def make_record():
    counter = {"n": 0}

    def _make(
        content="note",
        category=MemoryCategory.FACT,
        days_old=1.0,
        importance=0.5,
        **kwargs,
    ):
        counter["n"] += 1
        created = NOW - timedelta(days=days_old)
        kwargs.setdefault("id", f"m{counter['n']}")
        return MemoryRecord(
            content=content,
            category=category,
            importance=importance,
            created_at=created,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_edge():
    def _make(a, b, kind="friend", confidence=0.8, valid_to=None):
        return RelationshipEdge.create(
            a,
            b,
            kind,
            confidence,
            valid_from=NOW - timedelta(days=100),
            valid_to=valid_to,
        )

    return _make


@pytest.fixture
def vector_service():
    return FakeVectorService()
