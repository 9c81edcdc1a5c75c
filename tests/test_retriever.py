import pytest

from hymem.config import VectorIndexConfig
from hymem.errors import InvalidQueryError
from hymem.graph.service import RelationshipService
from hymem.memory.models import MemoryCategory, QuerySpec, RecentDays, VectorEntry
from hymem.memory.store import MemoryStore
from hymem.retrieval.retriever import MemoryRetriever
from hymem.vector.index import LSHVectorIndex

COFFEE = [1.0, 0.0, 0.0, 0.0]
TEA = [0.0, 1.0, 0.0, 0.0]


@pytest.fixture
def retriever(vector_service, now):
    vector_service.embeddings.update({"coffee": COFFEE, "tea": TEA})
    return MemoryRetriever(
        store=MemoryStore(),
        index=LSHVectorIndex(VectorIndexConfig(dimension=4, seed=1)),
        vectors=vector_service,
        clock=lambda: now,
    )


def test_diversified_results_cover_categories(retriever, make_record):
    categories = [MemoryCategory.FACT, MemoryCategory.PERSON, MemoryCategory.EPISODIC]
    for i in range(50):
        record = make_record(
            content=f"memory {i}",
            category=categories[i % 3],
            days_old=i % 10,
            importance=(i % 7) / 7,
        )
        retriever.store.add(record)

    results = retriever.retrieve(QuerySpec(limit=5, diversify=True))
    assert len(results) == 5
    assert len({item.memory.category for item in results}) == 3
    scores = [item.score for item in results]
    assert scores == sorted(scores, reverse=True)
    assert all(item.memory.access_count == 1 for item in results)


def test_invalid_query_fails_before_any_io(retriever, vector_service):
    with pytest.raises(InvalidQueryError):
        retriever.retrieve(QuerySpec(text="coffee", limit=0))
    with pytest.raises(InvalidQueryError):
        retriever.retrieve(QuerySpec(text="coffee", min_importance=1.5))
    assert vector_service.embed_calls == 0


def test_batch_validates_every_query_first(retriever, vector_service):
    with pytest.raises(InvalidQueryError):
        retriever.batch_retrieve([QuerySpec(text="coffee"), QuerySpec(text="   ")])
    assert vector_service.embed_calls == 0


def test_vector_candidates_respect_threshold(retriever, vector_service, make_record):
    coffee = make_record(content="espresso at the corner cafe", id="coffee")
    tea = make_record(content="green tea", id="tea")
    assert retriever.index_memory(coffee, vector=COFFEE).ok
    assert retriever.index_memory(tea, vector=TEA).ok
    assert set(vector_service.persisted) == {"coffee", "tea"}

    results = retriever.retrieve(QuerySpec(text="coffee"))
    assert [item.memory.id for item in results] == ["coffee"]
    assert results[0].sources == ("vector",)


def test_dangling_index_entry_is_skipped_and_repaired(retriever, vector_service, make_record):
    retriever.index.add(VectorEntry(id="ghost", vector=COFFEE))
    real = make_record(content="coffee with Dana", id="real")
    retriever.index_memory(real, vector=[0.95, 0.05, 0.0, 0.0])

    results = retriever.retrieve(QuerySpec(text="coffee"))
    assert [item.memory.id for item in results] == ["real"]
    assert retriever.pending_repairs() == ["ghost"]

    assert retriever.repair_index() == 1
    assert "ghost" not in retriever.index
    assert vector_service.deleted == ["ghost"]
    assert retriever.pending_repairs() == []


def test_embedding_outage_degrades_to_lexical_scoring(retriever, vector_service, make_record):
    retriever.store.add(make_record(content="went hiking", id="hike"))
    retriever.store.add(make_record(content="coffee with Sam", id="cafe"))
    vector_service.fail_embed = True

    results = retriever.retrieve(QuerySpec(text="coffee"))
    assert [item.memory.id for item in results][0] == "cafe"
    assert len(results) == 2


def test_filters_drop_forgotten_and_unimportant(retriever, make_record):
    retriever.store.add(make_record(id="keep", importance=0.8))
    retriever.store.add(make_record(id="minor", importance=0.1))
    retriever.store.add(make_record(id="gone", importance=0.9, is_forgotten=True))

    results = retriever.retrieve(QuerySpec(min_importance=0.5))
    assert [item.memory.id for item in results] == ["keep"]


def test_temporal_lookup_restricts_candidates(retriever, make_record):
    retriever.store.add(make_record(id="recent", days_old=1))
    retriever.store.add(make_record(id="old", days_old=40))
    results = retriever.retrieve(QuerySpec(temporal=RecentDays(7)))
    assert [item.memory.id for item in results] == ["recent"]


def test_graph_expansion_tags_hop(retriever, make_record, graph_store, fast_retry, now):
    relationships = RelationshipService(store=graph_store, retry=fast_retry, clock=lambda: now)
    relationships.relate("Alice", "Bob", "friend", 0.9)
    retriever.relationships = relationships
    retriever.store.add(
        make_record(content="Alice moved to Lyon", id="alice", related_entities=frozenset({"Alice"}))
    )
    retriever.store.add(
        make_record(content="Dinner with Bob", id="bob", related_entities=frozenset({"Bob"}))
    )
    retriever.store.add(make_record(content="Unrelated errand", id="other"))

    results = retriever.retrieve(QuerySpec(entities=("Alice",)))
    by_id = {item.memory.id: item for item in results}
    assert set(by_id) == {"alice", "bob"}
    assert by_id["alice"].sources == ("direct",)
    assert by_id["bob"].sources == ("graph-hop-1",)
    assert by_id["bob"].hop == 1
    assert by_id["bob"].breakdown.centrality == pytest.approx(0.01)
    assert by_id["bob"].breakdown.recency is not None


def test_remove_memory_clears_index_and_store(retriever, vector_service, make_record):
    record = make_record(id="x")
    retriever.index_memory(record, vector=COFFEE)
    assert retriever.remove_memory("x").ok
    assert "x" not in retriever.store
    assert "x" not in retriever.index
    assert vector_service.deleted == ["x"]


def test_diagnostics_without_graph_fail_cleanly(retriever):
    assert not retriever.find_path("A", "B").ok
    assert not retriever.find_community("A").ok
    assert not retriever.infer_relationship("A", "B").ok


def test_empty_store_returns_nothing(retriever):
    assert retriever.retrieve(QuerySpec()) == []


def test_graph_outage_loads_snapshot_once_per_query(retriever, make_record, graph_store, fast_retry, now, caplog):
    relationships = RelationshipService(store=graph_store, retry=fast_retry, clock=lambda: now)
    relationships.relate("Alice", "Bob", "friend", 0.9)
    retriever.relationships = relationships
    for i in range(20):
        retriever.store.add(
            make_record(content=f"Alice note {i}", id=f"alice-{i}", related_entities=frozenset({"Alice"}))
        )
    retriever.store.add(make_record(content="Dinner with Bob", id="bob", related_entities=frozenset({"Bob"})))
    assert relationships.snapshot().ok

    graph_store.fail = True
    relationships.cache.invalidate_all()
    calls = graph_store.calls
    with caplog.at_level("INFO", logger="hymem.retrieval.retriever"):
        results = retriever.retrieve(QuerySpec(entities=("Alice",), limit=25))

    assert graph_store.calls - calls <= fast_retry.max_attempts
    assert "bob" in {item.memory.id for item in results}
    assert "expanding over last snapshot" in caplog.text
    assert "Graph expansion failed" not in caplog.text
