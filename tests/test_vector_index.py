import numpy as np
import pytest

from hymem.config import VectorIndexConfig
from hymem.memory.models import VectorEntry
from hymem.vector.index import LSHVectorIndex


def _index(dim=8, **kwargs):
    return LSHVectorIndex(VectorIndexConfig(dimension=dim, seed=3, **kwargs))


def _vec(rng, dim=8):
    return rng.standard_normal(dim).tolist()


def test_search_finds_inserted_vector_first():
    rng = np.random.default_rng(0)
    index = _index()
    vectors = {f"m{i}": _vec(rng) for i in range(30)}
    for entry_id, vector in vectors.items():
        index.add(VectorEntry(id=entry_id, vector=vector))

    results = index.search(vectors["m7"], top_k=5)
    assert results[0][0] == "m7"
    assert results[0][1] == pytest.approx(1.0)
    assert all(-1.0 <= score <= 1.0 for _, score in results)
    assert [s for _, s in results] == sorted((s for _, s in results), reverse=True)


def test_removed_vector_never_returned_even_when_cached():
    rng = np.random.default_rng(1)
    index = _index()
    target = _vec(rng)
    index.add(VectorEntry(id="keep", vector=_vec(rng)))
    index.add(VectorEntry(id="gone", vector=target))

    assert index.search(target, top_k=3)[0][0] == "gone"
    assert index.remove("gone")
    assert "gone" not in [entry_id for entry_id, _ in index.search(target, top_k=3)]
    assert "gone" not in index
    assert not index.remove("gone")


def test_metadata_filter_restricts_candidates():
    index = _index()
    vector = [1.0, 0.5, 0.0, 0.0, 0.2, 0.0, 0.0, 0.1]
    index.add(VectorEntry(id="a", vector=vector, metadata={"category": "fact"}))
    index.add(VectorEntry(id="b", vector=vector, metadata={"category": "person"}))

    results = index.search(vector, top_k=5, metadata_filter={"category": "person"})
    assert [entry_id for entry_id, _ in results] == ["b"]
    assert index.search(vector, top_k=5, metadata_filter={"category": "episodic"}) == []


def test_update_replaces_vector_and_metadata():
    index = _index()
    first = [1.0, 0, 0, 0, 0, 0, 0, 0]
    second = [0, 0, 0, 0, 0, 0, 0, -1.0]
    index.add(VectorEntry(id="x", vector=first, metadata={"tag": "old"}))
    index.update(VectorEntry(id="x", vector=second, metadata={"tag": "new"}))

    assert len(index) == 1
    assert index.search(second, top_k=1, metadata_filter={"tag": "new"})[0][0] == "x"
    assert index.search(second, top_k=1, metadata_filter={"tag": "old"}) == []


def test_dimension_mismatch_raises():
    index = _index()
    with pytest.raises(ValueError):
        index.add(VectorEntry(id="bad", vector=[1.0, 2.0]))
    with pytest.raises(ValueError):
        index.search([1.0, 2.0], top_k=1)


def test_zero_vector_scores_zero_not_nan():
    index = _index(dim=4)
    index.add(VectorEntry(id="zero", vector=[0.0, 0.0, 0.0, 0.0]))
    results = index.search([0.0, 0.0, 0.0, 0.0], top_k=1)
    assert results == [("zero", 0.0)]


def test_batch_search_matches_single_search():
    rng = np.random.default_rng(2)
    index = _index()
    vectors = [_vec(rng) for _ in range(20)]
    for i, vector in enumerate(vectors):
        index.add(VectorEntry(id=f"m{i}", vector=vector))

    batch = index.batch_search(vectors[:4], top_k=3, max_workers=2)
    assert len(batch) == 4
    for i, results in enumerate(batch):
        assert results == index.search(vectors[i], top_k=3)
        assert results[0][0] == f"m{i}"


def test_exhaustive_search_contains_lsh_results():
    rng = np.random.default_rng(4)
    index = _index()
    for i in range(40):
        index.add(VectorEntry(id=f"m{i}", vector=_vec(rng)))
    query = _vec(rng)
    exact = dict(index.exhaustive_search(query, top_k=40))
    for entry_id, score in index.search(query, top_k=10):
        assert exact[entry_id] == pytest.approx(score)


def test_stats_and_clear():
    index = _index()
    index.add(VectorEntry(id="a", vector=[1.0] * 8, metadata={"category": "fact"}))
    index.search([1.0] * 8, top_k=1)
    index.search([1.0] * 8, top_k=1)
    stats = index.stats()
    assert stats["vectors"] == 1
    assert stats["tables"] == 10
    assert stats["buckets"] == 10
    assert stats["metadata_keys"] == ["category"]
    assert stats["cache_hits"] == 1

    index.clear()
    assert len(index) == 0
    assert index.search([1.0] * 8, top_k=1) == []
