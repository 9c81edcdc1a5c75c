import pytest

from hymem.config import FusionConfig
from hymem.memory.models import QuerySpec
from hymem.retrieval.fusion import FusionCandidate, HybridRankFusion, graph_hop_source
from hymem.retrieval.scorer import MultiDimensionalScorer


def _candidate(record, now, vector=0.0, centrality=0.0, recency=0.0, sources=("vector",), hop=None):
    item = MultiDimensionalScorer().rank([record], QuerySpec(), now)[0]
    return FusionCandidate(
        item=item,
        vector=vector,
        centrality=centrality,
        recency=recency,
        sources=set(sources),
        hop=hop,
    )


def test_fusion_score_weights():
    fusion = HybridRankFusion()
    assert fusion.fusion_score(0.8, 0.5, 0.6) == pytest.approx(0.70)


def test_fusion_weights_must_sum_to_one():
    with pytest.raises(ValueError):
        FusionConfig(vector_weight=0.9)


def test_merge_keeps_best_component_and_unions_sources(make_record, now):
    record = make_record(id="shared")
    fusion = HybridRankFusion()
    from_vector = _candidate(record, now, vector=0.9, recency=0.2, sources=("vector",))
    from_graph = _candidate(
        record, now, vector=0.1, centrality=0.7, recency=0.4, sources=(graph_hop_source(1),), hop=1
    )

    merged = fusion.merge([from_vector], [from_graph])
    assert list(merged) == ["shared"]
    candidate = merged["shared"]
    assert candidate.vector == 0.9
    assert candidate.centrality == 0.7
    assert candidate.recency == 0.4
    assert candidate.sources == {"vector", "graph-hop-1"}
    assert candidate.hop == 1


def test_fuse_orders_by_fused_score(make_record, now):
    fusion = HybridRankFusion()
    low = _candidate(make_record(id="low"), now, vector=0.2)
    high = _candidate(make_record(id="high"), now, vector=0.9, centrality=0.5)

    fused = fusion.fuse([low, high])
    assert [item.memory.id for item in fused] == ["high", "low"]
    top = fused[0]
    assert top.score == pytest.approx(0.6 * 0.9 + 0.2 * 0.5)
    assert top.breakdown.total == top.score
    assert top.breakdown.centrality == 0.5
    assert top.breakdown.recency == 0.0
    assert top.sources == ("vector",)


def test_fuse_clamps_components(make_record, now):
    fusion = HybridRankFusion()
    fused = fusion.fuse([_candidate(make_record(), now, vector=1.7, centrality=-0.3, recency=0.5)])
    assert fused[0].score == pytest.approx(0.6 + 0.2 * 0.5)
