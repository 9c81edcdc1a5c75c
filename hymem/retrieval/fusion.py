from dataclasses import dataclass, field, replace
from typing import Iterable

from hymem.config import FusionConfig
from hymem.memory.models import RankedMemory
from hymem.retrieval.scorer import sort_ranked
from hymem.utils import clamp01

VECTOR = "vector"
DIRECT = "direct"


def graph_hop_source(hop: int) -> str:
    return f"graph-hop-{hop}"


@dataclass
class FusionCandidate:
    """Per-dimension inputs to the fused score for one record."""

    item: RankedMemory
    vector: float
    centrality: float
    recency: float
    sources: set[str] = field(default_factory=set)
    hop: int | None = None


@dataclass
class HybridRankFusion:
    config: FusionConfig = field(default_factory=FusionConfig)

    def fusion_score(self, vector: float, centrality: float, recency: float) -> float:
        c = self.config
        return (
            c.vector_weight * vector
            + c.graph_centrality_weight * centrality
            + c.temporal_weight * recency
        )

    def merge(self, *groups: Iterable[FusionCandidate]) -> dict[str, FusionCandidate]:
        """Deduplicate by record id, keeping the max of each component."""
        merged: dict[str, FusionCandidate] = {}
        for group in groups:
            for candidate in group:
                key = candidate.item.memory.id
                seen = merged.get(key)
                if seen is None:
                    merged[key] = FusionCandidate(
                        item=candidate.item,
                        vector=candidate.vector,
                        centrality=candidate.centrality,
                        recency=candidate.recency,
                        sources=set(candidate.sources),
                        hop=candidate.hop,
                    )
                    continue
                seen.vector = max(seen.vector, candidate.vector)
                seen.centrality = max(seen.centrality, candidate.centrality)
                seen.recency = max(seen.recency, candidate.recency)
                seen.sources |= candidate.sources
                if candidate.item.breakdown.relevance > seen.item.breakdown.relevance:
                    seen.item = candidate.item
                if candidate.hop is not None and (seen.hop is None or candidate.hop < seen.hop):
                    seen.hop = candidate.hop
        return merged

    def fuse(self, *groups: Iterable[FusionCandidate]) -> list[RankedMemory]:
        fused = []
        for candidate in self.merge(*groups).values():
            vector = clamp01(candidate.vector)
            centrality = clamp01(candidate.centrality)
            recency = clamp01(candidate.recency)
            total = self.fusion_score(vector, centrality, recency)
            breakdown = replace(candidate.item.breakdown, total=total, centrality=centrality, recency=recency)
            fused.append(
                RankedMemory(
                    memory=candidate.item.memory,
                    score=total,
                    breakdown=breakdown,
                    sources=tuple(sorted(candidate.sources)),
                    hop=candidate.hop,
                )
            )
        return sort_ranked(fused)
