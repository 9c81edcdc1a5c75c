import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

from hymem.config import RetrievalConfig
from hymem.errors import HybridMemError, Outcome
from hymem.graph.models import Community, RelationshipInference, RelationshipPath
from hymem.graph.reasoner import RelationshipGraph
from hymem.graph.service import RelationshipService
from hymem.memory.models import MemoryRecord, QuerySpec, RankedMemory, VectorEntry
from hymem.memory.store import MemoryStore
from hymem.retrieval.fusion import DIRECT, VECTOR, FusionCandidate, HybridRankFusion, graph_hop_source
from hymem.retrieval.scorer import MultiDimensionalScorer, diversify, sort_ranked
from hymem.utils import recency_decay, utcnow
from hymem.vector.index import LSHVectorIndex
from hymem.vector.service import VectorService

logger = logging.getLogger(__name__)


@dataclass
class _Gathered:
    records: dict[str, MemoryRecord] = field(default_factory=dict)
    sources: dict[str, set[str]] = field(default_factory=dict)
    similarity: dict[str, float] = field(default_factory=dict)
    hops: dict[str, int] = field(default_factory=dict)

    def add(self, record: MemoryRecord, source: str, hop: int | None = None) -> None:
        self.records.setdefault(record.id, record)
        self.sources.setdefault(record.id, set()).add(source)
        if hop is not None:
            self.hops[record.id] = min(hop, self.hops.get(record.id, hop))


@dataclass
class MemoryRetriever:
    store: MemoryStore
    index: LSHVectorIndex
    scorer: MultiDimensionalScorer = field(default_factory=MultiDimensionalScorer)
    fusion: HybridRankFusion = field(default_factory=HybridRankFusion)
    config: RetrievalConfig = field(default_factory=RetrievalConfig)
    vectors: VectorService | None = None
    relationships: RelationshipService | None = None
    clock: Callable[[], datetime] = utcnow

    def __post_init__(self) -> None:
        self._repair_queue: set[str] = set()
        self._repair_lock = threading.Lock()

    # Retrieval

    def retrieve(self, query: QuerySpec) -> list[RankedMemory]:
        query.validate()
        now = self.clock()
        gathered = self._gather(query, now)

        for memory_id, record in list(gathered.records.items()):
            if not self._passes_filters(record, query):
                del gathered.records[memory_id]

        snap = self._expand(query, gathered)
        if not gathered.records:
            logger.debug("No candidates for query")
            return []

        ranked = self._score(query, gathered, now, snap)
        ranked = [item for item in ranked if item.score >= self.config.min_score]
        if query.diversify:
            results = diversify(ranked, query.limit)
        else:
            results = ranked[: query.limit]

        for item in results:
            self.store.touch(item.memory.id, now)
        logger.debug("Returning %d of %d candidates", len(results), len(ranked))
        return results

    def batch_retrieve(self, queries: list[QuerySpec]) -> list[list[RankedMemory]]:
        for query in queries:
            query.validate()
        if not queries:
            return []
        with ThreadPoolExecutor(max_workers=max(1, self.config.batch_workers)) as pool:
            return list(pool.map(self.retrieve, queries))

    def _passes_filters(self, record: MemoryRecord, query: QuerySpec) -> bool:
        if query.exclude_forgotten and record.is_forgotten:
            return False
        if query.min_importance is not None and record.importance < query.min_importance:
            return False
        if query.min_confidence is not None and record.confidence < query.min_confidence:
            return False
        return True

    def _gather(self, query: QuerySpec, now: datetime) -> _Gathered:
        gathered = _Gathered()
        vector_available = True
        if query.text:
            vector_available = self._gather_vector(query, gathered)
        if query.categories:
            for record in self.store.by_category(query.categories):
                gathered.add(record, DIRECT)
        if query.entities:
            for record in self.store.by_entities(query.entities):
                gathered.add(record, DIRECT)
        if query.temporal is not None:
            for record in self.store.by_temporal(query.temporal, now):
                gathered.add(record, DIRECT)

        if not gathered.records:
            no_filters = not query.text and not query.categories
            if no_filters or not vector_available:
                if not vector_available:
                    logger.info("Vector search unavailable; scoring all records lexically")
                for record in self.store.all(include_forgotten=True):
                    gathered.add(record, DIRECT)
        logger.debug("Gathered %d candidates", len(gathered.records))
        return gathered

    def _gather_vector(self, query: QuerySpec, gathered: _Gathered) -> bool:
        if self.vectors is None:
            return False
        embedded = self.vectors.embed(query.text)
        if not embedded.ok or not embedded.value:
            logger.warning("Query embedding failed; continuing without vector candidates")
            return False
        vector = embedded.value
        k = self.config.candidate_k
        hits: dict[str, float] = {}
        try:
            for memory_id, similarity in self.index.search(vector, k):
                hits[memory_id] = similarity
        except ValueError as exc:
            logger.warning("Local index rejected query vector: %s", exc)

        if len(hits) < k:
            logger.info("LSH returned %d of %d candidates; falling back to full scan", len(hits), k)
            external = self.vectors.query(vector, k)
            if external.ok:
                for memory_id, similarity in external.value or []:
                    hits[memory_id] = max(similarity, hits.get(memory_id, similarity))
            else:
                logger.warning("Full-scan fallback unavailable; using %d local hits", len(hits))

        threshold = query.semantic_threshold
        if threshold is None:
            threshold = self.config.semantic_threshold
        for memory_id, similarity in hits.items():
            if similarity < threshold:
                continue
            record = self.store.get(memory_id)
            if record is None:
                self._schedule_repair(memory_id)
                continue
            gathered.add(record, VECTOR)
            gathered.similarity[memory_id] = similarity
        return True

    def _expand(self, query: QuerySpec, gathered: _Gathered) -> Outcome[RelationshipGraph] | None:
        """Pull in records about people near the query's entities in the graph.

        Returns the graph snapshot the expansion ran on, or ``None`` when no
        expansion was attempted. The snapshot is loaded once per query and
        reused for centrality.
        """
        if self.relationships is None:
            return None
        seeds = set(query.entities)
        for memory_id, sources in gathered.sources.items():
            record = gathered.records.get(memory_id)
            if record is not None and VECTOR in sources:
                seeds.update(record.related_entities)
        if not seeds:
            return None
        snap = self.relationships.snapshot()
        if snap.value is None:
            logger.warning("Graph expansion failed; ranking without graph candidates")
            return snap
        if not snap.ok:
            logger.info("Graph store unavailable; expanding over last snapshot")
        hops = self.fusion.config.expand_hops
        reached = self.relationships.reasoner.expand(snap.value, sorted(seeds), hops)
        added = 0
        for name, hop in sorted(reached.items(), key=lambda item: (item[1], item[0])):
            if hop == 0:
                continue
            for record in self.store.by_entities([name]):
                if added >= self.fusion.config.expand_limit:
                    break
                if not self._passes_filters(record, query):
                    continue
                if record.id not in gathered.records:
                    added += 1
                gathered.add(record, graph_hop_source(hop), hop)
        logger.debug("Graph expansion added %d candidates", added)
        return snap

    def _centrality(self, record: MemoryRecord, graph: RelationshipGraph | None) -> float:
        if self.relationships is None or graph is None or not record.related_entities:
            return 0.0
        reasoner = self.relationships.reasoner
        return max(reasoner.normalized_centrality(graph, name) for name in record.related_entities)

    def _score(
        self,
        query: QuerySpec,
        gathered: _Gathered,
        now: datetime,
        snap: Outcome[RelationshipGraph] | None,
    ) -> list[RankedMemory]:
        scored = self.scorer.rank(list(gathered.records.values()), query, now)
        if snap is None:
            return sort_ranked(
                [
                    RankedMemory(
                        memory=item.memory,
                        score=item.score,
                        breakdown=item.breakdown,
                        sources=tuple(sorted(gathered.sources.get(item.memory.id, {DIRECT}))),
                        hop=gathered.hops.get(item.memory.id),
                    )
                    for item in scored
                ]
            )
        half_life = self.fusion.config.recency_half_life_days
        candidates = [
            FusionCandidate(
                item=item,
                vector=item.breakdown.relevance,
                centrality=self._centrality(item.memory, snap.value),
                recency=recency_decay(item.memory.last_accessed_at, now, half_life),
                sources=set(gathered.sources.get(item.memory.id, {DIRECT})),
                hop=gathered.hops.get(item.memory.id),
            )
            for item in scored
        ]
        return self.fusion.fuse(candidates)

    # Index maintenance

    def _schedule_repair(self, memory_id: str) -> None:
        logger.warning("Index entry %s has no memory record; skipping and scheduling repair", memory_id)
        with self._repair_lock:
            self._repair_queue.add(memory_id)

    def pending_repairs(self) -> list[str]:
        with self._repair_lock:
            return sorted(self._repair_queue)

    def repair_index(self) -> int:
        with self._repair_lock:
            queued = sorted(self._repair_queue)
            self._repair_queue.clear()
        repaired = 0
        for memory_id in queued:
            if memory_id in self.store:
                continue
            self.index.remove(memory_id)
            if self.vectors is not None:
                outcome = self.vectors.delete(memory_id)
                if not outcome.ok:
                    with self._repair_lock:
                        self._repair_queue.add(memory_id)
                    continue
            repaired += 1
        if repaired:
            logger.info("Repaired %d dangling index entries", repaired)
        return repaired

    def index_memory(
        self,
        record: MemoryRecord,
        vector: list[float] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Outcome[None]:
        self.store.add(record)
        if vector is None:
            if self.vectors is None:
                return Outcome.success(None)
            embedded = self.vectors.embed(record.content)
            if not embedded.ok:
                return Outcome.failure(embedded.error)
            vector = embedded.value
        meta = {"category": record.category.value}
        meta.update(metadata or {})
        self.index.add(VectorEntry(id=record.id, vector=list(vector), metadata=meta))
        if self.vectors is None:
            return Outcome.success(None)
        return self.vectors.persist(record.id, list(vector), meta)

    def remove_memory(self, memory_id: str) -> Outcome[None]:
        self.index.remove(memory_id)
        self.store.remove(memory_id)
        if self.vectors is None:
            return Outcome.success(None)
        return self.vectors.delete(memory_id)

    # Diagnostics

    def _no_graph(self) -> Outcome:
        return Outcome.failure(HybridMemError("no relationship service configured"))

    def find_community(self, name: str) -> Outcome[Community | None]:
        if self.relationships is None:
            return self._no_graph()
        return self.relationships.find_community(name)

    def find_path(self, a: str, b: str, max_depth: int | None = None) -> Outcome[RelationshipPath | None]:
        if self.relationships is None:
            return self._no_graph()
        return self.relationships.find_path(a, b, max_depth)

    def infer_relationship(self, a: str, b: str) -> Outcome[RelationshipInference]:
        if self.relationships is None:
            return self._no_graph()
        return self.relationships.infer_relationship(a, b)
