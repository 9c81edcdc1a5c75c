import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from hymem.cache import RelationshipCache
from hymem.config import GraphConfig, RetryConfig
from hymem.errors import Outcome
from hymem.graph.base import RelationshipGraphStore
from hymem.graph.models import (
    CentralityScore,
    Community,
    NetworkStatistics,
    RelationshipEdge,
    RelationshipInference,
    RelationshipPath,
    RelationSource,
    RelationType,
    SecondDegreeRelation,
    Triangle,
)
from hymem.graph.reasoner import GraphReasoner, RelationshipGraph
from hymem.resilience import call_external
from hymem.utils import utcnow

logger = logging.getLogger(__name__)

_SNAPSHOT_KEY = "snapshot"


@dataclass
class RelationshipService:
    """Cached relationship reads, invalidating writes and graph diagnostics.

    Every read goes through :class:`RelationshipCache`; every write drops the
    pair, both people's lists, every cached path and the graph snapshot. When
    the store is unreachable, graph queries run on the last good snapshot and
    are returned as degraded.
    """

    store: RelationshipGraphStore
    config: GraphConfig = field(default_factory=GraphConfig)
    cache: RelationshipCache = field(default_factory=RelationshipCache)
    retry: RetryConfig = field(default_factory=RetryConfig)
    clock: Callable[[], datetime] = utcnow

    def __post_init__(self) -> None:
        self.reasoner = GraphReasoner(self.config)
        self._last_snapshot: RelationshipGraph | None = None
        self._outage: tuple[float, Exception] | None = None
        self._lock = threading.Lock()

    def _call(self, fn, name: str) -> Outcome:
        return call_external(fn, name, self.retry)

    # Writes

    def _note_write(self, outcome: Outcome) -> None:
        if outcome.ok:
            with self._lock:
                self._outage = None

    def relate(
        self,
        a: str,
        b: str,
        relation_type: RelationType | str,
        confidence: float,
        description: str = "",
        source: RelationSource | str = RelationSource.USER_MENTIONED,
    ) -> Outcome[RelationshipEdge]:
        edge = RelationshipEdge.create(
            a,
            b,
            relation_type,
            confidence,
            valid_from=self.clock(),
            description=description,
            source=source,
        )
        outcome = self._call(lambda: self.store.upsert_relationship(edge), "graph.upsert_relationship")
        self.cache.invalidate_relationship(edge.person_a, edge.person_b)
        self._note_write(outcome)
        if not outcome.ok:
            return Outcome.failure(outcome.error)
        return Outcome.success(edge)

    def unrelate(self, a: str, b: str) -> Outcome[bool]:
        outcome = self._call(
            lambda: self.store.soft_delete_relationship(a, b, self.clock()),
            "graph.soft_delete_relationship",
        )
        self.cache.invalidate_relationship(a, b)
        self._note_write(outcome)
        return outcome

    # Cached reads

    def relation_between(self, a: str, b: str) -> Outcome[RelationshipEdge | None]:
        cached = self.cache.get_relation(a, b)
        if not self.cache.is_miss(cached):
            return Outcome.success(cached)
        outcome = self._call(lambda: self.store.relation_between(a, b), "graph.relation_between")
        if not outcome.ok:
            return outcome
        edge = outcome.value
        if edge is not None and not edge.is_active(self.clock()):
            edge = None
        self.cache.put_relation(a, b, edge)
        return Outcome.success(edge)

    def relations_of(self, name: str) -> Outcome[list[RelationshipEdge]]:
        cached = self.cache.get_person(name)
        if not self.cache.is_miss(cached):
            return Outcome.success(list(cached))
        outcome = self._call(lambda: self.store.relations_of(name), "graph.relations_of")
        if not outcome.ok:
            return Outcome.failure(outcome.error, fallback=[])
        now = self.clock()
        edges = [edge for edge in outcome.value or [] if edge.is_active(now)]
        self.cache.put_person(name, tuple(edges))
        return Outcome.success(edges)

    def _stale_or_failed(self, error: Exception) -> Outcome[RelationshipGraph]:
        with self._lock:
            stale = self._last_snapshot
        if stale is not None:
            return Outcome(value=stale, error=error, degraded=True)
        return Outcome.failure(error)

    def _held_outage(self) -> Exception | None:
        with self._lock:
            if self._outage is None:
                return None
            until, error = self._outage
            if self.cache.clock() >= until:
                self._outage = None
                return None
            return error

    def snapshot(self) -> Outcome[RelationshipGraph]:
        """The active-edge graph, cached until the next write.

        After a failed load the store is not asked again for
        ``outage_hold_s`` seconds; callers get the last good snapshot (or
        the failure) straight away during that window.
        """
        cached = self.cache.get_query(_SNAPSHOT_KEY)
        if not self.cache.is_miss(cached):
            return Outcome.success(cached)
        held = self._held_outage()
        if held is not None:
            return self._stale_or_failed(held)
        now = self.clock()
        edges = self._call(lambda: self.store.active_relationships(now), "graph.active_relationships")
        if not edges.ok:
            with self._lock:
                self._outage = (self.cache.clock() + self.config.outage_hold_s, edges.error)
            outcome = self._stale_or_failed(edges.error)
            if outcome.value is not None:
                logger.info("Graph store unavailable; using last snapshot")
            return outcome
        persons = self._call(self.store.persons, "graph.persons")
        graph = RelationshipGraph.from_edges(edges.value or [], now, persons.value_or([]))
        with self._lock:
            self._last_snapshot = graph
            self._outage = None
        self.cache.put_query(_SNAPSHOT_KEY, graph)
        if not persons.ok:
            return Outcome.success(graph, degraded=True)
        return Outcome.success(graph)

    def _on_snapshot(self, fn, fallback=None) -> Outcome:
        snap = self.snapshot()
        if snap.value is None:
            return Outcome.failure(snap.error, fallback=fallback)
        try:
            value = fn(snap.value)
        except Exception as exc:
            logger.exception("Graph reasoning failed")
            return Outcome.failure(exc, fallback=fallback)
        return Outcome(value=value, error=snap.error, degraded=snap.degraded)

    def find_path(self, a: str, b: str, max_depth: int | None = None) -> Outcome[RelationshipPath | None]:
        depth = max_depth if max_depth is not None else self.config.max_path_depth
        cached = self.cache.get_path(a, b)
        if not self.cache.is_miss(cached) and cached[0] == depth:
            return Outcome.success(cached[1])
        outcome = self._on_snapshot(lambda g: self.reasoner.shortest_path(g, a, b, depth))
        if outcome.ok and not outcome.degraded:
            self.cache.put_path(a, b, (depth, outcome.value))
        return outcome

    def find_all_paths(
        self,
        a: str,
        b: str,
        max_depth: int | None = None,
        max_paths: int | None = None,
    ) -> Outcome[list[RelationshipPath]]:
        return self._on_snapshot(
            lambda g: self.reasoner.all_paths(g, a, b, max_depth, max_paths), fallback=[]
        )

    def communities(self) -> Outcome[list[Community]]:
        return self._on_snapshot(self.reasoner.communities, fallback=[])

    def find_community(self, name: str) -> Outcome[Community | None]:
        return self._on_snapshot(lambda g: self.reasoner.community_of(g, name))

    def centrality(self, top_n: int | None = None) -> Outcome[list[CentralityScore]]:
        return self._on_snapshot(lambda g: self.reasoner.centrality(g, top_n), fallback=[])

    def infer_relationship(self, a: str, b: str) -> Outcome[RelationshipInference]:
        return self._on_snapshot(lambda g: self.reasoner.infer_potential_relationship(g, a, b))

    def second_degree(
        self,
        name: str,
        relation_type: RelationType | str | None = None,
        limit: int = 10,
    ) -> Outcome[list[SecondDegreeRelation]]:
        return self._on_snapshot(
            lambda g: self.reasoner.second_degree(g, name, relation_type, limit), fallback=[]
        )

    def isolated_nodes(self) -> Outcome[list[str]]:
        return self._on_snapshot(self.reasoner.isolated_nodes, fallback=[])

    def triangles(self, limit: int = 20) -> Outcome[list[Triangle]]:
        return self._on_snapshot(lambda g: self.reasoner.triangles(g, limit), fallback=[])

    def statistics(self) -> Outcome[NetworkStatistics]:
        return self._on_snapshot(self.reasoner.network_statistics)

    def expand(self, seeds: list[str], hops: int) -> Outcome[dict[str, int]]:
        return self._on_snapshot(lambda g: self.reasoner.expand(g, seeds, hops), fallback={})
