import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from hymem.config import GraphConfig
from hymem.graph.louvain import detect_communities, group_members, merge_small_communities, modularity
from hymem.graph.models import (
    CentralityScore,
    Community,
    NetworkStatistics,
    RelationshipEdge,
    RelationshipInference,
    RelationshipPath,
    RelationType,
    SecondDegreeRelation,
    Triangle,
)
from hymem.utils import canonical_pair, normalize_entity

logger = logging.getLogger(__name__)


@dataclass
class RelationshipGraph:
    """Immutable snapshot of the active edges at one instant."""

    edges: dict[tuple[str, str], RelationshipEdge] = field(default_factory=dict)
    adjacency: dict[str, dict[str, RelationshipEdge]] = field(default_factory=dict)
    nodes: frozenset[str] = frozenset()

    @classmethod
    def from_edges(
        cls,
        edges: Iterable[RelationshipEdge],
        now: datetime,
        persons: Iterable[str] = (),
    ) -> "RelationshipGraph":
        active: dict[tuple[str, str], RelationshipEdge] = {}
        adjacency: dict[str, dict[str, RelationshipEdge]] = {}
        for edge in edges:
            if not edge.is_active(now):
                continue
            active[edge.key] = edge
            adjacency.setdefault(edge.person_a, {})[edge.person_b] = edge
            adjacency.setdefault(edge.person_b, {})[edge.person_a] = edge
        nodes = set(adjacency)
        nodes.update(normalize_entity(p) for p in persons if p)
        return cls(edges=active, adjacency=adjacency, nodes=frozenset(nodes))

    def neighbors(self, name: str) -> dict[str, RelationshipEdge]:
        return self.adjacency.get(normalize_entity(name), {})

    def degree(self, name: str) -> int:
        return len(self.neighbors(name))

    def edge(self, a: str, b: str) -> RelationshipEdge | None:
        return self.edges.get(canonical_pair(a, b))

    def weighted(self, default_weight: float) -> dict[str, dict[str, float]]:
        return {
            node: {
                other: edge.strength if edge.strength > 0 else default_weight
                for other, edge in neighbors.items()
            }
            for node, neighbors in self.adjacency.items()
        }


@dataclass
class GraphReasoner:
    config: GraphConfig = field(default_factory=GraphConfig)

    def communities(self, graph: RelationshipGraph) -> list[Community]:
        if not graph.adjacency:
            return []
        weighted = graph.weighted(self.config.default_edge_weight)
        assignment = detect_communities(
            weighted,
            max_iterations=self.config.community_max_iterations,
            min_gain=self.config.min_modularity_gain,
        )
        assignment = merge_small_communities(weighted, assignment, self.config.min_community_size)
        logger.debug("Detected communities, Q=%.4f", modularity(weighted, assignment))
        result = []
        for idx, members in enumerate(group_members(assignment)):
            member_set = set(members)
            internal = sum(
                edge.strength
                for (a, b), edge in graph.edges.items()
                if a in member_set and b in member_set
            )
            result.append(Community(id=idx, members=tuple(members), internal_weight=internal))
        return result

    def community_of(self, graph: RelationshipGraph, name: str) -> Community | None:
        name = normalize_entity(name)
        for community in self.communities(graph):
            if name in community.members:
                return community
        return None

    def degree_centrality(self, graph: RelationshipGraph) -> dict[str, int]:
        return {node: graph.degree(node) for node in graph.nodes}

    def betweenness_centrality(self, graph: RelationshipGraph) -> dict[str, float]:
        """Degree-proxy betweenness: ``connections * 1.0``.

        This is an approximation, not shortest-path betweenness; results are
        flagged ``approximate`` wherever they are returned.
        """
        return {node: graph.degree(node) * 1.0 for node in graph.nodes}

    def normalized_centrality(self, graph: RelationshipGraph, name: str) -> float:
        norm = self.config.centrality_norm
        if norm <= 0:
            return 0.0
        return min(graph.degree(name) / norm, 1.0)

    def centrality(self, graph: RelationshipGraph, top_n: int | None = None) -> list[CentralityScore]:
        degrees = self.degree_centrality(graph)
        betweenness = self.betweenness_centrality(graph)
        scores = [
            CentralityScore(
                name=node,
                degree=degrees[node],
                betweenness=betweenness[node],
                normalized=self.normalized_centrality(graph, node),
            )
            for node in graph.nodes
        ]
        scores.sort(key=lambda s: (-s.degree, s.name))
        return scores if top_n is None else scores[:top_n]

    def _to_path(self, graph: RelationshipGraph, nodes: list[str]) -> RelationshipPath:
        edges = tuple(graph.adjacency[a][b] for a, b in zip(nodes, nodes[1:]))
        return RelationshipPath(nodes=tuple(nodes), edges=edges)

    def shortest_path(
        self,
        graph: RelationshipGraph,
        start: str,
        end: str,
        max_depth: int | None = None,
    ) -> RelationshipPath | None:
        start, end = normalize_entity(start), normalize_entity(end)
        max_depth = self.config.max_path_depth if max_depth is None else max_depth
        if start not in graph.adjacency or end not in graph.adjacency:
            return None
        if start == end:
            return RelationshipPath(nodes=(start,), edges=())
        parents: dict[str, str | None] = {start: None}
        depth = {start: 0}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            if depth[node] >= max_depth:
                continue
            for neighbor in sorted(graph.adjacency[node]):
                if neighbor in parents:
                    continue
                parents[neighbor] = node
                depth[neighbor] = depth[node] + 1
                if neighbor == end:
                    chain = [end]
                    while parents[chain[-1]] is not None:
                        chain.append(parents[chain[-1]])
                    return self._to_path(graph, list(reversed(chain)))
                queue.append(neighbor)
        return None

    def all_paths(
        self,
        graph: RelationshipGraph,
        start: str,
        end: str,
        max_depth: int | None = None,
        max_paths: int | None = None,
    ) -> list[RelationshipPath]:
        start, end = normalize_entity(start), normalize_entity(end)
        max_depth = self.config.max_path_depth if max_depth is None else max_depth
        max_paths = self.config.max_paths if max_paths is None else max_paths
        if start not in graph.adjacency or end not in graph.adjacency or start == end:
            return []
        found: list[list[str]] = []
        # Iterative deepening so the shortest paths fill the cap first.
        for limit in range(1, max_depth + 1):
            stack: list[list[str]] = [[start]]
            while stack:
                path = stack.pop()
                node = path[-1]
                if len(path) - 1 == limit:
                    if node == end:
                        found.append(path)
                    continue
                if node == end:
                    continue
                for neighbor in sorted(graph.adjacency[node], reverse=True):
                    if neighbor not in path:
                        stack.append(path + [neighbor])
            if len(found) >= max_paths:
                break
        found.sort(key=lambda p: (len(p), p))
        return [self._to_path(graph, p) for p in found[:max_paths]]

    def second_degree(
        self,
        graph: RelationshipGraph,
        start: str,
        relation_type: RelationType | str | None = None,
        limit: int = 10,
    ) -> list[SecondDegreeRelation]:
        start = normalize_entity(start)
        wanted = RelationType.parse(relation_type) if relation_type else None
        relations = []
        for middle, first in graph.neighbors(start).items():
            if wanted is not None and first.relation_type != wanted:
                continue
            for end, second in graph.neighbors(middle).items():
                if end == start:
                    continue
                if wanted is not None and second.relation_type != wanted:
                    continue
                relations.append(
                    SecondDegreeRelation(
                        start=start,
                        middle=middle,
                        end=end,
                        first=first.relation_type,
                        second=second.relation_type,
                        score=first.strength * second.strength,
                    )
                )
        relations.sort(key=lambda r: (-r.score, r.end, r.middle))
        return relations[:limit]

    def mutual_neighbors(self, graph: RelationshipGraph, a: str, b: str) -> list[str]:
        left = set(graph.neighbors(a))
        right = set(graph.neighbors(b))
        return sorted((left & right) - {normalize_entity(a), normalize_entity(b)})

    def infer_potential_relationship(self, graph: RelationshipGraph, a: str, b: str) -> RelationshipInference:
        a, b = normalize_entity(a), normalize_entity(b)
        mutual = self.mutual_neighbors(graph, a, b)
        count = len(mutual)
        direct = graph.edge(a, b)
        if direct is not None:
            return RelationshipInference(
                person_a=a,
                person_b=b,
                confidence=direct.confidence,
                label=direct.relation_type.value,
                relation_type=direct.relation_type,
                mutual_neighbors=tuple(mutual[:3]),
                mutual_count=count,
                direct=True,
                evidence=(f"direct {direct.relation_type.value} relationship",),
            )
        if count >= 5:
            confidence = 0.9
        elif count >= 3:
            confidence = 0.7
        elif count >= 1:
            confidence = 0.5
        else:
            confidence = 0.2
        if count >= 3:
            label = "likely_friends"
        elif count >= 1:
            label = "likely_acquainted"
        else:
            label = "unknown"
        evidence = f"mutual neighbors: {count}"
        if mutual:
            evidence += f" ({', '.join(mutual[:3])})"
        return RelationshipInference(
            person_a=a,
            person_b=b,
            confidence=confidence,
            label=label,
            mutual_neighbors=tuple(mutual[:3]),
            mutual_count=count,
            evidence=(evidence,),
        )

    def isolated_nodes(self, graph: RelationshipGraph) -> list[str]:
        return sorted(node for node in graph.nodes if not graph.adjacency.get(node))

    def triangles(self, graph: RelationshipGraph, limit: int = 20) -> list[Triangle]:
        found = []
        for a in sorted(graph.adjacency):
            for b in sorted(graph.adjacency[a]):
                if b <= a:
                    continue
                kind = graph.adjacency[a][b].relation_type
                for c in sorted(graph.adjacency[b]):
                    if c <= b:
                        continue
                    closing = graph.adjacency[c].get(a)
                    if closing is None:
                        continue
                    if graph.adjacency[b][c].relation_type != kind or closing.relation_type != kind:
                        continue
                    found.append(Triangle(nodes=(a, b, c), relation_type=kind))
                    if len(found) >= limit:
                        return found
        return found

    def network_statistics(self, graph: RelationshipGraph) -> NetworkStatistics:
        node_count = len(graph.nodes)
        relation_count = len(graph.edges)
        type_counts: dict[str, int] = {}
        for edge in graph.edges.values():
            type_counts[edge.relation_type.value] = type_counts.get(edge.relation_type.value, 0) + 1
        return NetworkStatistics(
            node_count=node_count,
            relation_count=relation_count,
            average_degree=(2.0 * relation_count / node_count) if node_count else 0.0,
            community_count=len(self.communities(graph)),
            isolated_count=len(self.isolated_nodes(graph)),
            type_counts=type_counts,
        )

    def expand(self, graph: RelationshipGraph, seeds: Iterable[str], hops: int) -> dict[str, int]:
        """Breadth-first neighbor expansion: ``{entity: hop}`` with seeds at 0."""
        frontier = {normalize_entity(s) for s in seeds if s and normalize_entity(s) in graph.nodes}
        reached = {name: 0 for name in frontier}
        for hop in range(1, max(hops, 0) + 1):
            nxt = set()
            for name in sorted(frontier):
                for neighbor in graph.neighbors(name):
                    if neighbor not in reached:
                        reached[neighbor] = hop
                        nxt.add(neighbor)
            if not nxt:
                break
            frontier = nxt
        return reached
