import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping

from hymem.graph.models import RelationshipEdge
from hymem.utils import canonical_pair, cosine_similarity, normalize_entity, to_iso

logger = logging.getLogger(__name__)

_EDGE_COLUMNS = (
    "a.name AS a, b.name AS b, r.type AS type, r.confidence AS confidence, "
    "r.description AS description, r.source AS source, "
    "r.valid_from AS valid_from, r.valid_to AS valid_to"
)


def decode_metadata(raw: Any) -> dict[str, Any]:
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def matches_filter(metadata: Mapping[str, Any], metadata_filter: Mapping[str, Any] | None) -> bool:
    if not metadata_filter:
        return True
    return all(str(metadata.get(k)) == str(v) for k, v in metadata_filter.items())


class RelationshipGraphStore(ABC):
    """Relationship and vector persistence expressed as Cypher over ``run``.

    Edges live as ``(:Person)-[:RELATION]->(:Person)`` with the endpoints in
    canonical order, so one pair maps to exactly one stored relationship.
    Timestamps are stored as UTC ISO-8601 strings.
    """

    @abstractmethod
    def run(self, query: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Execute ``query`` and return rows keyed by column name."""

    def close(self) -> None:
        return None

    def ensure_schema(self) -> None:
        return None

    def upsert_relationship(self, edge: RelationshipEdge) -> None:
        self.run(
            "MERGE (a:Person {name: $a}) "
            "MERGE (b:Person {name: $b}) "
            "MERGE (a)-[r:RELATION]->(b) "
            "SET r.type = $type, r.confidence = $confidence, r.description = $description, "
            "r.source = $source, r.valid_from = $valid_from, r.valid_to = $valid_to",
            edge.to_params(),
        )

    def soft_delete_relationship(self, a: str, b: str, at: datetime) -> bool:
        left, right = canonical_pair(a, b)
        rows = self.run(
            "MATCH (a:Person {name: $a})-[r:RELATION]->(b:Person {name: $b}) "
            "WHERE r.valid_to IS NULL OR r.valid_to > $at "
            "SET r.valid_to = $at "
            "RETURN count(r) AS updated",
            {"a": left, "b": right, "at": to_iso(at)},
        )
        return bool(rows and int(rows[0].get("updated") or 0) > 0)

    def relation_between(self, a: str, b: str) -> RelationshipEdge | None:
        left, right = canonical_pair(a, b)
        rows = self.run(
            "MATCH (a:Person {name: $a})-[r:RELATION]->(b:Person {name: $b}) "
            f"RETURN {_EDGE_COLUMNS}",
            {"a": left, "b": right},
        )
        return RelationshipEdge.from_row(rows[0]) if rows else None

    def relations_of(self, name: str) -> list[RelationshipEdge]:
        rows = self.run(
            "MATCH (a:Person)-[r:RELATION]->(b:Person) "
            "WHERE a.name = $name OR b.name = $name "
            f"RETURN {_EDGE_COLUMNS}",
            {"name": normalize_entity(name)},
        )
        return [RelationshipEdge.from_row(row) for row in rows]

    def all_relationships(self) -> list[RelationshipEdge]:
        rows = self.run(f"MATCH (a:Person)-[r:RELATION]->(b:Person) RETURN {_EDGE_COLUMNS}")
        return [RelationshipEdge.from_row(row) for row in rows]

    def active_relationships(self, now: datetime) -> list[RelationshipEdge]:
        rows = self.run(
            "MATCH (a:Person)-[r:RELATION]->(b:Person) "
            "WHERE r.valid_to IS NULL OR r.valid_to > $now "
            f"RETURN {_EDGE_COLUMNS}",
            {"now": to_iso(now)},
        )
        # ISO strings compare lexically only when offsets agree; check again on parsed values.
        return [edge for edge in map(RelationshipEdge.from_row, rows) if edge.is_active(now)]

    def persons(self) -> list[str]:
        rows = self.run("MATCH (p:Person) RETURN p.name AS name ORDER BY name")
        return [row["name"] for row in rows if row.get("name")]

    def persist_vector(self, memory_id: str, vector: list[float], metadata: Mapping[str, Any]) -> None:
        self.run(
            "MERGE (m:MemoryVector {id: $id}) "
            "SET m.embedding = $embedding, m.metadata = $metadata",
            {
                "id": memory_id,
                "embedding": [float(x) for x in vector],
                "metadata": json.dumps(dict(metadata), ensure_ascii=False, default=str),
            },
        )

    def delete_vector(self, memory_id: str) -> None:
        self.run("MATCH (m:MemoryVector {id: $id}) DETACH DELETE m", {"id": memory_id})

    def query_vector(
        self,
        vector: list[float],
        k: int,
        metadata_filter: Mapping[str, Any] | None = None,
    ) -> list[tuple[str, float]]:
        """Exhaustive cosine scan; backends with a native vector index override this."""
        rows = self.run("MATCH (m:MemoryVector) RETURN m.id AS id, m.embedding AS embedding, m.metadata AS metadata")
        scored = []
        for row in rows:
            if not matches_filter(decode_metadata(row.get("metadata")), metadata_filter):
                continue
            scored.append((row["id"], cosine_similarity(vector, row.get("embedding") or [])))
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[:k]
