import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from neo4j import GraphDatabase, Query
from neo4j.exceptions import ServiceUnavailable, SessionExpired, TransientError

from hymem.config import GraphConfig, Neo4jConfig
from hymem.errors import TransientServiceError
from hymem.graph.base import RelationshipGraphStore, decode_metadata, matches_filter

logger = logging.getLogger(__name__)


@dataclass
class GraphStore(RelationshipGraphStore):
    config: Neo4jConfig
    graph_config: GraphConfig = field(default_factory=GraphConfig)
    dimension: int = 1024

    def __post_init__(self) -> None:
        self._driver = GraphDatabase.driver(
            self.config.uri,
            auth=(self.config.user, self.config.password),
            connection_timeout=self.config.timeout_s,
        )

    def close(self) -> None:
        self._driver.close()

    def run(self, query: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            with self._driver.session(database=self.config.database) as session:
                records = session.run(Query(query, timeout=self.config.timeout_s), dict(params or {}))
                return [record.data() for record in records]
        except (ServiceUnavailable, SessionExpired, TransientError) as exc:
            raise TransientServiceError(f"neo4j: {exc}") from exc

    def ensure_schema(self) -> None:
        cypher = [
            "CREATE CONSTRAINT person_name IF NOT EXISTS FOR (p:Person) REQUIRE p.name IS UNIQUE",
            "CREATE CONSTRAINT memory_vector_id IF NOT EXISTS FOR (m:MemoryVector) REQUIRE m.id IS UNIQUE",
            "CREATE INDEX rel_valid_to IF NOT EXISTS FOR ()-[r:RELATION]-() ON (r.valid_to)",
            "CREATE INDEX rel_type IF NOT EXISTS FOR ()-[r:RELATION]-() ON (r.type)",
            (
                f"CREATE VECTOR INDEX {self.graph_config.vector_index_name} IF NOT EXISTS "
                "FOR (m:MemoryVector) ON (m.embedding) "
                f"OPTIONS {{indexConfig: {{`vector.dimensions`: {int(self.dimension)}, "
                "`vector.similarity_function`: 'cosine'}}"
            ),
        ]
        for stmt in cypher:
            self.run(stmt)

    def query_vector(
        self,
        vector: list[float],
        k: int,
        metadata_filter: Mapping[str, Any] | None = None,
    ) -> list[tuple[str, float]]:
        # Over-fetch when filtering since the index cannot see inside metadata.
        fetch = k * 4 if metadata_filter else k
        rows = self.run(
            "CALL db.index.vector.queryNodes($index, $limit, $embedding) "
            "YIELD node AS m, score "
            "RETURN m.id AS id, m.metadata AS metadata, score",
            {
                "index": self.graph_config.vector_index_name,
                "limit": fetch,
                "embedding": [float(x) for x in vector],
            },
        )
        # queryNodes reports cosine rescaled to [0, 1] as (1 + cos) / 2.
        hits = [
            (row["id"], 2.0 * float(row.get("score") or 0.0) - 1.0)
            for row in rows
            if matches_filter(decode_metadata(row.get("metadata")), metadata_filter)
        ]
        return hits[:k]
