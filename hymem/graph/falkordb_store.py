import logging
from dataclasses import dataclass
from typing import Any, Mapping

from falkordb import FalkorDB
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from hymem.config import FalkorConfig
from hymem.errors import TransientServiceError
from hymem.graph.base import RelationshipGraphStore


def _column_name(column: Any) -> str:
    name = column[1] if isinstance(column, (list, tuple)) else column
    if isinstance(name, bytes):
        return name.decode("utf-8")
    return str(name)


@dataclass
class FalkorGraphStore(RelationshipGraphStore):
    config: FalkorConfig

    def __post_init__(self) -> None:
        self._db = FalkorDB(host=self.config.host, port=self.config.port)
        self._graph = self._db.select_graph(self.config.graph)

    def run(self, query: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            res = self._graph.query(query, dict(params or {}), timeout=self.config.timeout_ms)
        except (RedisConnectionError, RedisTimeoutError) as exc:
            raise TransientServiceError(f"falkordb: {exc}") from exc
        header = [_column_name(column) for column in (res.header or [])]
        return [dict(zip(header, row)) for row in res.result_set]

    def ensure_schema(self) -> None:
        logger = logging.getLogger(__name__)
        statements = [
            "CREATE INDEX FOR (p:Person) ON (p.name)",
            "CREATE INDEX FOR (m:MemoryVector) ON (m.id)",
        ]
        for stmt in statements:
            try:
                self._graph.query(stmt)
            except Exception as exc:
                logger.debug("Skipping schema statement in FalkorDB: %s (%s)", stmt, exc)
