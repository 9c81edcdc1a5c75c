from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from hymem.config import RetryConfig
from hymem.embeddings.openai_embedder import OpenAIEmbedder
from hymem.errors import Outcome
from hymem.graph.base import RelationshipGraphStore
from hymem.resilience import call_external


class VectorService(Protocol):
    """Authoritative vector store the in-process LSH index accelerates."""

    def embed(self, text: str) -> Outcome[list[float]]: ...

    def persist(self, memory_id: str, vector: list[float], metadata: Mapping[str, Any]) -> Outcome[None]: ...

    def query(
        self,
        vector: list[float],
        k: int,
        metadata_filter: Mapping[str, Any] | None = None,
    ) -> Outcome[list[tuple[str, float]]]: ...

    def delete(self, memory_id: str) -> Outcome[None]: ...


@dataclass
class GraphVectorService:
    embedder: OpenAIEmbedder
    store: RelationshipGraphStore
    retry: RetryConfig = field(default_factory=RetryConfig)

    def embed(self, text: str) -> Outcome[list[float]]:
        return self.embedder.embed(text)

    def persist(self, memory_id: str, vector: list[float], metadata: Mapping[str, Any]) -> Outcome[None]:
        return call_external(
            lambda: self.store.persist_vector(memory_id, vector, metadata), "vector.persist", self.retry
        )

    def query(
        self,
        vector: list[float],
        k: int,
        metadata_filter: Mapping[str, Any] | None = None,
    ) -> Outcome[list[tuple[str, float]]]:
        return call_external(
            lambda: self.store.query_vector(vector, k, metadata_filter), "vector.query", self.retry
        )

    def delete(self, memory_id: str) -> Outcome[None]:
        return call_external(lambda: self.store.delete_vector(memory_id), "vector.delete", self.retry)
