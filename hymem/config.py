import math
import os
from dataclasses import dataclass


def _get_env(key: str, default: str | None = None) -> str | None:
    value = os.getenv(key, default)
    if value is None or value == "":
        return default
    return value


def _get_env_str(key: str, default: str) -> str:
    return _get_env(key, default) or default


def _get_env_int(key: str, default: int) -> int:
    raw = _get_env(key, str(default))
    return int(raw) if raw is not None else default


def _get_env_float(key: str, default: float) -> float:
    raw = _get_env(key, str(default))
    return float(raw) if raw is not None else default


def _get_env_optional_int(key: str) -> int | None:
    raw = _get_env(key)
    return int(raw) if raw is not None else None


def _check_weights(name: str, weights: list[float]) -> None:
    total = sum(weights)
    if not math.isclose(total, 1.0, abs_tol=1e-9):
        raise ValueError(f"{name} weights must sum to 1.0, got {total:.6f}")
    if any(w < 0 for w in weights):
        raise ValueError(f"{name} weights must be non-negative")


@dataclass(frozen=True)
class EmbeddingConfig:
    model: str = "text-embedding-3-small"
    api_key: str | None = None
    base_url: str | None = None
    timeout_s: float = 5.0

    @classmethod
    def from_env(cls) -> "EmbeddingConfig":
        return cls(
            model=_get_env_str("HYMEM_EMBED_MODEL", "text-embedding-3-small"),
            api_key=_get_env("OPENAI_API_KEY"),
            base_url=_get_env("OPENAI_BASE_URL"),
            timeout_s=_get_env_float("HYMEM_EMBED_TIMEOUT_S", 5.0),
        )


@dataclass(frozen=True)
class Neo4jConfig:
    uri: str = "bolt://localhost:7687"
    user: str = "neo4j"
    password: str = "password"
    database: str = "neo4j"
    timeout_s: float = 5.0

    @classmethod
    def from_env(cls) -> "Neo4jConfig":
        return cls(
            uri=_get_env_str("NEO4J_URI", "bolt://localhost:7687"),
            user=_get_env_str("NEO4J_USER", "neo4j"),
            password=_get_env_str("NEO4J_PASSWORD", "password"),
            database=_get_env_str("NEO4J_DATABASE", "neo4j"),
            timeout_s=_get_env_float("NEO4J_TIMEOUT_S", 5.0),
        )


@dataclass(frozen=True)
class FalkorConfig:
    host: str = "localhost"
    port: int = 6379
    graph: str = "HYMEM"
    timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> "FalkorConfig":
        return cls(
            host=_get_env_str("FALKORDB_HOST", "localhost"),
            port=_get_env_int("FALKORDB_PORT", 6379),
            graph=_get_env_str("FALKORDB_GRAPH", "HYMEM"),
            timeout_ms=_get_env_int("FALKORDB_TIMEOUT_MS", 5000),
        )


@dataclass(frozen=True)
class GraphConfig:
    backend: str = "neo4j"
    vector_index_name: str = "memory_embedding_index"
    community_max_iterations: int = 100
    min_modularity_gain: float = 0.0001
    min_community_size: int = 2
    max_path_depth: int = 5
    max_paths: int = 5
    centrality_norm: float = 100.0
    default_edge_weight: float = 0.5
    outage_hold_s: float = 30.0

    @classmethod
    def from_env(cls) -> "GraphConfig":
        return cls(
            backend=_get_env_str("HYMEM_GRAPH_BACKEND", "neo4j"),
            vector_index_name=_get_env_str("HYMEM_VECTOR_INDEX_NAME", "memory_embedding_index"),
            community_max_iterations=_get_env_int("HYMEM_COMMUNITY_MAX_ITER", 100),
            min_modularity_gain=_get_env_float("HYMEM_MIN_MODULARITY_GAIN", 0.0001),
            min_community_size=_get_env_int("HYMEM_MIN_COMMUNITY_SIZE", 2),
            max_path_depth=_get_env_int("HYMEM_MAX_PATH_DEPTH", 5),
            max_paths=_get_env_int("HYMEM_MAX_PATHS", 5),
            centrality_norm=_get_env_float("HYMEM_CENTRALITY_NORM", 100.0),
            default_edge_weight=_get_env_float("HYMEM_DEFAULT_EDGE_WEIGHT", 0.5),
            outage_hold_s=_get_env_float("HYMEM_GRAPH_OUTAGE_HOLD_S", 30.0),
        )


@dataclass(frozen=True)
class VectorIndexConfig:
    dimension: int = 1024
    num_tables: int = 10
    num_hash_functions: int = 5
    seed: int | None = None
    query_cache_size: int = 100

    @classmethod
    def from_env(cls) -> "VectorIndexConfig":
        return cls(
            dimension=_get_env_int("HYMEM_VECTOR_DIM", 1024),
            num_tables=_get_env_int("HYMEM_LSH_TABLES", 10),
            num_hash_functions=_get_env_int("HYMEM_LSH_HASHES", 5),
            seed=_get_env_optional_int("HYMEM_LSH_SEED"),
            query_cache_size=_get_env_int("HYMEM_LSH_CACHE_SIZE", 100),
        )


@dataclass(frozen=True)
class ScoringConfig:
    weight_semantic: float = 0.30
    weight_temporal: float = 0.20
    weight_importance: float = 0.20
    weight_emotional: float = 0.15
    weight_entity: float = 0.10
    weight_intent: float = 0.05
    recency_half_life_days: float = 30.0
    in_window_boost: float = 1.5
    out_of_window_factor: float = 0.5

    def __post_init__(self) -> None:
        _check_weights("Scoring", self.weights())

    def weights(self) -> list[float]:
        return [
            self.weight_semantic,
            self.weight_temporal,
            self.weight_importance,
            self.weight_emotional,
            self.weight_entity,
            self.weight_intent,
        ]

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        return cls(
            weight_semantic=_get_env_float("HYMEM_WEIGHT_SEMANTIC", 0.30),
            weight_temporal=_get_env_float("HYMEM_WEIGHT_TEMPORAL", 0.20),
            weight_importance=_get_env_float("HYMEM_WEIGHT_IMPORTANCE", 0.20),
            weight_emotional=_get_env_float("HYMEM_WEIGHT_EMOTIONAL", 0.15),
            weight_entity=_get_env_float("HYMEM_WEIGHT_ENTITY", 0.10),
            weight_intent=_get_env_float("HYMEM_WEIGHT_INTENT", 0.05),
            recency_half_life_days=_get_env_float("HYMEM_RECENCY_DAYS", 30.0),
        )


@dataclass(frozen=True)
class FusionConfig:
    vector_weight: float = 0.6
    graph_centrality_weight: float = 0.2
    temporal_weight: float = 0.2
    expand_hops: int = 1
    expand_limit: int = 50
    recency_half_life_days: float = 30.0

    def __post_init__(self) -> None:
        _check_weights(
            "Fusion",
            [self.vector_weight, self.graph_centrality_weight, self.temporal_weight],
        )

    @classmethod
    def from_env(cls) -> "FusionConfig":
        return cls(
            vector_weight=_get_env_float("HYMEM_FUSION_VECTOR", 0.6),
            graph_centrality_weight=_get_env_float("HYMEM_FUSION_CENTRALITY", 0.2),
            temporal_weight=_get_env_float("HYMEM_FUSION_TEMPORAL", 0.2),
            expand_hops=_get_env_int("HYMEM_EXPAND_HOPS", 1),
            expand_limit=_get_env_int("HYMEM_EXPAND_LIMIT", 50),
            recency_half_life_days=_get_env_float("HYMEM_RECENCY_DAYS", 30.0),
        )


@dataclass(frozen=True)
class CacheConfig:
    relation_max: int = 500
    relation_ttl_s: float = 300.0
    person_max: int = 200
    person_ttl_s: float = 300.0
    path_max: int = 100
    path_ttl_s: float = 600.0
    query_max: int = 50
    query_ttl_s: float = 180.0

    @classmethod
    def from_env(cls) -> "CacheConfig":
        return cls(
            relation_max=_get_env_int("HYMEM_CACHE_RELATION_MAX", 500),
            relation_ttl_s=_get_env_float("HYMEM_CACHE_RELATION_TTL_S", 300.0),
            person_max=_get_env_int("HYMEM_CACHE_PERSON_MAX", 200),
            person_ttl_s=_get_env_float("HYMEM_CACHE_PERSON_TTL_S", 300.0),
            path_max=_get_env_int("HYMEM_CACHE_PATH_MAX", 100),
            path_ttl_s=_get_env_float("HYMEM_CACHE_PATH_TTL_S", 600.0),
            query_max=_get_env_int("HYMEM_CACHE_QUERY_MAX", 50),
            query_ttl_s=_get_env_float("HYMEM_CACHE_QUERY_TTL_S", 180.0),
        )


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    min_wait_s: float = 0.5
    max_wait_s: float = 4.0

    @classmethod
    def from_env(cls) -> "RetryConfig":
        return cls(
            max_attempts=_get_env_int("HYMEM_RETRY_ATTEMPTS", 3),
            min_wait_s=_get_env_float("HYMEM_RETRY_MIN_WAIT_S", 0.5),
            max_wait_s=_get_env_float("HYMEM_RETRY_MAX_WAIT_S", 4.0),
        )


@dataclass(frozen=True)
class RetrievalConfig:
    candidate_k: int = 50
    semantic_threshold: float = 0.7
    min_score: float = 0.0
    batch_workers: int = 4

    @classmethod
    def from_env(cls) -> "RetrievalConfig":
        return cls(
            candidate_k=_get_env_int("HYMEM_CANDIDATE_K", 50),
            semantic_threshold=_get_env_float("HYMEM_SEMANTIC_THRESHOLD", 0.7),
            min_score=_get_env_float("HYMEM_MIN_SCORE", 0.0),
            batch_workers=_get_env_int("HYMEM_BATCH_WORKERS", 4),
        )


@dataclass(frozen=True)
class HybridMemConfig:
    embedding: EmbeddingConfig
    neo4j: Neo4jConfig
    falkordb: FalkorConfig
    graph: GraphConfig
    vector_index: VectorIndexConfig
    scoring: ScoringConfig
    fusion: FusionConfig
    cache: CacheConfig
    retrieval: RetrievalConfig
    retry: RetryConfig

    @classmethod
    def from_env(cls) -> "HybridMemConfig":
        return cls(
            embedding=EmbeddingConfig.from_env(),
            neo4j=Neo4jConfig.from_env(),
            falkordb=FalkorConfig.from_env(),
            graph=GraphConfig.from_env(),
            vector_index=VectorIndexConfig.from_env(),
            scoring=ScoringConfig.from_env(),
            fusion=FusionConfig.from_env(),
            cache=CacheConfig.from_env(),
            retrieval=RetrievalConfig.from_env(),
            retry=RetryConfig.from_env(),
        )
