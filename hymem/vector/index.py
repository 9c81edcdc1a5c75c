import hashlib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np

from hymem.cache import TTLCache
from hymem.config import VectorIndexConfig
from hymem.memory.models import VectorEntry
from hymem.utils import cosine_similarity

logger = logging.getLogger(__name__)


def _metadata_key(key: str, value: Any) -> str:
    return f"{key}:{value}"


def _filter_hash(metadata_filter: Mapping[str, Any] | None) -> str:
    if not metadata_filter:
        return "-"
    items = sorted((str(k), str(v)) for k, v in metadata_filter.items())
    return hashlib.sha1(repr(items).encode("utf-8")).hexdigest()[:16]


def _vector_hash(vector: np.ndarray) -> str:
    return hashlib.sha1(vector.astype(np.float64).tobytes()).hexdigest()[:16]


@dataclass
class LSHVectorIndex:
    """Random-projection LSH over cosine similarity.

    Each of the ``num_tables`` tables hashes a vector to the sign pattern of its
    dot products with ``num_hash_functions`` fixed unit projections. A query
    only scores ids that share a bucket with it in at least one table, which
    keeps search sub-linear; exact cosine is computed for that subset only.
    """

    config: VectorIndexConfig = field(default_factory=VectorIndexConfig)

    def __post_init__(self) -> None:
        dim = self.config.dimension
        if dim < 1:
            raise ValueError(f"dimension must be positive, got {dim}")
        rng = np.random.default_rng(self.config.seed)
        projections = rng.standard_normal(
            (self.config.num_tables, self.config.num_hash_functions, dim)
        )
        norms = np.linalg.norm(projections, axis=2, keepdims=True)
        norms[norms == 0] = 1.0
        self._projections = projections / norms
        self._tables: list[dict[str, set[str]]] = [{} for _ in range(self.config.num_tables)]
        self._vectors: dict[str, np.ndarray] = {}
        self._metadata: dict[str, dict[str, Any]] = {}
        self._bucket_keys: dict[str, list[str]] = {}
        self._metadata_index: dict[str, set[str]] = {}
        self._lock = threading.RLock()
        self._query_cache = TTLCache(max(self.config.query_cache_size, 1))

    def __len__(self) -> int:
        with self._lock:
            return len(self._vectors)

    def __contains__(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._vectors

    @property
    def dimension(self) -> int:
        return self.config.dimension

    def _as_vector(self, vector: Sequence[float] | np.ndarray) -> np.ndarray:
        arr = np.asarray(vector, dtype=np.float64)
        if arr.ndim != 1 or arr.shape[0] != self.config.dimension:
            raise ValueError(
                f"Expected a vector of dimension {self.config.dimension}, got shape {arr.shape}"
            )
        return arr

    def _hash_keys(self, vector: np.ndarray) -> list[str]:
        # (L, K, D) @ (D,) -> (L, K) dot products
        dots = self._projections @ vector
        bits = dots >= 0
        return ["".join("1" if b else "0" for b in row) for row in bits]

    def add(self, entry: VectorEntry) -> None:
        vector = self._as_vector(entry.vector)
        keys = self._hash_keys(vector)
        with self._lock:
            if entry.id in self._vectors:
                self._remove_locked(entry.id)
            self._vectors[entry.id] = vector
            self._metadata[entry.id] = dict(entry.metadata)
            self._bucket_keys[entry.id] = keys
            for table, key in zip(self._tables, keys):
                table.setdefault(key, set()).add(entry.id)
            for meta_key, meta_value in entry.metadata.items():
                self._metadata_index.setdefault(_metadata_key(meta_key, meta_value), set()).add(
                    entry.id
                )
            self._query_cache.clear()

    def add_many(self, entries: Sequence[VectorEntry]) -> int:
        for entry in entries:
            self.add(entry)
        return len(entries)

    def update(self, entry: VectorEntry) -> None:
        with self._lock:
            self._remove_locked(entry.id)
            self.add(entry)

    def remove(self, entry_id: str) -> bool:
        with self._lock:
            return self._remove_locked(entry_id)

    def _remove_locked(self, entry_id: str) -> bool:
        if entry_id not in self._vectors:
            return False
        del self._vectors[entry_id]
        for table, key in zip(self._tables, self._bucket_keys.pop(entry_id, [])):
            bucket = table.get(key)
            if bucket is None:
                continue
            bucket.discard(entry_id)
            if not bucket:
                del table[key]
        for meta_key, meta_value in self._metadata.pop(entry_id, {}).items():
            index_key = _metadata_key(meta_key, meta_value)
            ids = self._metadata_index.get(index_key)
            if ids is None:
                continue
            ids.discard(entry_id)
            if not ids:
                del self._metadata_index[index_key]
        self._query_cache.clear()
        return True

    def clear(self) -> None:
        with self._lock:
            for table in self._tables:
                table.clear()
            self._vectors.clear()
            self._metadata.clear()
            self._bucket_keys.clear()
            self._metadata_index.clear()
            self._query_cache.clear()

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._vectors)

    def search(
        self,
        query: Sequence[float] | np.ndarray,
        top_k: int = 10,
        metadata_filter: Mapping[str, Any] | None = None,
    ) -> list[tuple[str, float]]:
        """Top ``top_k`` ``(id, cosine)`` pairs, best first.

        May return fewer than ``top_k`` when the buckets undershoot; callers
        decide whether to fall back to an exhaustive scan.
        """
        if top_k < 1:
            return []
        vector = self._as_vector(query)
        cache_key = f"{_vector_hash(vector)}-{top_k}-{_filter_hash(metadata_filter)}"
        keys = self._hash_keys(vector)
        # Held across lookup and store so a concurrent mutation cannot leave a stale entry.
        with self._lock:
            cached = self._query_cache.get(cache_key)
            if cached is not None:
                return list(cached)
            candidates: set[str] = set()
            for table, key in zip(self._tables, keys):
                candidates.update(table.get(key, ()))
            if metadata_filter:
                for meta_key, meta_value in metadata_filter.items():
                    candidates &= self._metadata_index.get(_metadata_key(meta_key, meta_value), set())
                    if not candidates:
                        break
            scored = [(cid, cosine_similarity(vector, self._vectors[cid])) for cid in candidates]
            scored.sort(key=lambda item: (-item[1], item[0]))
            result = scored[:top_k]
            self._query_cache.set(cache_key, tuple(result))
        logger.debug("LSH search: %d candidates, %d returned", len(candidates), len(result))
        return result

    def batch_search(
        self,
        queries: Sequence[Sequence[float] | np.ndarray],
        top_k: int = 10,
        metadata_filter: Mapping[str, Any] | None = None,
        max_workers: int = 4,
    ) -> list[list[tuple[str, float]]]:
        if not queries:
            return []
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            futures = [pool.submit(self.search, q, top_k, metadata_filter) for q in queries]
            return [future.result() for future in futures]

    def exhaustive_search(
        self,
        query: Sequence[float] | np.ndarray,
        top_k: int = 10,
        metadata_filter: Mapping[str, Any] | None = None,
    ) -> list[tuple[str, float]]:
        vector = self._as_vector(query)
        with self._lock:
            items = list(self._vectors.items())
            metadata = dict(self._metadata)
        scored = []
        for entry_id, stored in items:
            if metadata_filter and any(
                metadata.get(entry_id, {}).get(k) != v for k, v in metadata_filter.items()
            ):
                continue
            scored.append((entry_id, cosine_similarity(vector, stored)))
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[:top_k]

    def stats(self) -> dict[str, Any]:
        with self._lock:
            bucket_sizes = [len(bucket) for table in self._tables for bucket in table.values()]
            metadata_keys = sorted({key.split(":", 1)[0] for key in self._metadata_index})
            vector_count = len(self._vectors)
        cache_stats = self._query_cache.stats()
        return {
            "vectors": vector_count,
            "tables": self.config.num_tables,
            "hash_functions": self.config.num_hash_functions,
            "dimension": self.config.dimension,
            "buckets": len(bucket_sizes),
            "mean_bucket_size": float(np.mean(bucket_sizes)) if bucket_sizes else 0.0,
            "metadata_keys": metadata_keys,
            "cache_hits": cache_stats.hits,
            "cache_misses": cache_stats.misses,
        }
