import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable

from hymem.config import CacheConfig
from hymem.utils import canonical_pair, normalize_entity

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "size": self.size,
            "hit_rate": self.hit_rate,
        }


@dataclass
class TTLCache:
    """Bounded LRU cache whose entries also expire after ``ttl_s`` seconds.

    ``ttl_s=None`` disables expiry, which turns this into a plain LRU.
    """

    max_size: int
    ttl_s: float | None = None
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        if self.max_size < 1:
            raise ValueError(f"max_size must be positive, got {self.max_size}")
        self._data: OrderedDict[Hashable, tuple[Any, float | None]] = OrderedDict()
        self._lock = threading.RLock()
        self._stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING, record=False) is not _MISSING

    def _expired(self, deadline: float | None, now: float) -> bool:
        return deadline is not None and now >= deadline

    def get(self, key: Hashable, default: Any = None, record: bool = True) -> Any:
        with self._lock:
            entry = self._data.get(key, _MISSING)
            if entry is _MISSING:
                if record:
                    self._stats.misses += 1
                return default
            value, deadline = entry
            if self._expired(deadline, self.clock()):
                del self._data[key]
                self._stats.expirations += 1
                if record:
                    self._stats.misses += 1
                return default
            self._data.move_to_end(key)
            if record:
                self._stats.hits += 1
            return value

    def set(self, key: Hashable, value: Any) -> None:
        deadline = self.clock() + self.ttl_s if self.ttl_s is not None else None
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            self._data[key] = (value, deadline)
            while len(self._data) > self.max_size:
                self._data.popitem(last=False)
                self._stats.evictions += 1

    def get_or_compute(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = compute()
        self.set(key, value)
        return value

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            return self._data.pop(key, _MISSING) is not _MISSING

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def cleanup_expired(self) -> int:
        now = self.clock()
        with self._lock:
            doomed = [key for key, (_, deadline) in self._data.items() if self._expired(deadline, now)]
            for key in doomed:
                del self._data[key]
            self._stats.expirations += len(doomed)
        return len(doomed)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                evictions=self._stats.evictions,
                expirations=self._stats.expirations,
                size=len(self._data),
            )


def pair_key(a: str, b: str) -> str:
    left, right = canonical_pair(a, b)
    return f"{left}|{right}"


def path_key(a: str, b: str) -> str:
    return f"{normalize_entity(a)}->{normalize_entity(b)}"


@dataclass
class RelationshipCache:
    config: CacheConfig = field(default_factory=CacheConfig)
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        self.relations = TTLCache(self.config.relation_max, self.config.relation_ttl_s, self.clock)
        self.persons = TTLCache(self.config.person_max, self.config.person_ttl_s, self.clock)
        self.paths = TTLCache(self.config.path_max, self.config.path_ttl_s, self.clock)
        self.queries = TTLCache(self.config.query_max, self.config.query_ttl_s, self.clock)

    def _scopes(self) -> dict[str, TTLCache]:
        return {
            "relations": self.relations,
            "persons": self.persons,
            "paths": self.paths,
            "queries": self.queries,
        }

    def get_relation(self, a: str, b: str) -> Any:
        return self.relations.get(pair_key(a, b), _MISSING)

    def put_relation(self, a: str, b: str, value: Any) -> None:
        self.relations.set(pair_key(a, b), value)

    def get_person(self, name: str) -> Any:
        return self.persons.get(normalize_entity(name), _MISSING)

    def put_person(self, name: str, value: Any) -> None:
        self.persons.set(normalize_entity(name), value)

    def get_path(self, a: str, b: str) -> Any:
        return self.paths.get(path_key(a, b), _MISSING)

    def put_path(self, a: str, b: str, value: Any) -> None:
        self.paths.set(path_key(a, b), value)

    def get_query(self, signature: str) -> Any:
        return self.queries.get(signature, _MISSING)

    def put_query(self, signature: str, value: Any) -> None:
        self.queries.set(signature, value)

    @staticmethod
    def is_miss(value: Any) -> bool:
        return value is _MISSING

    def invalidate_relationship(self, a: str, b: str) -> None:
        """Drop everything a write to the ``a``/``b`` edge could make stale."""
        left, right = normalize_entity(a), normalize_entity(b)
        self.relations.invalidate(pair_key(left, right))
        self.persons.invalidate(left)
        self.persons.invalidate(right)
        # Any cached path, or cached absence of one, may route through this edge.
        dropped = len(self.paths)
        self.paths.clear()
        # Query results are computed from the whole graph.
        self.queries.clear()
        logger.debug("Invalidated caches for %s|%s (%d paths)", left, right, dropped)

    def invalidate_all(self) -> None:
        for cache in self._scopes().values():
            cache.clear()

    def cleanup_expired(self) -> int:
        return sum(cache.cleanup_expired() for cache in self._scopes().values())

    def stats(self) -> dict[str, Any]:
        per_scope = {name: cache.stats() for name, cache in self._scopes().items()}
        hits = sum(s.hits for s in per_scope.values())
        misses = sum(s.misses for s in per_scope.values())
        result: dict[str, Any] = {name: s.as_dict() for name, s in per_scope.items()}
        result["hit_rate"] = hits / (hits + misses) if hits + misses else 0.0
        return result
