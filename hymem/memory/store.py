import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable

from hymem.memory.models import (
    MemoryCategory,
    MemoryRecord,
    TemporalPredicate,
    matches_temporal,
)

logger = logging.getLogger(__name__)


@dataclass
class MemoryStore:
    """In-process record store the retriever resolves index ids against."""

    _records: dict[str, MemoryRecord] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, memory_id: str) -> bool:
        with self._lock:
            return memory_id in self._records

    def add(self, record: MemoryRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def add_many(self, records: Iterable[MemoryRecord]) -> int:
        count = 0
        with self._lock:
            for record in records:
                self._records[record.id] = record
                count += 1
        return count

    def get(self, memory_id: str) -> MemoryRecord | None:
        with self._lock:
            return self._records.get(memory_id)

    def remove(self, memory_id: str) -> bool:
        with self._lock:
            return self._records.pop(memory_id, None) is not None

    def all(self, include_forgotten: bool = False) -> list[MemoryRecord]:
        with self._lock:
            records = list(self._records.values())
        if include_forgotten:
            return records
        return [r for r in records if not r.is_forgotten]

    def by_category(self, categories: Iterable[MemoryCategory]) -> list[MemoryRecord]:
        wanted = set(categories)
        return [r for r in self.all(include_forgotten=True) if r.category in wanted]

    def by_entities(self, entities: Iterable[str]) -> list[MemoryRecord]:
        names = [e for e in entities if e]
        if not names:
            return []
        return [
            r
            for r in self.all(include_forgotten=True)
            if any(r.mentions(name) for name in names)
        ]

    def by_temporal(self, predicate: TemporalPredicate, now: datetime) -> list[MemoryRecord]:
        return [
            r for r in self.all(include_forgotten=True) if matches_temporal(r, predicate, now)
        ]

    def touch(self, memory_id: str, now: datetime) -> None:
        with self._lock:
            record = self._records.get(memory_id)
            if record is not None:
                record.touch(now)

    def load_jsonl(self, path: str | Path) -> int:
        count = 0
        with Path(path).open("r", encoding="utf-8") as handle:
            for line_no, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError as exc:
                    logger.warning("Skipping malformed line %d in %s: %s", line_no, path, exc)
                    continue
                self.add(MemoryRecord.from_dict(payload))
                count += 1
        logger.info("Loaded %d memories from %s", count, path)
        return count

    def dump_jsonl(self, path: str | Path) -> int:
        records = self.all(include_forgotten=True)
        with Path(path).open("w", encoding="utf-8") as handle:
            for record in records:
                handle.write(json.dumps(record.to_dict(), ensure_ascii=False) + "\n")
        return len(records)
