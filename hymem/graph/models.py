from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from hymem.utils import as_utc, canonical_pair, clamp01, normalize_entity, parse_iso, to_iso

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class RelationType(str, Enum):
    FRIEND = "friend"
    FAMILY = "family"
    COLLEAGUE = "colleague"
    COUPLE = "couple"
    CLASSMATE = "classmate"
    NEIGHBOR = "neighbor"
    ACQUAINTANCE = "acquaintance"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "RelationType":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN


class RelationSource(str, Enum):
    USER_MENTIONED = "user_mentioned"
    AI_INFERRED = "ai_inferred"
    EVENT_INFERRED = "event_inferred"

    @classmethod
    def parse(cls, value: str | None) -> "RelationSource":
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.AI_INFERRED


@dataclass(frozen=True)
class RelationshipEdge:
    person_a: str
    person_b: str
    relation_type: RelationType
    confidence: float
    valid_from: datetime
    description: str = ""
    source: RelationSource = RelationSource.USER_MENTIONED
    valid_to: datetime | None = None

    @classmethod
    def create(
        cls,
        a: str,
        b: str,
        relation_type: RelationType | str,
        confidence: float,
        valid_from: datetime,
        description: str = "",
        source: RelationSource | str = RelationSource.USER_MENTIONED,
        valid_to: datetime | None = None,
    ) -> "RelationshipEdge":
        left, right = canonical_pair(a, b)
        if not left or not right:
            raise ValueError("relationship endpoints must be non-empty")
        if left == right:
            raise ValueError(f"self relationship is not allowed: {left!r}")
        return cls(
            person_a=left,
            person_b=right,
            relation_type=RelationType.parse(relation_type),
            confidence=clamp01(float(confidence)),
            valid_from=as_utc(valid_from),
            description=description or "",
            source=RelationSource.parse(source),
            valid_to=as_utc(valid_to) if valid_to is not None else None,
        )

    @property
    def key(self) -> tuple[str, str]:
        return self.person_a, self.person_b

    @property
    def strength(self) -> float:
        return self.confidence

    def is_active(self, now: datetime) -> bool:
        return self.valid_to is None or self.valid_to > as_utc(now)

    def involves(self, name: str) -> bool:
        name = normalize_entity(name)
        return name in (self.person_a, self.person_b)

    def other(self, name: str) -> str:
        name = normalize_entity(name)
        if name == self.person_a:
            return self.person_b
        if name == self.person_b:
            return self.person_a
        raise ValueError(f"{name!r} is not an endpoint of {self.person_a}|{self.person_b}")

    def to_params(self) -> dict[str, Any]:
        return {
            "a": self.person_a,
            "b": self.person_b,
            "type": self.relation_type.value,
            "confidence": float(self.confidence),
            "description": self.description,
            "source": self.source.value,
            "valid_from": to_iso(self.valid_from),
            "valid_to": to_iso(self.valid_to),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "RelationshipEdge":
        return cls.create(
            row["a"],
            row["b"],
            row.get("type"),
            float(row.get("confidence") or 0.0),
            parse_iso(row.get("valid_from")) or _EPOCH,
            description=row.get("description") or "",
            source=row.get("source"),
            valid_to=parse_iso(row.get("valid_to")),
        )


@dataclass(frozen=True)
class Community:
    id: int
    members: tuple[str, ...]
    internal_weight: float = 0.0

    @property
    def size(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class CentralityScore:
    name: str
    degree: int
    betweenness: float
    normalized: float
    # Betweenness is a degree-based proxy, not shortest-path counting.
    approximate: bool = True


@dataclass(frozen=True)
class RelationshipPath:
    nodes: tuple[str, ...]
    edges: tuple[RelationshipEdge, ...]

    @property
    def length(self) -> int:
        return len(self.edges)

    @property
    def strength(self) -> float:
        total = 1.0
        for edge in self.edges:
            total *= edge.strength
        return total


@dataclass(frozen=True)
class SecondDegreeRelation:
    start: str
    middle: str
    end: str
    first: RelationType
    second: RelationType
    score: float


@dataclass(frozen=True)
class RelationshipInference:
    person_a: str
    person_b: str
    confidence: float
    label: str
    relation_type: RelationType | None = None
    mutual_neighbors: tuple[str, ...] = ()
    mutual_count: int = 0
    direct: bool = False
    evidence: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Triangle:
    nodes: tuple[str, str, str]
    relation_type: RelationType


@dataclass(frozen=True)
class NetworkStatistics:
    node_count: int
    relation_count: int
    average_degree: float
    community_count: int = 0
    isolated_count: int = 0
    type_counts: dict[str, int] = field(default_factory=dict)
