from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Union

from hymem.errors import InvalidQueryError
from hymem.utils import as_utc, parse_iso, to_iso


class MemoryCategory(str, Enum):
    EPISODIC = "episodic"
    SEMANTIC = "semantic"
    PROCEDURAL = "procedural"
    CONTEXTUAL = "contextual"
    PERSON = "person"
    PREFERENCE = "preference"
    FACT = "fact"
    ANNIVERSARY = "anniversary"


class IntentType(str, Enum):
    UNKNOWN = "unknown"
    QUESTION = "question"
    STATEMENT = "statement"
    COMMAND = "command"
    EMOTION = "emotion"
    GREETING = "greeting"
    FAREWELL = "farewell"
    GRATITUDE = "gratitude"
    APOLOGY = "apology"
    AGREEMENT = "agreement"
    DISAGREEMENT = "disagreement"
    DESIRE = "desire"
    PREFERENCE = "preference"
    INFORM = "inform"


@dataclass
class MemoryRecord:
    id: str
    content: str
    category: MemoryCategory
    importance: float
    created_at: datetime
    confidence: float = 1.0
    emotional_valence: float = 0.0
    emotion_intensity: float = 0.0
    emotion_tag: str | None = None
    related_entities: frozenset[str] = frozenset()
    last_accessed_at: datetime | None = None
    access_count: int = 0
    intent: IntentType = IntentType.UNKNOWN
    is_forgotten: bool = False

    def __post_init__(self) -> None:
        self.category = MemoryCategory(self.category)
        self.intent = IntentType(self.intent)
        self.related_entities = frozenset(self.related_entities)
        self.created_at = as_utc(self.created_at)
        if self.last_accessed_at is None:
            self.last_accessed_at = self.created_at
        else:
            self.last_accessed_at = as_utc(self.last_accessed_at)

    def touch(self, now: datetime) -> None:
        self.access_count += 1
        self.last_accessed_at = as_utc(now)

    def mentions(self, entity: str) -> bool:
        needle = entity.casefold()
        if any(name.casefold() == needle for name in self.related_entities):
            return True
        return needle in self.content.casefold()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "category": self.category.value,
            "importance": self.importance,
            "confidence": self.confidence,
            "emotional_valence": self.emotional_valence,
            "emotion_intensity": self.emotion_intensity,
            "emotion_tag": self.emotion_tag,
            "related_entities": sorted(self.related_entities),
            "created_at": to_iso(self.created_at),
            "last_accessed_at": to_iso(self.last_accessed_at),
            "access_count": self.access_count,
            "intent": self.intent.value,
            "is_forgotten": self.is_forgotten,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MemoryRecord":
        return cls(
            id=str(data["id"]),
            content=str(data.get("content") or ""),
            category=MemoryCategory(data.get("category") or MemoryCategory.FACT),
            importance=float(data.get("importance", 0.5)),
            confidence=float(data.get("confidence", 1.0)),
            emotional_valence=float(data.get("emotional_valence", 0.0)),
            emotion_intensity=float(data.get("emotion_intensity", 0.0)),
            emotion_tag=data.get("emotion_tag"),
            related_entities=frozenset(data.get("related_entities") or []),
            created_at=parse_iso(data.get("created_at")) or datetime.now(timezone.utc),
            last_accessed_at=parse_iso(data.get("last_accessed_at")),
            access_count=int(data.get("access_count", 0)),
            intent=IntentType(data.get("intent") or IntentType.UNKNOWN),
            is_forgotten=bool(data.get("is_forgotten", False)),
        )


@dataclass
class VectorEntry:
    id: str
    vector: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


# Temporal predicates


@dataclass(frozen=True)
class RecentHours:
    hours: int


@dataclass(frozen=True)
class RecentDays:
    days: int


@dataclass(frozen=True)
class DaysAgo:
    """A 24 hour window centred on ``now - days``."""

    days: int


@dataclass(frozen=True)
class DateRange:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class SpecificDate:
    day: date


@dataclass(frozen=True)
class Anniversary:
    month_day: str  # "MM-DD"


TemporalPredicate = Union[RecentHours, RecentDays, DaysAgo, DateRange, SpecificDate, Anniversary]

_MONTH_DAY = re.compile(r"^(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")
_HALF_DAY = timedelta(hours=12)


def temporal_window(predicate: TemporalPredicate, now: datetime) -> tuple[datetime, datetime] | None:
    """Concrete [start, end] for a predicate, or None for anniversary matches."""
    now = as_utc(now)
    match predicate:
        case RecentHours(hours=hours):
            return now - timedelta(hours=hours), now
        case RecentDays(days=days):
            return now - timedelta(days=days), now
        case DaysAgo(days=days):
            target = now - timedelta(days=days)
            return target - _HALF_DAY, target + _HALF_DAY
        case DateRange(start=start, end=end):
            return as_utc(start), as_utc(end)
        case SpecificDate(day=day):
            start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
            return start, start + timedelta(days=1)
        case Anniversary():
            return None
    raise InvalidQueryError(f"Unsupported temporal predicate: {predicate!r}")


def matches_temporal(record: MemoryRecord, predicate: TemporalPredicate, now: datetime) -> bool:
    if isinstance(predicate, Anniversary):
        if record.created_at.strftime("%m-%d") == predicate.month_day:
            return True
        month, day = predicate.month_day.split("-")
        return predicate.month_day in record.content or f"{int(month)}月{int(day)}日" in record.content
    window = temporal_window(predicate, now)
    if window is None:
        return False
    start, end = window
    return start <= record.created_at <= end


# Emotion predicates


@dataclass(frozen=True)
class AnyPositive:
    pass


@dataclass(frozen=True)
class AnyNegative:
    pass


@dataclass(frozen=True)
class IntensityRange:
    low: float
    high: float


@dataclass(frozen=True)
class EmotionTags:
    tags: frozenset[str]


@dataclass(frozen=True)
class ValenceRange:
    low: float
    high: float


EmotionPredicate = Union[AnyPositive, AnyNegative, IntensityRange, EmotionTags, ValenceRange]


def _check_unit(name: str, value: float | None, low: float = 0.0, high: float = 1.0) -> None:
    if value is None:
        return
    if not low <= value <= high:
        raise InvalidQueryError(f"{name} must be within [{low}, {high}], got {value}")


def _check_temporal(predicate: TemporalPredicate) -> None:
    match predicate:
        case RecentHours(hours=hours) if hours < 0:
            raise InvalidQueryError(f"RecentHours must be non-negative, got {hours}")
        case RecentDays(days=days) if days < 0:
            raise InvalidQueryError(f"RecentDays must be non-negative, got {days}")
        case DaysAgo(days=days) if days < 0:
            raise InvalidQueryError(f"DaysAgo must be non-negative, got {days}")
        case DateRange(start=start, end=end) if as_utc(start) > as_utc(end):
            raise InvalidQueryError("DateRange start is after end")
        case Anniversary(month_day=month_day) if not _MONTH_DAY.match(month_day):
            raise InvalidQueryError(f"Anniversary expects MM-DD, got {month_day!r}")
        case RecentHours() | RecentDays() | DaysAgo() | DateRange() | SpecificDate() | Anniversary():
            return
        case _:
            raise InvalidQueryError(f"Unsupported temporal predicate: {predicate!r}")


def _check_emotion(predicate: EmotionPredicate) -> None:
    match predicate:
        case IntensityRange(low=low, high=high):
            _check_unit("IntensityRange.low", low)
            _check_unit("IntensityRange.high", high)
            if low > high:
                raise InvalidQueryError("IntensityRange low is above high")
        case ValenceRange(low=low, high=high):
            _check_unit("ValenceRange.low", low, -1.0, 1.0)
            _check_unit("ValenceRange.high", high, -1.0, 1.0)
            if low > high:
                raise InvalidQueryError("ValenceRange low is above high")
        case EmotionTags(tags=tags) if not tags:
            raise InvalidQueryError("EmotionTags needs at least one tag")
        case AnyPositive() | AnyNegative() | EmotionTags():
            return
        case _:
            raise InvalidQueryError(f"Unsupported emotion predicate: {predicate!r}")


@dataclass(frozen=True)
class QuerySpec:
    text: str | None = None
    categories: frozenset[MemoryCategory] | None = None
    temporal: TemporalPredicate | None = None
    entities: tuple[str, ...] = ()
    emotion: EmotionPredicate | None = None
    intent: IntentType | None = None
    min_importance: float | None = None
    min_confidence: float | None = None
    limit: int = 10
    diversify: bool = False
    exclude_forgotten: bool = True
    semantic_threshold: float | None = None

    def validate(self) -> "QuerySpec":
        if not isinstance(self.limit, int) or isinstance(self.limit, bool) or self.limit < 1:
            raise InvalidQueryError(f"limit must be a positive integer, got {self.limit!r}")
        _check_unit("min_importance", self.min_importance)
        _check_unit("min_confidence", self.min_confidence)
        _check_unit("semantic_threshold", self.semantic_threshold, -1.0, 1.0)
        if self.text is not None and not self.text.strip():
            raise InvalidQueryError("text must not be blank when given")
        if self.categories is not None:
            for category in self.categories:
                if not isinstance(category, MemoryCategory):
                    raise InvalidQueryError(f"Unknown category: {category!r}")
        if self.intent is not None and not isinstance(self.intent, IntentType):
            raise InvalidQueryError(f"Unknown intent: {self.intent!r}")
        if any(not isinstance(e, str) or not e.strip() for e in self.entities):
            raise InvalidQueryError("entities must be non-empty strings")
        if self.temporal is not None:
            _check_temporal(self.temporal)
        if self.emotion is not None:
            _check_emotion(self.emotion)
        return self

    def signature(self) -> str:
        return repr(self)


@dataclass(frozen=True)
class ScoreBreakdown:
    semantic: float
    temporal: float
    importance: float
    emotional: float
    entity: float
    intent: float
    relevance: float
    total: float
    centrality: float | None = None
    recency: float | None = None

    def dimensions(self) -> dict[str, float]:
        return {
            "semantic": self.semantic,
            "temporal": self.temporal,
            "importance": self.importance,
            "emotional": self.emotional,
            "entity": self.entity,
            "intent": self.intent,
        }


@dataclass(frozen=True)
class RankedMemory:
    memory: MemoryRecord
    score: float
    breakdown: ScoreBreakdown
    sources: tuple[str, ...] = ("direct",)
    hop: int | None = None
