import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from hymem.config import ScoringConfig
from hymem.memory.models import (
    AnyNegative,
    AnyPositive,
    EmotionTags,
    IntensityRange,
    MemoryRecord,
    QuerySpec,
    RankedMemory,
    ScoreBreakdown,
    ValenceRange,
    matches_temporal,
)
from hymem.utils import clamp01, days_between, tokenize

logger = logging.getLogger(__name__)

NEUTRAL = 0.5
UNMATCHED_EMOTION = 0.2
OUTSIDE_INTENSITY = 0.3
INTENT_MISMATCH = 0.3
POSITIVE_VALENCE = 0.3
NEGATIVE_VALENCE = -0.3


@dataclass
class MultiDimensionalScorer:
    config: ScoringConfig = field(default_factory=ScoringConfig)

    def _safe(self, name: str, fn: Callable[[], float]) -> float:
        try:
            return clamp01(float(fn()))
        except Exception:
            logger.exception("Scoring dimension %s failed; using neutral value", name)
            return NEUTRAL

    def semantic(self, record: MemoryRecord, query: QuerySpec) -> float:
        if not query.text:
            return NEUTRAL
        tokens = tokenize(query.text.casefold())
        if not tokens:
            return NEUTRAL
        content = record.content.casefold()
        matched = sum(1 for token in tokens if token in content)
        return matched / len(tokens)

    def temporal(self, record: MemoryRecord, query: QuerySpec, now: datetime) -> float:
        days = days_between(record.last_accessed_at or record.created_at, now)
        recency = math.exp(-days / self.config.recency_half_life_days)
        if query.temporal is None:
            return recency
        if matches_temporal(record, query.temporal, now):
            return min(recency * self.config.in_window_boost, 1.0)
        return recency * self.config.out_of_window_factor

    def importance(self, record: MemoryRecord) -> float:
        return 0.7 * record.importance + 0.3 * record.confidence

    def emotional(self, record: MemoryRecord, query: QuerySpec) -> float:
        intensity = record.emotion_intensity
        valence = record.emotional_valence
        match query.emotion:
            case None:
                return NEUTRAL
            case AnyPositive():
                return intensity if valence > POSITIVE_VALENCE else UNMATCHED_EMOTION
            case AnyNegative():
                return intensity if valence < NEGATIVE_VALENCE else UNMATCHED_EMOTION
            case IntensityRange(low=low, high=high):
                return 1.0 if low <= intensity <= high else OUTSIDE_INTENSITY
            case EmotionTags(tags=tags):
                wanted = {t.casefold() for t in tags}
                tag = (record.emotion_tag or "").casefold()
                return intensity if tag and tag in wanted else UNMATCHED_EMOTION
            case ValenceRange(low=low, high=high):
                return intensity if low <= valence <= high else UNMATCHED_EMOTION
        return NEUTRAL

    def entity(self, record: MemoryRecord, query: QuerySpec) -> float:
        if not query.entities:
            return NEUTRAL
        matched = sum(1 for name in query.entities if record.mentions(name))
        return matched / len(query.entities)

    def intent(self, record: MemoryRecord, query: QuerySpec) -> float:
        if query.intent is None:
            return NEUTRAL
        return 1.0 if record.intent == query.intent else INTENT_MISMATCH

    def score(self, record: MemoryRecord, query: QuerySpec, now: datetime) -> ScoreBreakdown:
        semantic = self._safe("semantic", lambda: self.semantic(record, query))
        temporal = self._safe("temporal", lambda: self.temporal(record, query, now))
        importance = self._safe("importance", lambda: self.importance(record))
        emotional = self._safe("emotional", lambda: self.emotional(record, query))
        entity = self._safe("entity", lambda: self.entity(record, query))
        intent = self._safe("intent", lambda: self.intent(record, query))
        c = self.config
        relevance = (
            c.weight_semantic * semantic
            + c.weight_temporal * temporal
            + c.weight_importance * importance
            + c.weight_emotional * emotional
            + c.weight_entity * entity
            + c.weight_intent * intent
        )
        relevance = clamp01(relevance)
        return ScoreBreakdown(
            semantic=semantic,
            temporal=temporal,
            importance=importance,
            emotional=emotional,
            entity=entity,
            intent=intent,
            relevance=relevance,
            total=relevance,
        )

    def rank(self, records: list[MemoryRecord], query: QuerySpec, now: datetime) -> list[RankedMemory]:
        ranked = []
        for record in records:
            breakdown = self.score(record, query, now)
            ranked.append(RankedMemory(memory=record, score=breakdown.total, breakdown=breakdown))
        return sort_ranked(ranked)


def _rank_key(item: RankedMemory):
    accessed = item.memory.last_accessed_at or item.memory.created_at
    return (-item.score, -accessed.timestamp(), item.memory.id)


def sort_ranked(items: list[RankedMemory]) -> list[RankedMemory]:
    """Score descending; ties go to the most recently accessed record."""
    return sorted(items, key=_rank_key)


def diversify(ranked: list[RankedMemory], limit: int) -> list[RankedMemory]:
    """Pick ``limit`` results covering as many categories as possible.

    The first pass takes the best record of each category, in rank order, so
    the categories whose best candidates rank highest are covered first. The
    second pass fills the remaining slots by score.
    """
    ordered = sort_ranked(ranked)
    if len(ordered) <= limit:
        return ordered
    chosen: list[RankedMemory] = []
    chosen_ids: set[str] = set()
    seen_categories = set()
    for item in ordered:
        if len(chosen) >= limit:
            break
        if item.memory.category in seen_categories:
            continue
        seen_categories.add(item.memory.category)
        chosen.append(item)
        chosen_ids.add(item.memory.id)
    for item in ordered:
        if len(chosen) >= limit:
            break
        if item.memory.id not in chosen_ids:
            chosen.append(item)
            chosen_ids.add(item.memory.id)
    return sort_ranked(chosen)
