import math
import re
from datetime import datetime, timezone
from typing import Iterable

import numpy as np

SECONDS_PER_DAY = 86400.0


def normalize_text(text: str) -> str:
    text = text.strip().lower()
    text = re.sub(r"\s+", " ", text)
    return text


def tokenize(text: str) -> list[str]:
    return [token for token in re.split(r"\s+", text.strip()) if token]


def normalize_entity(name: str) -> str:
    return re.sub(r"\s+", " ", name.strip())


def canonical_pair(a: str, b: str) -> tuple[str, str]:
    a = normalize_entity(a)
    b = normalize_entity(b)
    return (a, b) if a <= b else (b, a)


def cosine_similarity(a: Iterable[float] | np.ndarray, b: Iterable[float] | np.ndarray) -> float:
    a_arr = np.asarray(a if isinstance(a, np.ndarray) else list(a), dtype=np.float64)
    b_arr = np.asarray(b if isinstance(b, np.ndarray) else list(b), dtype=np.float64)
    if a_arr.size == 0 or b_arr.size == 0 or a_arr.shape != b_arr.shape:
        return 0.0
    norm_a = math.sqrt(float(np.dot(a_arr, a_arr)))
    norm_b = math.sqrt(float(np.dot(b_arr, b_arr)))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    similarity = float(np.dot(a_arr, b_arr)) / (norm_a * norm_b)
    if math.isnan(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))


def clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def days_between(earlier: datetime, later: datetime) -> float:
    return max((as_utc(later) - as_utc(earlier)).total_seconds() / SECONDS_PER_DAY, 0.0)


def recency_decay(earlier: datetime | None, now: datetime, half_life_days: float = 30.0) -> float:
    """exp(-days / half_life); ``None`` timestamps get a neutral 0.5."""
    if earlier is None:
        return 0.5
    return math.exp(-days_between(earlier, now) / half_life_days)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return as_utc(value).isoformat()


def parse_iso(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value)))
