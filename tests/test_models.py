from datetime import date, datetime, timedelta, timezone

import pytest

from hymem.errors import InvalidQueryError
from hymem.memory.models import (
    Anniversary,
    DateRange,
    DaysAgo,
    EmotionTags,
    IntensityRange,
    MemoryCategory,
    MemoryRecord,
    QuerySpec,
    RecentHours,
    SpecificDate,
    ValenceRange,
    matches_temporal,
    temporal_window,
)


def test_record_dict_roundtrip_keeps_fields(make_record):
    record = make_record(
        content="Met Alice at the station",
        category=MemoryCategory.PERSON,
        related_entities=frozenset({"Alice"}),
        emotion_tag="joy",
    )
    restored = MemoryRecord.from_dict(record.to_dict())
    assert restored == record


def test_naive_timestamps_become_utc():
    record = MemoryRecord(
        id="n", content="x", category="fact", importance=0.5, created_at=datetime(2024, 1, 1, 9)
    )
    assert record.created_at.tzinfo is timezone.utc
    assert record.last_accessed_at == record.created_at
    assert record.category is MemoryCategory.FACT


def test_days_ago_window_is_a_day_wide(now):
    start, end = temporal_window(DaysAgo(3), now)
    assert end - start == timedelta(days=1)
    assert start < now - timedelta(days=3) < end


def test_specific_date_and_range(make_record, now):
    record = make_record(days_old=2)
    assert matches_temporal(record, SpecificDate(record.created_at.date()), now)
    assert not matches_temporal(record, SpecificDate(date(2020, 1, 1)), now)
    assert matches_temporal(record, DateRange(now - timedelta(days=5), now), now)
    assert not matches_temporal(record, RecentHours(24), now)


def test_anniversary_matches_date_or_text(make_record, now):
    created = make_record(days_old=365)
    month_day = created.created_at.strftime("%m-%d")
    assert matches_temporal(created, Anniversary(month_day), now)

    mentioned = make_record(content="wedding on 03-14", days_old=1)
    chinese = make_record(content="生日是3月14日", days_old=1)
    assert matches_temporal(mentioned, Anniversary("03-14"), now)
    assert matches_temporal(chinese, Anniversary("03-14"), now)
    assert temporal_window(Anniversary("03-14"), now) is None


@pytest.mark.parametrize(
    "query",
    [
        QuerySpec(limit=0),
        QuerySpec(limit=True),
        QuerySpec(text=""),
        QuerySpec(min_confidence=-0.1),
        QuerySpec(semantic_threshold=1.5),
        QuerySpec(categories=frozenset({"fact"})),
        QuerySpec(entities=("Alice", " ")),
        QuerySpec(temporal=RecentHours(-1)),
        QuerySpec(temporal=Anniversary("13-40")),
        QuerySpec(
            temporal=DateRange(
                datetime(2024, 2, 1, tzinfo=timezone.utc), datetime(2024, 1, 1, tzinfo=timezone.utc)
            )
        ),
        QuerySpec(emotion=IntensityRange(0.9, 0.1)),
        QuerySpec(emotion=ValenceRange(-2.0, 0.0)),
        QuerySpec(emotion=EmotionTags(frozenset())),
        QuerySpec(temporal="last week"),
    ],
)
def test_invalid_queries_raise(query):
    with pytest.raises(InvalidQueryError):
        query.validate()


def test_valid_query_returns_itself():
    query = QuerySpec(text="coffee", categories=frozenset({MemoryCategory.FACT}), limit=3)
    assert query.validate() is query
    assert isinstance(InvalidQueryError("x"), ValueError)
