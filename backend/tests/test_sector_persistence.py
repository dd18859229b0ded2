from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dragon_faith.core.sector_persistence import (
    analyze_persistent_sectors,
    count_persistent_sectors,
    describe_persistence,
    sector_names,
)
from dragon_faith.models import PersistentSector, SectorTrack, SentimentRecord


def _record(date: str, names: list[str]) -> SentimentRecord:
    return SentimentRecord(date=date, top_sectors=[SectorTrack(name=name) for name in names])


def _history() -> list[SentimentRecord]:
    return [
        _record("2026-03-06", ["AI", "半导体"]),
        _record("2026-03-05", ["AI", "机器人"]),
        _record("2026-03-04", ["新能源"]),
        _record("2026-03-03", ["AI"]),
        _record("2026-03-02", []),
    ]


def test_recurring_sector_counts_current_and_history() -> None:
    current = _record("2026-03-09", ["AI", "固态电池"])
    items = analyze_persistent_sectors(current, _history())
    assert items[0] == PersistentSector(name="AI", count=4)
    assert all(item.name != "固态电池" for item in items)
    assert all(item.count >= 2 for item in items)


def test_empty_store_yields_nothing() -> None:
    current = _record("2026-03-09", ["AI", "AI", "机器人"])
    assert analyze_persistent_sectors(current, []) == []


def test_single_day_threshold_lists_working_sectors_without_history() -> None:
    current = _record("2026-03-09", ["AI", "AI", "机器人"])
    assert analyze_persistent_sectors(current, [], min_count=1) == [
        PersistentSector(name="AI", count=1),
        PersistentSector(name="机器人", count=1),
    ]


def test_only_most_recent_records_are_considered() -> None:
    history = _history() + [_record("2026-03-01", ["新能源"]), _record("2026-02-27", ["新能源"])]
    current = _record("2026-03-09", [])
    items = analyze_persistent_sectors(current, history, lookback=5)
    assert [item.name for item in items] == ["AI"]


def test_blank_names_are_ignored() -> None:
    current = _record("2026-03-09", ["  ", "机器人 "])
    history = [_record("2026-03-06", ["", "机器人"]), _record("2026-03-05", ["   "])]
    items = analyze_persistent_sectors(current, history)
    assert items == [PersistentSector(name="机器人", count=2)]


def test_same_day_duplicates_count_once() -> None:
    record = _record("2026-03-09", ["AI", " AI", "机器人"])
    assert sector_names(record) == ["AI", "机器人"]
    items = analyze_persistent_sectors(record, [_record("2026-03-06", ["AI", "AI"])])
    assert items == [PersistentSector(name="AI", count=2)]


def test_ties_keep_first_seen_order() -> None:
    groups = [["机器人", "AI"], ["AI", "机器人"], ["新能源"], ["新能源"], ["新能源"]]
    items = count_persistent_sectors(groups, min_count=2)
    assert [(item.name, item.count) for item in items] == [("新能源", 3), ("机器人", 2), ("AI", 2)]


def test_describe_persistence_mentions_counts() -> None:
    assert "暂无" in describe_persistence([])
    text = describe_persistence([PersistentSector(name="AI", count=4)], lookback=5)
    assert "[AI](5日内出现4次)" in text
