"""
Persistent sector detection.

Counts how often each top-sector name shows up across the working record
and the most recent stored records, surfacing recurring market themes.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from ..models import PersistentSector, SentimentRecord

DEFAULT_LOOKBACK = 5
DEFAULT_MIN_COUNT = 2


def sector_names(record: SentimentRecord) -> list[str]:
    """Distinct, trimmed, non-blank sector names of one record, in slot order."""
    names: list[str] = []
    for sector in record.top_sectors:
        name = sector.name.strip()
        if name and name not in names:
            names.append(name)
    return names


def count_persistent_sectors(
    name_groups: Iterable[Sequence[str]],
    *,
    min_count: int = DEFAULT_MIN_COUNT,
) -> list[PersistentSector]:
    """
    Count names over day groups and keep the ones seen at least min_count times.

    Each group is one trading day. Ties keep the order in which a name was
    first seen.
    """
    counts: dict[str, int] = {}
    for group in name_groups:
        for name in group:
            counts[name] = counts.get(name, 0) + 1

    ranked = [PersistentSector(name=name, count=count) for name, count in counts.items() if count >= min_count]
    # sorted() is stable, so first-seen order survives for equal counts.
    return sorted(ranked, key=lambda item: item.count, reverse=True)


def analyze_persistent_sectors(
    current: SentimentRecord,
    history: Sequence[SentimentRecord],
    *,
    lookback: int = DEFAULT_LOOKBACK,
    min_count: int = DEFAULT_MIN_COUNT,
) -> list[PersistentSector]:
    """
    Find sectors recurring across the working record and recent history.

    Args:
        current: Working record being edited
        history: Stored records, already sorted by date descending
        lookback: Number of stored records to consider
        min_count: Minimum number of days a sector must appear on

    Returns:
        Persistent sectors ordered by count descending
    """
    recent = list(history[: max(0, lookback)])
    groups = [sector_names(current)]
    groups.extend(sector_names(record) for record in recent)
    return count_persistent_sectors(groups, min_count=min_count)


def describe_persistence(items: Sequence[PersistentSector], lookback: int = DEFAULT_LOOKBACK) -> str:
    """Prompt fragment describing persistent sectors."""
    if not items:
        return "【主线持续性监控】：暂无明显重复出现的主线板块。"
    joined = ", ".join(f"[{item.name}]({lookback}日内出现{item.count}次)" for item in items)
    return f"【主线持续性监控】：发现板块 {joined}。这些可能为近期真正的核心主线。"
