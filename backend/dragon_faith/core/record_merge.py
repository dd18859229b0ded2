"""
Merge of AI-extracted market data into a working record.

A field that came back present and well typed overwrites the record; a
missing or invalid field keeps the previous value.
"""

from __future__ import annotations

from ..models import AIExtraction, IndexEntry, LadderLevel, SectorTrack, SentimentRecord


def autofill_summary(file_count: int) -> str:
    return f"【解析成功】基于 {file_count} 个原始信源提炼。已聚焦 1-5B+ 核心梯队。"


def merge_extraction(
    record: SentimentRecord,
    extraction: AIExtraction,
) -> tuple[SentimentRecord, list[str]]:
    """
    Apply an extraction to a copy of record.

    Returns:
        (merged record, names of the fields that changed source)
    """
    updated: list[str] = []
    update: dict[str, object] = {}

    if extraction.indices:
        indices: list[IndexEntry] = []
        for entry in record.indices:
            change = extraction.indices.get(entry.name)
            if change is None:
                indices.append(entry.model_copy())
                continue
            indices.append(
                entry.model_copy(update={"change": change, "ma5_status": "above" if change >= 0 else "below"})
            )
        update["indices"] = indices
        updated.append("indices")

    scalar_fields = (
        ("total_volume", extraction.total_volume),
        ("volume_delta", extraction.volume_delta),
        ("limit_up_total", extraction.limit_up),
        ("limit_down_total", extraction.limit_down),
        ("broken_rate", extraction.broken_rate),
        ("dragon", extraction.dragon),
        ("mid_army", extraction.mid_army),
        ("dragon_status", extraction.dragon_status),
    )
    for name, value in scalar_fields:
        if value is not None:
            update[name] = value
            updated.append(name)

    if extraction.sectors:
        sectors: list[SectorTrack] = []
        for slot, current in enumerate(record.top_sectors):
            incoming = extraction.sectors[slot] if slot < len(extraction.sectors) else None
            sectors.append(incoming.model_copy() if incoming is not None else current.model_copy())
        update["top_sectors"] = sectors
        updated.append("top_sectors")

    if extraction.ladder:
        ladder: dict[str, LadderLevel] = {}
        for level, current in record.ladder.items():
            fields = extraction.ladder.get(level)
            ladder[level] = current.model_copy(update=fields) if fields else current.model_copy()
        update["ladder"] = ladder
        updated.append("ladder")

    merged = record.model_copy(update=update, deep=True)
    return merged, updated
