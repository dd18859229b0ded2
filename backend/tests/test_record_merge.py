from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dragon_faith.core.record_merge import autofill_summary, merge_extraction
from dragon_faith.models import AIExtraction, LadderLevel, SectorTrack, SentimentRecord


def _base_record() -> SentimentRecord:
    return SentimentRecord(
        date="2026-03-09",
        total_volume=1.5,
        limit_up_total=40,
        dragon="旧龙",
        top_sectors=[SectorTrack(name="AI", gain=2.0), SectorTrack(name="机器人"), SectorTrack(name="军工")],
        ladder={"5": LadderLevel(count=1, stock="旧五板", promo_rate=30)},
    )


def test_extraction_parses_legacy_payload_leniently() -> None:
    extraction = AIExtraction.from_payload(
        {
            "indices": {"沪": "0.85%", "深": "abc", "创": -1.2},
            "totalVol": "2.1",
            "volDelta": None,
            "sentiment": {"limitUp": 72.4, "limitDown": "3", "brokenRate": "18%"},
            "sectors": [{"name": "算力", "gain": 5.1, "limitUps": 12, "volume": 300}, "oops"],
            "dragon": "  ",
            "midArmy": "中军一号",
            "ladder": {"5": {"stock": "新五板", "promoRate": "60"}, "9": {"count": 1}},
            "dragonStatus": "flying",
        }
    )
    assert extraction.indices == {"沪": 0.85, "创": -1.2}
    assert extraction.total_volume == 2.1
    assert extraction.volume_delta is None
    assert extraction.limit_up == 72
    assert extraction.limit_down == 3
    assert extraction.broken_rate == 18.0
    assert extraction.sectors[0] is not None and extraction.sectors[0].limit_ups == 12
    assert extraction.sectors[1] is None
    assert extraction.dragon is None
    assert extraction.mid_army == "中军一号"
    assert extraction.ladder == {"5": {"stock": "新五板", "promo_rate": 60.0}}
    assert extraction.dragon_status is None


def test_present_fields_overwrite_and_missing_fields_keep_previous() -> None:
    record = _base_record()
    extraction = AIExtraction.from_payload(
        {
            "indices": {"沪": 1.1, "创": -0.4},
            "sentiment": {"limitUp": 95},
            "sectors": [None, {"name": "算力", "gain": 6.0, "limitUps": 10, "volume": 210}],
            "ladder": {"5": {"stock": "新五板"}},
            "dragonStatus": "broken",
        }
    )
    merged, updated = merge_extraction(record, extraction)

    assert merged.limit_up_total == 95
    assert merged.total_volume == 1.5
    assert merged.dragon == "旧龙"
    assert merged.dragon_status == "broken"

    by_name = {item.name: item for item in merged.indices}
    assert by_name["沪"].change == 1.1 and by_name["沪"].ma5_status == "above"
    assert by_name["创"].change == -0.4 and by_name["创"].ma5_status == "below"
    assert by_name["深"].change == 0.0

    assert [item.name for item in merged.top_sectors] == ["AI", "算力", "军工"]
    assert merged.top_sectors[0].gain == 2.0

    assert merged.ladder["5"].stock == "新五板"
    assert merged.ladder["5"].count == 1
    assert merged.ladder["5"].promo_rate == 30

    assert set(updated) == {"indices", "limit_up_total", "dragon_status", "top_sectors", "ladder"}
    assert record.limit_up_total == 40


def test_empty_extraction_changes_nothing() -> None:
    record = _base_record()
    merged, updated = merge_extraction(record, AIExtraction.from_payload({}))
    assert updated == []
    assert merged == record


def test_autofill_summary_mentions_file_count() -> None:
    assert autofill_summary(3) == "【解析成功】基于 3 个原始信源提炼。已聚焦 1-5B+ 核心梯队。"
