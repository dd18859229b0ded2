from __future__ import annotations

import csv
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dragon_faith.core.archive_series import build_series_points, export_archive_csv
from dragon_faith.core.attachments import AttachmentTray, encode_upload, guess_mime_type
from dragon_faith.models import SentimentRecord


def test_tray_keeps_newest_ten_files() -> None:
    tray = AttachmentTray(max_items=10)
    tray.add([encode_upload(f"shot-{i}.png", b"img") for i in range(8)])
    tray.add([encode_upload(f"shot-{i}.png", b"img") for i in range(8, 12)])
    names = [item.name for item in tray.snapshot()]
    assert len(names) == 10
    assert names[0] == "shot-2.png"
    assert names[-1] == "shot-11.png"


def test_tray_resize_evicts_oldest() -> None:
    tray = AttachmentTray(max_items=10)
    tray.add([encode_upload(f"shot-{i}.png", b"img") for i in range(6)])
    tray.resize(3)
    assert tray.max_items == 3
    assert [item.name for item in tray.snapshot()] == ["shot-3.png", "shot-4.png", "shot-5.png"]
    tray.resize(8)
    assert len(tray) == 3


def test_tray_describe_and_remove() -> None:
    tray = AttachmentTray()
    tray.add([encode_upload("board.png", b"abc"), encode_upload("report.pdf", b"%PDF")])
    info = tray.describe()
    assert [(item.index, item.mime_type, item.previewable) for item in info] == [
        (0, "image/png", True),
        (1, "application/pdf", False),
    ]
    assert info[0].size == 3
    assert tray.remove(5) is False
    assert tray.remove(0) is True
    assert [item.name for item in tray.snapshot()] == ["report.pdf"]


def test_upload_encoding() -> None:
    upload = encode_upload("notes.txt", "情绪冰点".encode("utf-8"), "")
    assert upload.mime_type == "text/plain"
    assert upload.decoded_text() == "情绪冰点"
    assert upload.data_uri().startswith("data:text/plain;base64,")
    assert guess_mime_type("x.bin", "application/octet-stream") == "application/octet-stream"
    assert guess_mime_type("x.png", "IMAGE/PNG") == "image/png"


def _records() -> list[SentimentRecord]:
    return [
        SentimentRecord(date="2026-03-04", score=40, limit_up_total=30, total_volume=1.0),
        SentimentRecord(date="2026-03-06", score=60, limit_up_total=50, total_volume=2.0),
        SentimentRecord(date="2026-03-05", score=50, limit_up_total=40, total_volume=1.5),
    ]


def test_series_is_ascending_with_rolling_means() -> None:
    points = build_series_points(_records(), window=2)
    assert [point.date for point in points] == ["2026-03-04", "2026-03-05", "2026-03-06"]
    assert points[0].score_ma5 == 40
    assert points[1].score_ma5 == 45
    assert points[2].score_ma5 == 55
    assert points[2].limit_up_ma5 == 45
    assert points[2].total_volume_ma5 == 1.75


def test_series_of_empty_archive() -> None:
    assert build_series_points([]) == []


def test_export_archive_csv(tmp_path: Path) -> None:
    out_path = tmp_path / "out" / "archive.csv"
    rows = export_archive_csv(_records(), out_path)
    assert rows == 3
    with open(out_path, "r", encoding="utf-8-sig", newline="") as fp:
        data = list(csv.DictReader(fp))
    assert [row["date"] for row in data] == ["2026-03-04", "2026-03-05", "2026-03-06"]
    assert float(data[-1]["score_ma5"]) == 50.0
