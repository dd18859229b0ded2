from __future__ import annotations

from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

from ..models import SentimentRecord, SeriesPoint

SERIES_COLUMNS: tuple[str, ...] = (
    "score",
    "limit_up_total",
    "limit_down_total",
    "total_volume",
    "broken_rate",
)
ROLLING_WINDOW = 5


def build_archive_frame(records: Sequence[SentimentRecord], window: int = ROLLING_WINDOW) -> pd.DataFrame:
    """Archive as an ascending-date frame with rolling means for charting."""
    columns = ["date", *SERIES_COLUMNS, "score_ma5", "limit_up_ma5", "total_volume_ma5"]
    if not records:
        return pd.DataFrame(columns=columns)

    frame = pd.DataFrame(
        [{"date": item.date, **{name: getattr(item, name) for name in SERIES_COLUMNS}} for item in records]
    )
    frame = frame.drop_duplicates(subset="date", keep="first").sort_values("date").reset_index(drop=True)
    rolling = frame[["score", "limit_up_total", "total_volume"]].rolling(window=max(1, window), min_periods=1).mean()
    frame["score_ma5"] = np.round(rolling["score"].to_numpy(dtype=float), 2)
    frame["limit_up_ma5"] = np.round(rolling["limit_up_total"].to_numpy(dtype=float), 2)
    frame["total_volume_ma5"] = np.round(rolling["total_volume"].to_numpy(dtype=float), 4)
    return frame[columns]


def build_series_points(records: Sequence[SentimentRecord], window: int = ROLLING_WINDOW) -> list[SeriesPoint]:
    frame = build_archive_frame(records, window=window)
    points: list[SeriesPoint] = []
    for row in frame.to_dict(orient="records"):
        # numpy scalars -> python natives before validation
        points.append(SeriesPoint(**{key: value.item() if isinstance(value, np.generic) else value for key, value in row.items()}))
    return points


def export_archive_csv(records: Sequence[SentimentRecord], out_path: Path, window: int = ROLLING_WINDOW) -> int:
    frame = build_archive_frame(records, window=window)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(out_path, index=False, encoding="utf-8-sig")
    return int(len(frame))
