from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

Ma5Status = Literal["above", "below"]
VolumeMa5Trend = Literal["increasing", "decreasing"]
MainLineState = Literal["confirmed", "rotating", "random"]
DragonStatus = Literal["accelerate", "divergence", "broken", "revive"]
TrendPattern = Literal["v_reversal", "uptrend", "range", "downtrend", "cliff_drop"]
ScoreMode = Literal["derived", "manual"]
CommentaryMode = Literal["full", "optimization", "stock", "sentiment"]
WatchField = Literal["name", "concept", "plan"]

INDEX_NAMES: tuple[str, ...] = ("沪", "深", "创", "科", "300", "1000", "2000", "微盘")
LADDER_LEVELS: tuple[str, ...] = ("5", "4", "3", "2", "1")
TOP_SECTOR_SLOTS = 3
WATCHLIST_SLOTS = 9
DRAGON_STATUSES: tuple[str, ...] = ("accelerate", "divergence", "broken", "revive")


def _alias(name: str, legacy: str) -> AliasChoices:
    return AliasChoices(name, legacy)


class _RecordPart(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ApiErrorPayload(BaseModel):
    code: str
    message: str
    trace_id: str | None = None


class IndexEntry(_RecordPart):
    name: str
    change: float = 0.0
    ma5_status: Ma5Status = Field(default="above", validation_alias=_alias("ma5_status", "ma5Status"))


class SectorTrack(_RecordPart):
    name: str = ""
    gain: float = 0.0
    limit_ups: int = Field(default=0, validation_alias=_alias("limit_ups", "limitUps"))
    volume: float = 0.0


class LadderLevel(_RecordPart):
    count: int = 0
    stock: str = ""
    concept: str = ""
    promo_rate: float = Field(default=0.0, validation_alias=_alias("promo_rate", "promoRate"))


class WatchStock(_RecordPart):
    name: str = ""
    concept: str = ""
    plan: str = ""


class GroundingSource(_RecordPart):
    title: str = ""
    uri: str = ""


def default_indices() -> list[IndexEntry]:
    return [IndexEntry(name=name) for name in INDEX_NAMES]


def default_ladder() -> dict[str, LadderLevel]:
    return {level: LadderLevel() for level in LADDER_LEVELS}


def today_text() -> str:
    return datetime.now().strftime("%Y-%m-%d")


class SentimentRecord(_RecordPart):
    """One trading day of manually recorded (and AI annotated) sentiment data."""

    date: str = Field(default_factory=today_text, pattern=r"^\d{4}-\d{2}-\d{2}$")
    indices: list[IndexEntry] = Field(default_factory=default_indices)
    total_volume: float = Field(default=0.0, validation_alias=_alias("total_volume", "totalVol"))
    volume_delta: float = Field(default=0.0, validation_alias=_alias("volume_delta", "volDelta"))
    volume_ma5: VolumeMa5Trend = Field(default="increasing", validation_alias=_alias("volume_ma5", "volMA5"))
    up_count: int = Field(default=0, validation_alias=_alias("up_count", "upCount"))
    down_count: int = Field(default=0, validation_alias=_alias("down_count", "dnCount"))
    top_sectors: list[SectorTrack] = Field(
        default_factory=lambda: [SectorTrack() for _ in range(TOP_SECTOR_SLOTS)],
        validation_alias=_alias("top_sectors", "topSectors"),
    )
    is_main_line: MainLineState = Field(default="confirmed", validation_alias=_alias("is_main_line", "isMainLine"))
    ladder: dict[str, LadderLevel] = Field(default_factory=default_ladder)
    limit_up_total: int = Field(default=0, validation_alias=_alias("limit_up_total", "limitUpTotal"))
    limit_down_total: int = Field(default=0, validation_alias=_alias("limit_down_total", "limitDownTotal"))
    broken_rate: float = Field(default=0.0, validation_alias=_alias("broken_rate", "brokenRate"))
    trend: TrendPattern = "range"
    yesterday_gain: float = Field(default=0.0, validation_alias=_alias("yesterday_gain", "yesterdayGain"))
    nuclear_count: int = Field(default=0, validation_alias=_alias("nuclear_count", "nuclearCount"))
    promotion_rate: float = Field(default=0.0, validation_alias=_alias("promotion_rate", "promotionRate"))
    dragon: str = ""
    dragon_status: DragonStatus = Field(default="accelerate", validation_alias=_alias("dragon_status", "dragonStatus"))
    mid_army: str = Field(default="", validation_alias=_alias("mid_army", "midArmy"))
    watchlist: list[WatchStock] = Field(default_factory=lambda: [WatchStock() for _ in range(WATCHLIST_SLOTS)])
    reflection: str = ""
    score: int = 50
    stage: str = "混沌期"
    ai_analysis: str = Field(default="", validation_alias=_alias("ai_analysis", "aiAnalysis"))
    ai_cycle: str | None = Field(default=None, validation_alias=_alias("ai_cycle", "aiCycle"))
    sources: list[GroundingSource] = Field(default_factory=list)
    raw_context: str | None = Field(default=None, validation_alias=_alias("raw_context", "rawContext"))

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        if isinstance(value, bool):
            raise ValueError("score must be a number")
        try:
            number = int(round(float(value)))
        except (TypeError, ValueError, OverflowError) as e:
            raise ValueError("score must be a number") from e
        return max(0, min(100, number))

    @field_validator("ladder", mode="before")
    @classmethod
    def _canonical_ladder(cls, value: Any) -> dict[str, Any]:
        raw = value if isinstance(value, dict) else {}
        ladder: dict[str, Any] = {}
        for level in LADDER_LEVELS:
            item = raw.get(level)
            if item is None:
                item = raw.get(int(level)) if isinstance(raw, dict) else None
            ladder[level] = item if item is not None else LadderLevel()
        return ladder

    @model_validator(mode="after")
    def _fixed_slots(self) -> "SentimentRecord":
        if len(self.top_sectors) < TOP_SECTOR_SLOTS:
            self.top_sectors.extend(SectorTrack() for _ in range(TOP_SECTOR_SLOTS - len(self.top_sectors)))
        elif len(self.top_sectors) > TOP_SECTOR_SLOTS:
            self.top_sectors = self.top_sectors[:TOP_SECTOR_SLOTS]
        return self


class RecordSummary(BaseModel):
    date: str
    score: int
    stage: str
    dragon: str
    limit_up_total: int
    total_volume: float


class RecordsResponse(BaseModel):
    items: list[SentimentRecord]
    summaries: list[RecordSummary]
    total: int


class SaveRecordResponse(BaseModel):
    success: bool
    message: str
    record: SentimentRecord
    total: int


class PersistentSector(BaseModel):
    name: str
    count: int


class PersistentSectorsResponse(BaseModel):
    items: list[PersistentSector]
    lookback: int
    min_count: int


class ScoreAdjustment(BaseModel):
    rule: str
    delta: int


class ScoreResult(BaseModel):
    score: int
    stage: str
    raw_score: int
    adjustments: list[ScoreAdjustment] = Field(default_factory=list)


class ScoreAdjustRequest(BaseModel):
    delta: int = Field(ge=-100, le=100)


class WatchlistUpdateRequest(BaseModel):
    field: WatchField
    value: str = ""


class ResetWorkingRequest(BaseModel):
    date: str | None = Field(default=None, pattern=r"^\d{4}-\d{2}-\d{2}$")


class SeriesPoint(BaseModel):
    date: str
    score: int
    limit_up_total: int
    limit_down_total: int
    total_volume: float
    broken_rate: float
    score_ma5: float
    limit_up_ma5: float
    total_volume_ma5: float


class SeriesResponse(BaseModel):
    items: list[SeriesPoint]


class AttachmentInfo(BaseModel):
    index: int
    name: str
    mime_type: str
    size: int
    previewable: bool


class AttachmentsResponse(BaseModel):
    items: list[AttachmentInfo]
    max_items: int


class CommentaryRequest(BaseModel):
    mode: CommentaryMode = "full"
    name: str = ""
    role: str = ""


class AITaskStatus(BaseModel):
    busy: bool
    label: str = ""
    message: str = ""
    started_at: str | None = None


class AIAutofillResponse(BaseModel):
    record: SentimentRecord
    file_count: int
    updated_fields: list[str] = Field(default_factory=list)


class AICommentaryResponse(BaseModel):
    record: SentimentRecord
    ok: bool
    error_code: str | None = None


class AIProviderConfig(BaseModel):
    id: str
    label: str
    base_url: str
    model: str
    api_key: str
    api_key_path: str
    enabled: bool


class AppConfig(BaseModel):
    data_dir: str
    storage_key: str = Field(min_length=1)
    score_mode: ScoreMode = "derived"
    strict_store_load: bool = False
    persistence_lookback: int = Field(default=5, ge=1, le=60)
    persistence_min_count: int = Field(default=2, ge=1, le=60)
    max_attachments: int = Field(default=10, ge=1, le=50)
    ai_provider: str
    ai_timeout_sec: int = Field(default=60, ge=3, le=600)
    api_key: str = ""
    api_key_path: str = ""
    ai_providers: list[AIProviderConfig]


class AIProviderTestRequest(BaseModel):
    provider: AIProviderConfig
    fallback_api_key: str = ""
    fallback_api_key_path: str = ""
    timeout_sec: int = Field(ge=3, le=60, default=10)


class AIProviderTestResponse(BaseModel):
    ok: bool
    provider_id: str
    latency_ms: int
    message: str
    error_code: str | None = None


class AIExtraction(BaseModel):
    """Partial market snapshot returned by the autofill call.

    Every field is optional; values that fail to coerce are dropped so the
    merge step can keep the previous value instead.
    """

    model_config = ConfigDict(extra="ignore")

    indices: dict[str, float] = Field(default_factory=dict)
    total_volume: float | None = None
    volume_delta: float | None = None
    limit_up: int | None = None
    limit_down: int | None = None
    broken_rate: float | None = None
    sectors: list[SectorTrack | None] = Field(default_factory=list)
    dragon: str | None = None
    mid_army: str | None = None
    ladder: dict[str, dict[str, Any]] = Field(default_factory=dict)
    dragon_status: DragonStatus | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AIExtraction":
        sentiment = payload.get("sentiment") if isinstance(payload.get("sentiment"), dict) else {}

        indices: dict[str, float] = {}
        raw_indices = payload.get("indices")
        if isinstance(raw_indices, dict):
            for name, value in raw_indices.items():
                number = _as_float(value)
                if number is not None:
                    indices[str(name).strip()] = number

        # Positional: a missing or malformed slot keeps the previous sector.
        sectors: list[SectorTrack | None] = []
        raw_sectors = payload.get("sectors")
        if isinstance(raw_sectors, list):
            for item in raw_sectors:
                if not isinstance(item, dict):
                    sectors.append(None)
                    continue
                try:
                    sectors.append(SectorTrack.model_validate(item))
                except ValueError:
                    sectors.append(None)

        ladder: dict[str, dict[str, Any]] = {}
        raw_ladder = payload.get("ladder")
        if isinstance(raw_ladder, dict):
            for level, item in raw_ladder.items():
                key = str(level).strip()
                if key in LADDER_LEVELS and isinstance(item, dict):
                    ladder[key] = _clean_ladder_fields(item)

        dragon_status = payload.get("dragonStatus", payload.get("dragon_status"))
        return cls.model_construct(
            indices=indices,
            total_volume=_as_float(payload.get("totalVol", payload.get("total_volume"))),
            volume_delta=_as_float(payload.get("volDelta", payload.get("volume_delta"))),
            limit_up=_as_int(sentiment.get("limitUp", sentiment.get("limit_up"))),
            limit_down=_as_int(sentiment.get("limitDown", sentiment.get("limit_down"))),
            broken_rate=_as_float(sentiment.get("brokenRate", sentiment.get("broken_rate"))),
            sectors=sectors,
            dragon=_as_text(payload.get("dragon")),
            mid_army=_as_text(payload.get("midArmy", payload.get("mid_army"))),
            ladder=ladder,
            dragon_status=dragon_status if dragon_status in DRAGON_STATUSES else None,
        )


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def _as_int(value: Any) -> int | None:
    number = _as_float(value)
    if number is None:
        return None
    return int(round(number))


def _as_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _clean_ladder_fields(item: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    count = _as_int(item.get("count"))
    if count is not None:
        fields["count"] = count
    promo_rate = _as_float(item.get("promoRate", item.get("promo_rate")))
    if promo_rate is not None:
        fields["promo_rate"] = promo_rate
    for key in ("stock", "concept"):
        text = _as_text(item.get(key))
        if text is not None:
            fields[key] = text
    return fields
