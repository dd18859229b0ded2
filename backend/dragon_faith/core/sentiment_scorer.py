"""
Sentiment score and market-cycle stage classification.

Reduces a record's sentiment counters to a bounded 0-100 score using a
fixed list of additive rules, then maps the score to a stage label.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from ..models import ScoreAdjustment, ScoreResult, SentimentRecord, TrendPattern

BASELINE_SCORE = 50
SCORE_MIN = 0
SCORE_MAX = 100

STAGE_FRENZY = "主升/狂热"
STAGE_ACCELERATE = "发酵/加速"
STAGE_DIVERGENCE = "分歧/震荡"
STAGE_CHAOS = "混沌期"
STAGE_REPAIR = "修复/试错"
STAGE_ICE = "冰点/退潮"


@dataclass(frozen=True, slots=True)
class ScoreInputs:
    trend: TrendPattern = "range"
    yesterday_gain: float = 0.0
    nuclear_count: int = 0
    limit_up_total: int = 0
    limit_down_total: int = 0
    promotion_rate: float = 0.0

    @classmethod
    def from_record(cls, record: SentimentRecord) -> "ScoreInputs":
        return cls(
            trend=record.trend,
            yesterday_gain=record.yesterday_gain,
            nuclear_count=record.nuclear_count,
            limit_up_total=record.limit_up_total,
            limit_down_total=record.limit_down_total,
            promotion_rate=record.promotion_rate,
        )


@dataclass(frozen=True, slots=True)
class ScoreRule:
    name: str
    delta: int
    applies: Callable[[ScoreInputs], bool]


SCORE_RULES: tuple[ScoreRule, ...] = (
    ScoreRule("trend_v_reversal", 20, lambda x: x.trend == "v_reversal"),
    ScoreRule("trend_cliff_drop", -25, lambda x: x.trend == "cliff_drop"),
    ScoreRule("yesterday_gain_strong", 15, lambda x: x.yesterday_gain > 5),
    ScoreRule("yesterday_gain_weak", -20, lambda x: x.yesterday_gain < -2),
    ScoreRule("nuclear_heavy", -15, lambda x: x.nuclear_count > 10),
    ScoreRule("limit_up_hot", 10, lambda x: x.limit_up_total > 80),
    ScoreRule("limit_up_cold", -10, lambda x: x.limit_up_total < 20),
    ScoreRule("limit_down_heavy", -20, lambda x: x.limit_down_total > 15),
    ScoreRule("promotion_strong", 10, lambda x: x.promotion_rate > 50),
)


def clamp_score(value: int) -> int:
    return max(SCORE_MIN, min(SCORE_MAX, int(value)))


def stage_for_score(score: int, yesterday_gain: float = 0.0) -> str:
    """Map a clamped score to a stage label.

    The 36-49 band reads as chaos unless yesterday's limit-up stocks made
    money, in which case it is a repair phase.
    """
    if score >= 80:
        return STAGE_FRENZY
    if score >= 65:
        return STAGE_ACCELERATE
    if score >= 50:
        return STAGE_DIVERGENCE
    if score > 35:
        return STAGE_REPAIR if yesterday_gain > 0 else STAGE_CHAOS
    return STAGE_ICE


def score_sentiment(inputs: ScoreInputs) -> ScoreResult:
    adjustments = [ScoreAdjustment(rule=rule.name, delta=rule.delta) for rule in SCORE_RULES if rule.applies(inputs)]
    raw_score = BASELINE_SCORE + sum(item.delta for item in adjustments)
    score = clamp_score(raw_score)
    return ScoreResult(
        score=score,
        stage=stage_for_score(score, inputs.yesterday_gain),
        raw_score=raw_score,
        adjustments=adjustments,
    )


def score_record(record: SentimentRecord) -> ScoreResult:
    return score_sentiment(ScoreInputs.from_record(record))


def apply_score(record: SentimentRecord) -> SentimentRecord:
    """Return a copy of record with score and stage derived from its counters."""
    result = score_record(record)
    return record.model_copy(update={"score": result.score, "stage": result.stage}, deep=True)


def nudge_score(record: SentimentRecord, delta: int) -> SentimentRecord:
    """Manual +/- adjustment, clamped; stage follows the band table."""
    score = clamp_score(record.score + delta)
    return record.model_copy(
        update={"score": score, "stage": stage_for_score(score, record.yesterday_gain)},
        deep=True,
    )
