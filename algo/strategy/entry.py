"""入场评分（EntryScorer）。

四个分项累加成 total：
- momentum（最高 42）：Williams %R / CCI / ROC / RVI / Ichimoku / Hurst
- volume（最高 34）：OBV / VPT / A/D / MFI / 主动买卖量 / 价值区
- volatility（最高 20）：ATR 分位 / 布林挤压 / GARCH / 分形维数
- range（最高 10）：Keltner / UO / Stochastic / SAR / 买卖失衡 / 流动性效率

total 达到 entry_threshold 才允许入场；confidence/timing 只影响日志与执行时机。
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from algo.factors.snapshot import CloudSignal, IndicatorSnapshot
from shared.config.schema import EntryConfig
from shared.utils.logging import setup_logger

logger = setup_logger("entry")


class Confidence(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class Timing(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    WAIT = "WAIT"
    AVOID = "AVOID"


@dataclass(frozen=True)
class EntryScore:
    total: float
    momentum: float
    volume: float
    volatility: float
    range: float


def _momentum(s: IndicatorSnapshot) -> float:
    points = 0.0
    if s.williams_r < -80:
        points += 8
    elif s.williams_r < -60:
        points += 4
    if s.cci < -100:
        points += 8
    elif s.cci < -50:
        points += 4
    if s.roc > 2:
        points += 8
    elif s.roc > 1:
        points += 4
    if s.rvi > s.rvi_signal:
        points += 6
    elif s.rvi > 0:
        points += 3
    if s.ichimoku.signal == CloudSignal.BULLISH:
        points += 8
    elif s.ichimoku.signal == CloudSignal.NEUTRAL:
        points += 2
    if s.hurst_exponent > 0.6:
        points += 4
    elif s.hurst_exponent > 0.5:
        points += 2
    return points


def _in_value_area(s: IndicatorSnapshot) -> bool:
    vp = s.volume_profile
    return vp.point_of_control > 0 and vp.value_area_low <= s.price <= vp.value_area_high


def _volume(s: IndicatorSnapshot) -> float:
    points = 0.0
    if s.obv > 0:
        points += 6
    if s.vpt > 0:
        points += 6
    if s.ad_line > 0:
        points += 4
    if s.mfi < 20:
        points += 4
    if s.smart_money.delta > 0:
        points += 5
    if s.smart_money.cvd > 0:
        points += 3
    if s.smart_money.order_flow > 0.1:
        points += 2
    if _in_value_area(s):
        points += 4
    return points


def _volatility(s: IndicatorSnapshot) -> float:
    points = 0.0
    if s.atr_percentile > 80:
        points += 8
    elif s.atr_percentile > 60:
        points += 4
    if s.bb_squeeze:
        points += 6
    if s.garch_volatility > 0.02:
        points += 4
    elif s.garch_volatility > 0.01:
        points += 2
    if s.fractal_dimension < 1.3:
        points += 2
    return points


def _range(s: IndicatorSnapshot) -> float:
    points = 0.0
    if s.keltner_touch:
        points += 2
    if s.uo < 30:
        points += 2
    if s.stochastic.k < 20:
        points += 2
    if 0 < s.parabolic_sar < s.price:
        points += 1
    if s.smart_money.imbalance_ratio > 1.2:
        points += 2
    if s.liquidity.efficiency < 0.001:
        points += 1
    return points


class EntryScorer:
    """把指标快照映射为入场评分与决策。"""

    def __init__(self, cfg: EntryConfig | None = None):
        self.cfg = cfg or EntryConfig()

    def score(self, snapshot: IndicatorSnapshot) -> EntryScore:
        momentum = _momentum(snapshot)
        volume = _volume(snapshot)
        volatility = _volatility(snapshot)
        range_ = _range(snapshot)
        return EntryScore(
            total=momentum + volume + volatility + range_,
            momentum=momentum,
            volume=volume,
            volatility=volatility,
            range=range_,
        )

    def should_enter(self, score: EntryScore) -> bool:
        return score.total >= self.cfg.entry_threshold

    def confidence(self, score: EntryScore) -> Confidence:
        if score.total >= self.cfg.confidence_very_high:
            return Confidence.VERY_HIGH
        if score.total >= self.cfg.confidence_high:
            return Confidence.HIGH
        if score.total >= self.cfg.confidence_medium:
            return Confidence.MEDIUM
        return Confidence.LOW

    def timing(self, score: EntryScore) -> Timing:
        if score.total >= self.cfg.timing_immediate:
            return Timing.IMMEDIATE
        if score.total >= self.cfg.timing_wait:
            return Timing.WAIT
        return Timing.AVOID

    def conditions(self, snapshot: IndicatorSnapshot) -> list[str]:
        """已触发的入场条件（仅用于日志）。"""
        s = snapshot
        checks = [
            (s.williams_r < -80, f"Williams %R oversold ({s.williams_r:.1f})"),
            (s.cci < -100, f"CCI oversold ({s.cci:.1f})"),
            (s.roc > 2, f"ROC strong ({s.roc:.2f}%)"),
            (s.rvi > s.rvi_signal, "RVI above signal"),
            (s.ichimoku.signal == CloudSignal.BULLISH, "Ichimoku bullish"),
            (s.hurst_exponent > 0.6, f"trending Hurst ({s.hurst_exponent:.2f})"),
            (s.obv > 0, "OBV positive"),
            (s.vpt > 0, "VPT positive"),
            (s.mfi < 20, f"MFI oversold ({s.mfi:.1f})"),
            (s.smart_money.delta > 0, "buy delta positive"),
            (s.smart_money.order_flow > 0.1, f"order flow {s.smart_money.order_flow:.2f}"),
            (_in_value_area(s), "price inside value area"),
            (s.atr_percentile > 80, f"ATR percentile {s.atr_percentile:.0f}"),
            (s.bb_squeeze, "Bollinger squeeze"),
            (s.garch_volatility > 0.02, "GARCH volatility high"),
            (s.keltner_touch, "Keltner channel touch"),
            (s.uo < 30, f"UO oversold ({s.uo:.1f})"),
            (s.stochastic.k < 20, f"Stochastic oversold ({s.stochastic.k:.1f})"),
            (s.smart_money.imbalance_ratio > 1.2, f"imbalance {s.smart_money.imbalance_ratio:.2f}"),
        ]
        return [label for hit, label in checks if hit]
