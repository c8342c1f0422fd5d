"""出场状态机（ExitStateMachine）。

规则按优先级排成固定顺序的列表，第一个命中的规则生效：

1. PROFIT_TARGET          净收益（毛收益 - 往返手续费）达到最低净利
2. MOMENTUM_EXHAUSTION    Williams %R 超买 / CCI 超买 / ROC 转负
3. VOLUME_EXHAUSTION      成交量萎缩到入场时的一半以下
4. VOLATILITY_CONTRACTION ATR 收缩到入场 ATR 的 70% 以下
5. TIME_LIMIT             持仓超过最长时间
6. RSI_OVERBOUGHT
7. TREND_BEARISH_CROSS    MACD 柱为负且 MACD 在信号线下方
8. UO_OVERBOUGHT

分批止盈与跟踪止损与上述级联相互独立，由编排器分别调用。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from algo.factors.snapshot import IndicatorSnapshot
from shared.config.schema import ExitConfig
from shared.models.models import Position
from shared.utils.logging import setup_logger

logger = setup_logger("exit")


class ExitRule(str, Enum):
    PROFIT_TARGET = "PROFIT_TARGET"
    MOMENTUM_EXHAUSTION = "MOMENTUM_EXHAUSTION"
    VOLUME_EXHAUSTION = "VOLUME_EXHAUSTION"
    VOLATILITY_CONTRACTION = "VOLATILITY_CONTRACTION"
    TIME_LIMIT = "TIME_LIMIT"
    RSI_OVERBOUGHT = "RSI_OVERBOUGHT"
    TREND_BEARISH_CROSS = "TREND_BEARISH_CROSS"
    UO_OVERBOUGHT = "UO_OVERBOUGHT"


class ExitTiming(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    WAIT = "WAIT"
    HOLD = "HOLD"


@dataclass(frozen=True)
class ExitDecision:
    triggered: bool
    reason: str = ""
    priority: int = 0
    rule: Optional[ExitRule] = None


NO_EXIT = ExitDecision(triggered=False)

# 规则函数：命中时返回原因文本，否则返回 None
RuleCheck = Callable[["ExitStateMachine", Position, IndicatorSnapshot, datetime], Optional[str]]


def _held_minutes(position: Position, now: datetime) -> float:
    return (now - position.entry_time).total_seconds() / 60.0


def _profit_target(m: "ExitStateMachine", p: Position, s: IndicatorSnapshot, now: datetime) -> Optional[str]:
    net = m.net_return(p, s.price)
    if net >= m.cfg.min_net_profit:
        return f"net profit {net * 100:.2f}% reached target {m.cfg.min_net_profit * 100:.2f}%"
    return None


def _momentum_exhaustion(m: "ExitStateMachine", p: Position, s: IndicatorSnapshot, now: datetime) -> Optional[str]:
    cfg = m.cfg
    if s.williams_r > cfg.williams_overbought:
        return f"Williams %R overbought ({s.williams_r:.1f})"
    if s.cci > cfg.cci_overbought:
        return f"CCI overbought ({s.cci:.1f})"
    if s.roc < cfg.roc_negative:
        return f"ROC turned negative ({s.roc:.2f}%)"
    return None


def _volume_exhaustion(m: "ExitStateMachine", p: Position, s: IndicatorSnapshot, now: datetime) -> Optional[str]:
    ratio = m.cfg.volume_exhaustion_ratio
    if p.entry_volume > 0:
        if s.volume < ratio * p.entry_volume:
            return f"volume {s.volume:.2f} below {ratio:.0%} of entry volume {p.entry_volume:.2f}"
        return None
    if s.volume_ratio < ratio:
        return f"volume ratio {s.volume_ratio:.2f} below {ratio:.2f}"
    return None


def _volatility_contraction(m: "ExitStateMachine", p: Position, s: IndicatorSnapshot, now: datetime) -> Optional[str]:
    ratio = m.cfg.atr_contraction_ratio
    if p.entry_atr > 0 and s.atr < ratio * p.entry_atr:
        return f"ATR {s.atr:.6f} contracted below {ratio:.0%} of entry ATR"
    return None


def _time_limit(m: "ExitStateMachine", p: Position, s: IndicatorSnapshot, now: datetime) -> Optional[str]:
    held = _held_minutes(p, now)
    if held > m.cfg.max_hold_minutes:
        return f"held {held:.1f} min > {m.cfg.max_hold_minutes:.0f} min"
    return None


def _rsi_overbought(m: "ExitStateMachine", p: Position, s: IndicatorSnapshot, now: datetime) -> Optional[str]:
    if s.rsi > m.cfg.rsi_overbought:
        return f"RSI overbought ({s.rsi:.1f})"
    return None


def _bearish_cross(m: "ExitStateMachine", p: Position, s: IndicatorSnapshot, now: datetime) -> Optional[str]:
    if s.macd.histogram < 0 and s.macd.macd < s.macd.signal:
        return "MACD bearish cross"
    return None


def _uo_overbought(m: "ExitStateMachine", p: Position, s: IndicatorSnapshot, now: datetime) -> Optional[str]:
    if s.uo > m.cfg.uo_overbought:
        return f"Ultimate Oscillator overbought ({s.uo:.1f})"
    return None


# 顺序即优先级（1 最高）
EXIT_RULES: tuple[tuple[ExitRule, RuleCheck], ...] = (
    (ExitRule.PROFIT_TARGET, _profit_target),
    (ExitRule.MOMENTUM_EXHAUSTION, _momentum_exhaustion),
    (ExitRule.VOLUME_EXHAUSTION, _volume_exhaustion),
    (ExitRule.VOLATILITY_CONTRACTION, _volatility_contraction),
    (ExitRule.TIME_LIMIT, _time_limit),
    (ExitRule.RSI_OVERBOUGHT, _rsi_overbought),
    (ExitRule.TREND_BEARISH_CROSS, _bearish_cross),
    (ExitRule.UO_OVERBOUGHT, _uo_overbought),
)


class ExitStateMachine:
    def __init__(self, cfg: ExitConfig | None = None):
        self.cfg = cfg or ExitConfig()

    def net_return(self, position: Position, price: float) -> float:
        return position.gross_return(price) - self.cfg.fee_round_trip

    def evaluate(self, position: Position, snapshot: IndicatorSnapshot, now: datetime) -> ExitDecision:
        for priority, (rule, check) in enumerate(EXIT_RULES, start=1):
            reason = check(self, position, snapshot, now)
            if reason:
                logger.debug("%s exit rule %s hit: %s", position.symbol, rule.value, reason)
                return ExitDecision(triggered=True, reason=reason, priority=priority, rule=rule)
        return NO_EXIT

    def exit_timing(self, decision: ExitDecision) -> ExitTiming:
        if not decision.triggered:
            return ExitTiming.HOLD
        if decision.priority <= self.cfg.immediate_max_priority:
            return ExitTiming.IMMEDIATE
        return ExitTiming.WAIT

    # ---- 分批止盈 ----
    def _scale_out_tier(self, position: Position, price: float) -> int:
        net = self.net_return(position, price)
        if net >= self.cfg.scale_out_tier2_profit:
            return 2
        if net >= self.cfg.scale_out_tier1_profit:
            return 1
        return 0

    def should_scale_out(self, position: Position, now: datetime, price: float) -> bool:
        if _held_minutes(position, now) < self.cfg.scale_out_min_hold_minutes:
            return False
        tier = self._scale_out_tier(position, price)
        return tier > 0 and tier > position.scale_out_level

    def scale_out_fraction(self, position: Position, price: float) -> float:
        tier = self._scale_out_tier(position, price)
        if tier == 2:
            return self.cfg.scale_out_tier2_fraction
        if tier == 1:
            return self.cfg.scale_out_tier1_fraction
        return 0.0

    def scale_out_level(self, position: Position, price: float) -> int:
        """当前价格对应的分批档位（0 表示未达到）。"""
        return self._scale_out_tier(position, price)

    # ---- 跟踪止损 ----
    def trailing_stop(self, position: Position, price: float) -> float:
        """按毛收益分档收紧的跟踪止损；只上移不下移。"""
        gross = position.gross_return(price)
        candidate = position.trailing_stop
        for min_profit, trail in self.cfg.trailing_tiers:
            if gross >= min_profit:
                candidate = price * (1.0 - trail)
                break
        return max(position.trailing_stop, candidate)

    def should_trigger_trailing_stop(self, position: Position, price: float) -> bool:
        return position.trailing_stop > 0 and price <= position.trailing_stop
