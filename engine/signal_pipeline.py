"""单 tick 决策管线（Exit → Trailing → Scale-out → Entry → Risk gate）。

调用方必须持有组合锁；本模块不触网，只读写 PortfolioContext，
返回一条待执行的 Decision（或 NONE）。入场决策会先在账本中预留名额。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from algo.factors.snapshot import IndicatorSnapshot
from algo.strategy.entry import EntryScore, EntryScorer
from algo.strategy.exit import ExitDecision, ExitStateMachine, ExitTiming
from engine.portfolio import PortfolioContext
from shared.state.position_ledger import LedgerError, OpenIntent
from shared.utils.logging import setup_logger

logger = setup_logger("pipeline")


class Action(str, Enum):
    NONE = "none"
    OPEN = "open"
    CLOSE = "close"
    SCALE_OUT = "scale_out"


@dataclass(frozen=True)
class Decision:
    action: Action
    symbol: str
    price: float = 0.0
    reason: str = ""
    quantity: float = 0.0
    fraction: float = 1.0
    level: int = 0
    intent: Optional[OpenIntent] = None
    score: Optional[EntryScore] = None
    exit: Optional[ExitDecision] = None
    rejected: bool = False


class SignalPipeline:
    def __init__(self, entry: EntryScorer, exit_machine: ExitStateMachine):
        self.entry = entry
        self.exit = exit_machine

    def decide(
        self,
        *,
        symbol: str,
        snapshot: IndicatorSnapshot,
        now: datetime,
        portfolio: PortfolioContext,
        allow_entry: bool = True,
    ) -> Decision:
        price = snapshot.price
        if price <= 0:
            return Decision(Action.NONE, symbol)
        ledger = portfolio.ledger

        position = ledger.get(symbol)
        if position is not None:
            return self._manage_position(symbol, snapshot, now, portfolio)
        if ledger.is_pending(symbol) or not allow_entry:
            return Decision(Action.NONE, symbol, price)
        return self._consider_entry(symbol, snapshot, portfolio)

    def _manage_position(
        self,
        symbol: str,
        snapshot: IndicatorSnapshot,
        now: datetime,
        portfolio: PortfolioContext,
    ) -> Decision:
        ledger = portfolio.ledger
        price = snapshot.price
        position = ledger.get(symbol)
        assert position is not None

        decision = self.exit.evaluate(position, snapshot, now)
        if self.exit.exit_timing(decision) == ExitTiming.IMMEDIATE:
            return Decision(
                Action.CLOSE,
                symbol,
                price,
                reason=decision.reason,
                quantity=position.quantity,
                exit=decision,
            )

        ledger.update_trailing_stop(symbol, price)
        if self.exit.should_trigger_trailing_stop(position, price):
            return Decision(
                Action.CLOSE,
                symbol,
                price,
                reason=f"trailing stop hit ({position.trailing_stop:.8f})",
                quantity=position.quantity,
            )

        if self.exit.should_scale_out(position, now, price):
            fraction = self.exit.scale_out_fraction(position, price)
            level = self.exit.scale_out_level(position, price)
            planned = ledger.scale_out_quantity(symbol, fraction, price)
            reason = f"scale-out tier {level} ({fraction:.0%})"
            if planned.ok:
                return Decision(
                    Action.SCALE_OUT,
                    symbol,
                    price,
                    reason=reason,
                    quantity=planned.quantity,
                    fraction=fraction,
                    level=level,
                )
            if planned.error == LedgerError.REMAINDER_TOO_SMALL:
                return Decision(
                    Action.CLOSE,
                    symbol,
                    price,
                    reason=f"{reason}, remainder below minimum",
                    quantity=position.quantity,
                )
            logger.debug("%s scale-out skipped: %s", symbol, planned.message)
        return Decision(Action.NONE, symbol, price)

    def _consider_entry(self, symbol: str, snapshot: IndicatorSnapshot, portfolio: PortfolioContext) -> Decision:
        if snapshot.is_neutral:
            return Decision(Action.NONE, symbol, snapshot.price)
        price = snapshot.price
        score = self.entry.score(snapshot)
        logger.debug(
            "%s entry score total=%.0f momentum=%.0f volume=%.0f volatility=%.0f range=%.0f",
            symbol,
            score.total,
            score.momentum,
            score.volume,
            score.volatility,
            score.range,
        )
        if not self.entry.should_enter(score):
            return Decision(Action.NONE, symbol, price, score=score)

        ledger = portfolio.ledger
        risk = portfolio.risk
        prepared = ledger.prepare_open(symbol, price, snapshot, size_factor=risk.size_factor())
        if not prepared.ok:
            logger.warning("%s entry rejected: %s %s", symbol, prepared.error.value, prepared.message)
            return Decision(Action.NONE, symbol, price, reason=prepared.message, score=score, rejected=True)
        intent = prepared.intent
        assert intent is not None

        pending_risk = sum(i.risk for i in ledger.pending_intents())
        if not risk.approve(ledger.positions(), portfolio.equity(), candidate_risk=intent.risk + pending_risk):
            return Decision(Action.NONE, symbol, price, reason="risk rejected", score=score, rejected=True)

        reserved = ledger.reserve(intent)
        if not reserved.ok:
            return Decision(Action.NONE, symbol, price, reason=reserved.message, score=score, rejected=True)

        logger.info(
            "%s ENTRY signal score=%.0f confidence=%s timing=%s conditions=%s",
            symbol,
            score.total,
            self.entry.confidence(score).value,
            self.entry.timing(score).value,
            ", ".join(self.entry.conditions(snapshot)),
        )
        return Decision(
            Action.OPEN,
            symbol,
            price,
            reason=f"entry score {score.total:.0f}",
            quantity=intent.quantity,
            intent=intent,
            score=score,
        )
