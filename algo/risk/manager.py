"""组合风控：入场审批、回撤跟踪与近期交易表现。"""

from __future__ import annotations

from collections import deque
from typing import Deque, Iterable

from algo.risk.metrics import compute_trade_metrics
from shared.config.schema import RiskConfig
from shared.models.models import Position, TradeRecord
from shared.utils.logging import setup_logger


class RiskManager:
    """风险管理器。

    Parameters
    ----------
    risk_cfg:
        风控配置（max_portfolio_risk / max_drawdown / trade_history_size）。
    initial_balance:
        会话起始余额；回撤峰值从它开始只上移，直到 `reset()`。
    suppress_warnings:
        是否抑制 warning 日志（测试常用）。
    """

    def __init__(
        self,
        risk_cfg: RiskConfig | None = None,
        initial_balance: float = 0.0,
        suppress_warnings: bool = False,
    ):
        self.cfg = risk_cfg or RiskConfig()
        self.logger = setup_logger("risk")
        self.suppress_warnings = suppress_warnings

        self.initial_balance = float(initial_balance)
        self.peak_balance = float(initial_balance)
        self.current_drawdown = 0.0
        self.trade_history: Deque[TradeRecord] = deque(maxlen=self.cfg.trade_history_size)

    def reset(self, balance: float) -> None:
        """开始新会话：清空交易历史并以 balance 作为新的起点与峰值。"""
        self.initial_balance = float(balance)
        self.peak_balance = float(balance)
        self.current_drawdown = 0.0
        self.trade_history.clear()
        if not self.suppress_warnings:
            self.logger.info("[RISK] session reset, balance=%.4f", balance)

    def _warn(self, msg: str, *args) -> None:
        if not self.suppress_warnings:
            self.logger.warning(msg, *args)

    def drawdown(self, balance: float) -> float:
        """更新峰值并返回当前回撤比例。"""
        if balance > self.peak_balance:
            self.peak_balance = float(balance)
        if self.peak_balance <= 0:
            self.current_drawdown = 0.0
        else:
            self.current_drawdown = max(0.0, (self.peak_balance - balance) / self.peak_balance)
        return self.current_drawdown

    @staticmethod
    def aggregate_risk(positions: Iterable[Position]) -> float:
        return sum(p.risk for p in positions)

    def approve(
        self,
        open_positions: Iterable[Position],
        current_balance: float,
        candidate_risk: float = 0.0,
    ) -> bool:
        """是否允许新的入场。

        (已有风险 + 候选风险) / 余额 必须严格小于 max_portfolio_risk，
        且当前回撤严格小于 max_drawdown。
        """
        if current_balance <= 0:
            self._warn("RiskRejection: non-positive balance %.4f", current_balance)
            return False

        risk_pct = (self.aggregate_risk(open_positions) + max(0.0, candidate_risk)) / current_balance
        if risk_pct >= self.cfg.max_portfolio_risk:
            self._warn(
                "RiskRejection: portfolio risk %.2f%% >= limit %.2f%%",
                risk_pct * 100,
                self.cfg.max_portfolio_risk * 100,
            )
            return False

        dd = self.drawdown(current_balance)
        if dd >= self.cfg.max_drawdown:
            self._warn(
                "RiskRejection: drawdown %.2f%% >= limit %.2f%%",
                dd * 100,
                self.cfg.max_drawdown * 100,
            )
            return False
        return True

    def record_trade(self, trade: TradeRecord) -> None:
        self.trade_history.append(trade)

    def should_reduce_risk(self) -> bool:
        """最近 3 笔中至少 2 笔亏损。"""
        recent = list(self.trade_history)[-3:]
        return sum(1 for t in recent if t.profit < 0) >= 2

    def size_factor(self) -> float:
        return self.cfg.reduce_risk_factor if self.should_reduce_risk() else 1.0

    def performance_metrics(self) -> dict:
        return compute_trade_metrics(self.trade_history)

    def risk_status(self, positions: Iterable[Position], balance: float) -> str:
        if balance <= 0:
            return "HIGH_RISK"
        dd = self.drawdown(balance)
        if dd >= self.cfg.max_drawdown:
            return "HIGH_DRAWDOWN"
        risk_pct = self.aggregate_risk(positions) / balance
        if risk_pct >= self.cfg.max_portfolio_risk:
            return "HIGH_RISK"
        if risk_pct >= 0.5 * self.cfg.max_portfolio_risk:
            return "MEDIUM_RISK"
        return "LOW_RISK"
