"""组合上下文：账本 + 风控 + 余额，由单个 asyncio.Lock 保护。

每个运行中的组合拥有一个独立实例（测试与实盘可在同一进程并存），
任何对账本/风控的“读-改-写”都必须在 `async with ctx.lock` 内完成。
"""

from __future__ import annotations

import asyncio
from collections import Counter

from algo.risk.manager import RiskManager
from shared.state.position_ledger import PositionLedger


class PortfolioContext:
    def __init__(self, ledger: PositionLedger, risk: RiskManager, balance: float = 0.0):
        self.ledger = ledger
        self.risk = risk
        self.balance = float(balance)
        self.last_prices: dict[str, float] = {}
        self.counters: Counter[str] = Counter()
        self.lock = asyncio.Lock()

    def mark_price(self, symbol: str, price: float) -> None:
        if price > 0:
            self.last_prices[symbol] = float(price)

    def equity(self) -> float:
        """可用余额 + 持仓按最新价的市值（无最新价时按入场价）。"""
        held = 0.0
        for p in self.ledger.positions():
            held += p.quantity * self.last_prices.get(p.symbol, p.entry_price)
        return self.balance + held

    def aggregate_risk_pct(self) -> float:
        equity = self.equity()
        if equity <= 0:
            return 0.0
        return self.ledger.total_risk() / equity

    def unrealized(self) -> dict[str, float]:
        """每个持仓按最新价的净收益率（扣除往返手续费）。"""
        fee = self.ledger.cfg.fee_rate_round_trip
        return {
            p.symbol: p.gross_return(self.last_prices.get(p.symbol, p.entry_price)) - fee
            for p in self.ledger.positions()
        }
