"""交易绩效指标（基于已实现的 TradeRecord）。"""

from __future__ import annotations

from statistics import mean, pstdev
from typing import Iterable

from shared.models.models import TradeRecord


def _max_drawdown(returns: list[float]) -> float:
    """按逐笔收益复利得到的权益曲线最大回撤（正数）。"""
    equity = 1.0
    peak = 1.0
    max_dd = 0.0
    for r in returns:
        equity *= 1.0 + r
        peak = max(peak, equity)
        if peak > 0:
            max_dd = max(max_dd, (peak - equity) / peak)
    return max_dd


def compute_trade_metrics(trades: Iterable[TradeRecord]) -> dict:
    """胜率、均值盈亏、最大回撤与 Sharpe（逐笔收益均值 / 标准差，不年化）。"""
    returns = [float(t.profit) for t in trades]
    wins = [r for r in returns if r > 0]
    losses = [r for r in returns if r < 0]
    total = len(returns)

    sigma = pstdev(returns) if len(returns) > 1 else 0.0
    sharpe = mean(returns) / sigma if sigma else 0.0
    return {
        "total_trades": total,
        "winning_trades": len(wins),
        "losing_trades": len(losses),
        "total_profit": sum(returns),
        "win_rate": len(wins) / total if total else 0.0,
        "average_profit": mean(wins) if wins else 0.0,
        "average_loss": mean(losses) if losses else 0.0,
        "max_drawdown": _max_drawdown(returns),
        "sharpe_ratio": sharpe,
    }
