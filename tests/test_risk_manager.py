from datetime import datetime, timezone

import pytest

from algo.risk.manager import RiskManager
from algo.risk.metrics import compute_trade_metrics
from shared.config.schema import RiskConfig
from shared.models.models import Position, TradeRecord

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _pos(symbol: str, risk: float) -> Position:
    return Position(
        symbol=symbol,
        entry_price=100.0,
        entry_time=T0,
        quantity=1.0,
        stop_loss=100.0 - risk,
        take_profit=101.5,
        trailing_stop=100.0 - risk,
        peak_price=100.0,
        entry_volume=0.0,
        entry_atr=0.0,
    )


def _trade(profit: float) -> TradeRecord:
    return TradeRecord(symbol="BTCUSDT", side="SELL", quantity=1.0, price=100.0, timestamp=T0, profit=profit)


def test_approve_below_portfolio_risk_limit():
    rm = RiskManager(RiskConfig(max_portfolio_risk=0.10), initial_balance=100.0, suppress_warnings=True)
    assert rm.approve([_pos("A", 4.0)], 100.0, candidate_risk=5.0)
    # 恰好等于上限即拒绝
    assert not rm.approve([_pos("A", 4.0)], 100.0, candidate_risk=6.0)


def test_approve_rejects_on_drawdown():
    rm = RiskManager(RiskConfig(max_drawdown=0.05), suppress_warnings=True)
    rm.reset(100.0)
    assert rm.approve([], 110.0)
    assert rm.peak_balance == 110.0
    # 从 110 回撤到 104：5.45%
    assert not rm.approve([], 104.0)
    assert rm.current_drawdown == pytest.approx(6 / 110)


def test_approve_rejects_non_positive_balance():
    rm = RiskManager(suppress_warnings=True)
    assert not rm.approve([], 0.0)


def test_reset_starts_new_session():
    rm = RiskManager(suppress_warnings=True)
    rm.reset(100.0)
    rm.drawdown(80.0)
    rm.record_trade(_trade(-0.01))
    rm.reset(80.0)
    assert rm.peak_balance == 80.0
    assert rm.drawdown(80.0) == 0.0
    assert len(rm.trade_history) == 0


def test_reduce_risk_after_two_recent_losses():
    rm = RiskManager(suppress_warnings=True)
    rm.record_trade(_trade(0.01))
    rm.record_trade(_trade(-0.01))
    assert not rm.should_reduce_risk()
    assert rm.size_factor() == 1.0
    rm.record_trade(_trade(-0.02))
    assert rm.should_reduce_risk()
    assert rm.size_factor() == 0.5


def test_trade_history_is_bounded():
    rm = RiskManager(RiskConfig(trade_history_size=3), suppress_warnings=True)
    for p in [0.01, 0.02, 0.03, 0.04]:
        rm.record_trade(_trade(p))
    assert [t.profit for t in rm.trade_history] == [0.02, 0.03, 0.04]


def test_risk_status_levels():
    rm = RiskManager(RiskConfig(max_portfolio_risk=0.10, max_drawdown=0.05), suppress_warnings=True)
    rm.reset(100.0)
    assert rm.risk_status([_pos("A", 1.0)], 100.0) == "LOW_RISK"
    assert rm.risk_status([_pos("A", 6.0)], 100.0) == "MEDIUM_RISK"
    assert rm.risk_status([_pos("A", 11.0)], 100.0) == "HIGH_RISK"
    assert rm.risk_status([], 90.0) == "HIGH_DRAWDOWN"


def test_performance_metrics():
    metrics = compute_trade_metrics([_trade(0.02), _trade(-0.01), _trade(0.01), _trade(-0.03)])
    assert metrics["total_trades"] == 4
    assert metrics["winning_trades"] == 2
    assert metrics["losing_trades"] == 2
    assert metrics["win_rate"] == 0.5
    assert metrics["total_profit"] == pytest.approx(-0.01)
    assert metrics["average_profit"] == pytest.approx(0.015)
    assert metrics["average_loss"] == pytest.approx(-0.02)
    assert metrics["max_drawdown"] > 0.03
    assert metrics["sharpe_ratio"] < 0


def test_performance_metrics_empty():
    metrics = compute_trade_metrics([])
    assert metrics["total_trades"] == 0
    assert metrics["win_rate"] == 0.0
    assert metrics["sharpe_ratio"] == 0.0
