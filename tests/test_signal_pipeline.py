from datetime import datetime, timedelta, timezone

import pytest

from algo.factors.snapshot import IndicatorSnapshot, neutral_snapshot
from algo.risk.manager import RiskManager
from algo.strategy.entry import EntryScorer
from algo.strategy.exit import ExitStateMachine
from engine.portfolio import PortfolioContext
from engine.signal_pipeline import Action, SignalPipeline
from shared.config.schema import RiskConfig
from shared.state.position_ledger import PositionLedger
from test_entry_scorer import _best_snapshot

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _portfolio(balance: float = 200.0) -> PortfolioContext:
    exit_machine = ExitStateMachine()
    risk = RiskManager(RiskConfig(), suppress_warnings=True)
    risk.reset(balance)
    return PortfolioContext(PositionLedger(exit_machine=exit_machine), risk, balance)


def _pipeline() -> SignalPipeline:
    return SignalPipeline(EntryScorer(), ExitStateMachine())


def _quiet(price: float) -> IndicatorSnapshot:
    return IndicatorSnapshot(price=price, volume=120.0, atr=1.0)


def _hold(portfolio: PortfolioContext, symbol: str = "BTCUSDT", price: float = 100.0):
    ledger = portfolio.ledger
    ledger.reserve(ledger.prepare_open(symbol, price, _quiet(price)).intent)
    return ledger.open(symbol, price, _quiet(price), now=T0).position


def test_strong_snapshot_opens_and_reserves():
    portfolio = _portfolio()
    decision = _pipeline().decide(symbol="BTCUSDT", snapshot=_best_snapshot(), now=T0, portfolio=portfolio)
    assert decision.action == Action.OPEN
    assert decision.quantity > 0
    assert portfolio.ledger.is_pending("BTCUSDT")

    # 预留期间不会重复入场
    again = _pipeline().decide(symbol="BTCUSDT", snapshot=_best_snapshot(), now=T0, portfolio=portfolio)
    assert again.action == Action.NONE


def test_neutral_or_disallowed_entry_does_nothing():
    portfolio = _portfolio()
    pipeline = _pipeline()
    assert pipeline.decide(symbol="X", snapshot=neutral_snapshot(1.0), now=T0, portfolio=portfolio).action == Action.NONE
    blocked = pipeline.decide(
        symbol="X", snapshot=_best_snapshot(), now=T0, portfolio=portfolio, allow_entry=False
    )
    assert blocked.action == Action.NONE
    assert portfolio.ledger.slot_count == 0


def test_risk_rejection_is_flagged():
    portfolio = _portfolio(balance=5.0)
    decision = _pipeline().decide(symbol="BTCUSDT", snapshot=_best_snapshot(), now=T0, portfolio=portfolio)
    assert decision.action == Action.NONE
    assert decision.rejected
    assert portfolio.ledger.slot_count == 0


def test_exit_rule_closes_position():
    portfolio = _portfolio()
    pos = _hold(portfolio)
    snap = IndicatorSnapshot(price=100.0, volume=120.0, atr=1.0, williams_r=-5.0)
    decision = _pipeline().decide(symbol="BTCUSDT", snapshot=snap, now=T0 + timedelta(minutes=1), portfolio=portfolio)
    assert decision.action == Action.CLOSE
    assert decision.quantity == pos.quantity
    assert "Williams" in decision.reason


def test_hard_stop_via_initial_trailing_stop():
    portfolio = _portfolio()
    pos = _hold(portfolio)
    price = pos.stop_loss - 0.01
    decision = _pipeline().decide(
        symbol="BTCUSDT", snapshot=_quiet(price), now=T0 + timedelta(minutes=1), portfolio=portfolio
    )
    assert decision.action == Action.CLOSE
    assert "trailing stop" in decision.reason


def test_scale_out_decision():
    portfolio = _portfolio()
    _hold(portfolio)
    # 关闭利润目标，只看分批
    pipeline = SignalPipeline(EntryScorer(), ExitStateMachine())
    pipeline.exit.cfg = pipeline.exit.cfg.model_copy(update={"min_net_profit": 1.0})
    decision = pipeline.decide(
        symbol="BTCUSDT", snapshot=_quiet(101.2), now=T0 + timedelta(minutes=12), portfolio=portfolio
    )
    assert decision.action == Action.SCALE_OUT
    assert decision.level == 1
    assert decision.quantity == pytest.approx(0.12)


def test_portfolio_equity_and_risk():
    portfolio = _portfolio(balance=160.0)
    pos = _hold(portfolio)
    portfolio.mark_price("BTCUSDT", 110.0)
    assert portfolio.equity() == pytest.approx(160.0 + pos.quantity * 110.0)
    assert portfolio.aggregate_risk_pct() == pytest.approx(pos.risk / portfolio.equity())
    assert portfolio.unrealized()["BTCUSDT"] == pytest.approx(0.1 - 0.002)
