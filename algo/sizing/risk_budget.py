"""按单笔风险预算定仓，并给出 ATR/百分比止损止盈价位。

qty = (max_portfolio_usdt × max_risk_per_trade) / |entry - stop|
    ÷ (1 + 往返手续费) × size_factor
上限：max_position_pct × max_portfolio_usdt / price，以及交易所 max_qty；
最后按 step_size 向下取整，不足最小名义时在上限内向上补足。
"""

from __future__ import annotations

from dataclasses import dataclass

from shared.config.schema import PositionConfig
from shared.models.models import SymbolFilters
from shared.utils.precision import ceil_to_step, floor_to_step


def stop_loss_price(entry: float, atr: float, atr_multiplier: float = 2.0, pct: float = 0.02) -> float:
    """取 ATR 止损与百分比止损中较近（较高）者；ATR 无效时只用百分比。"""
    pct_stop = entry * (1.0 - pct)
    if atr <= 0:
        return pct_stop
    return max(entry - atr_multiplier * atr, pct_stop)


def take_profit_price(entry: float, atr: float, atr_multiplier: float = 3.0, pct: float = 0.015) -> float:
    """取 ATR 止盈与百分比止盈中较近（较低）者。"""
    pct_target = entry * (1.0 + pct)
    if atr <= 0:
        return pct_target
    return min(entry + atr_multiplier * atr, pct_target)


@dataclass(frozen=True)
class SizingResult:
    quantity: float
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.quantity > 0


@dataclass(frozen=True)
class RiskBudgetSizer:
    cfg: PositionConfig

    @property
    def risk_amount(self) -> float:
        return self.cfg.max_portfolio_usdt * self.cfg.max_risk_per_trade

    def default_filters(self, symbol: str) -> SymbolFilters:
        return SymbolFilters(
            symbol=symbol,
            step_size=self.cfg.default_step_size,
            min_qty=self.cfg.default_min_qty,
            min_notional=self.cfg.default_min_notional,
        )

    def levels(self, entry: float, atr: float) -> tuple[float, float]:
        """(stop_loss, take_profit)"""
        cfg = self.cfg
        return (
            stop_loss_price(entry, atr, cfg.atr_stop_multiplier, cfg.pct_stop),
            take_profit_price(entry, atr, cfg.atr_target_multiplier, cfg.pct_target),
        )

    def size(
        self,
        *,
        price: float,
        stop_loss: float,
        filters: SymbolFilters | None = None,
        size_factor: float = 1.0,
    ) -> SizingResult:
        if price <= 0:
            return SizingResult(0.0, "price must be > 0")
        per_unit_risk = abs(price - stop_loss)
        if per_unit_risk <= 0:
            return SizingResult(0.0, "stop loss equals entry price")
        if size_factor <= 0:
            return SizingResult(0.0, "size factor must be > 0")

        cfg = self.cfg
        f = filters or self.default_filters("")
        step = f.step_size if f.step_size > 0 else cfg.default_step_size

        qty = self.risk_amount / per_unit_risk
        qty /= 1.0 + cfg.fee_rate_round_trip
        qty *= size_factor

        cap = cfg.max_position_pct * cfg.max_portfolio_usdt / price
        if f.max_qty > 0:
            cap = min(cap, f.max_qty)
        qty = floor_to_step(min(qty, cap), step)

        if f.min_notional > 0 and qty * price < f.min_notional:
            raised = ceil_to_step(f.min_notional / price, step)
            if raised > cap:
                return SizingResult(
                    0.0,
                    f"notional {qty * price:.4f} below min {f.min_notional} and cannot be raised within cap",
                )
            qty = raised
        if qty <= 0:
            return SizingResult(0.0, "quantity rounds to zero")
        if f.min_qty > 0 and qty < f.min_qty:
            return SizingResult(0.0, f"quantity {qty} below min qty {f.min_qty}")
        return SizingResult(qty)
