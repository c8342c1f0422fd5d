"""持仓账本（PositionLedger）。

职责
----
- 持仓从“成交确认”到“平仓确认”的唯一所有者；
- 入场前校验与定仓（prepare_open，不修改状态）；
- 下单在途期间以 pending 预留占位（reserve/release），
  预留计入持仓数上限、单币种唯一性与组合风险；
- 成交后落账（open / close / scale_out），跟踪止损只上移。

所有校验失败都以 `LedgerResult(ok=False, error=LedgerError.X)` 返回，不抛异常。
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from algo.factors.snapshot import IndicatorSnapshot
from algo.sizing.risk_budget import RiskBudgetSizer
from algo.strategy.exit import ExitStateMachine
from shared.config.schema import PositionConfig
from shared.models.models import OrderFill, Position, SymbolFilters, TradeRecord
from shared.utils.logging import setup_logger
from shared.utils.precision import floor_to_step

logger = setup_logger("ledger")


class LedgerError(str, Enum):
    INSUFFICIENT_RISK = "INSUFFICIENT_RISK"
    SYMBOL_ALREADY_OPEN = "SYMBOL_ALREADY_OPEN"
    MAX_POSITIONS_REACHED = "MAX_POSITIONS_REACHED"
    INVALID_SIZE = "INVALID_SIZE"
    POSITION_NOT_FOUND = "POSITION_NOT_FOUND"
    REMAINDER_TOO_SMALL = "REMAINDER_TOO_SMALL"


@dataclass(frozen=True)
class OpenIntent:
    """已定仓、待下单的入场意图。"""

    symbol: str
    price: float
    quantity: float
    stop_loss: float
    take_profit: float
    entry_volume: float
    entry_atr: float

    @property
    def risk(self) -> float:
        return abs(self.price - self.stop_loss) * self.quantity


@dataclass(frozen=True)
class LedgerResult:
    ok: bool
    error: Optional[LedgerError] = None
    message: str = ""
    position: Optional[Position] = None
    intent: Optional[OpenIntent] = None
    trade: Optional[TradeRecord] = None
    quantity: float = 0.0

    @classmethod
    def fail(cls, error: LedgerError, message: str = "") -> "LedgerResult":
        return cls(ok=False, error=error, message=message)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PositionLedger:
    def __init__(
        self,
        cfg: PositionConfig | None = None,
        exit_machine: ExitStateMachine | None = None,
        filters_provider: Callable[[str], Optional[SymbolFilters]] | None = None,
    ):
        self.cfg = cfg or PositionConfig()
        self.exit_machine = exit_machine or ExitStateMachine()
        self.sizer = RiskBudgetSizer(self.cfg)
        self._filters_provider = filters_provider
        self._filters: dict[str, SymbolFilters] = {}
        self._positions: dict[str, Position] = {}
        self._pending: dict[str, OpenIntent] = {}

    # ---- 交易所规则 ----
    def set_filters(self, filters: SymbolFilters) -> None:
        self._filters[filters.symbol] = filters

    def filters_for(self, symbol: str) -> SymbolFilters:
        cached = self._filters.get(symbol)
        if cached is not None:
            return cached
        if self._filters_provider is not None:
            provided = self._filters_provider(symbol)
            if provided is not None:
                self._filters[symbol] = provided
                return provided
        return self.sizer.default_filters(symbol)

    # ---- 查询 ----
    def positions(self) -> list[Position]:
        return list(self._positions.values())

    def get(self, symbol: str) -> Optional[Position]:
        return self._positions.get(symbol)

    def has_position(self, symbol: str) -> bool:
        return symbol in self._positions

    def is_pending(self, symbol: str) -> bool:
        return symbol in self._pending

    def pending_intents(self) -> list[OpenIntent]:
        return list(self._pending.values())

    @property
    def slot_count(self) -> int:
        """已占用的持仓名额（持仓 + 在途入场）。"""
        return len(self._positions) + len(self._pending)

    def total_risk(self) -> float:
        return sum(p.risk for p in self._positions.values()) + sum(i.risk for i in self._pending.values())

    # ---- 入场 ----
    def _check_slot(self, symbol: str) -> Optional[LedgerResult]:
        if symbol in self._positions or symbol in self._pending:
            return LedgerResult.fail(LedgerError.SYMBOL_ALREADY_OPEN, f"{symbol} already has a position")
        if self.slot_count >= self.cfg.max_positions:
            return LedgerResult.fail(
                LedgerError.MAX_POSITIONS_REACHED,
                f"max positions reached ({self.cfg.max_positions})",
            )
        return None

    def prepare_open(
        self,
        symbol: str,
        price: float,
        snapshot: IndicatorSnapshot,
        size_factor: float = 1.0,
    ) -> LedgerResult:
        """校验并定仓，不修改账本。"""
        rejected = self._check_slot(symbol)
        if rejected is not None:
            return rejected
        if price <= 0:
            return LedgerResult.fail(LedgerError.INVALID_SIZE, f"invalid price {price}")

        stop_loss, take_profit = self.sizer.levels(price, snapshot.atr)
        if self.sizer.risk_amount <= 0 or abs(price - stop_loss) <= 0:
            return LedgerResult.fail(
                LedgerError.INSUFFICIENT_RISK,
                f"no risk budget between entry {price} and stop {stop_loss}",
            )
        sized = self.sizer.size(
            price=price,
            stop_loss=stop_loss,
            filters=self.filters_for(symbol),
            size_factor=size_factor,
        )
        if not sized.ok:
            return LedgerResult.fail(LedgerError.INVALID_SIZE, sized.reason)

        intent = OpenIntent(
            symbol=symbol,
            price=price,
            quantity=sized.quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            entry_volume=snapshot.volume,
            entry_atr=snapshot.atr,
        )
        return LedgerResult(ok=True, intent=intent, quantity=sized.quantity)

    def reserve(self, intent: OpenIntent) -> LedgerResult:
        rejected = self._check_slot(intent.symbol)
        if rejected is not None:
            return rejected
        self._pending[intent.symbol] = intent
        return LedgerResult(ok=True, intent=intent, quantity=intent.quantity)

    def release(self, symbol: str) -> bool:
        return self._pending.pop(symbol, None) is not None

    def open(
        self,
        symbol: str,
        price: float,
        snapshot: IndicatorSnapshot,
        fill: OrderFill | None = None,
        now: datetime | None = None,
    ) -> LedgerResult:
        """按成交确认落账。有预留时使用预留的定仓结果，成交均价/数量以 fill 为准。"""
        if symbol in self._positions:
            # 预留保持原样，由调用方决定 release
            return LedgerResult.fail(LedgerError.SYMBOL_ALREADY_OPEN, f"{symbol} already has a position")
        intent = self._pending.pop(symbol, None)
        if intent is None:
            prepared = self.prepare_open(symbol, price, snapshot)
            if not prepared.ok:
                return prepared
            intent = prepared.intent
        assert intent is not None

        entry_price = fill.price if fill is not None and fill.price > 0 else price
        quantity = fill.quantity if fill is not None and fill.quantity > 0 else intent.quantity
        if quantity <= 0 or entry_price <= 0:
            return LedgerResult.fail(LedgerError.INVALID_SIZE, f"invalid fill qty={quantity} price={entry_price}")

        stop_loss, take_profit = self.sizer.levels(entry_price, intent.entry_atr)
        position = Position(
            symbol=symbol,
            entry_price=entry_price,
            entry_time=now or _utc_now(),
            quantity=quantity,
            stop_loss=stop_loss,
            take_profit=take_profit,
            trailing_stop=stop_loss,
            peak_price=entry_price,
            entry_volume=intent.entry_volume,
            entry_atr=intent.entry_atr,
        )
        self._positions[symbol] = position
        logger.info(
            "OPEN %s qty=%s entry=%.8f stop=%.8f target=%.8f",
            symbol,
            quantity,
            entry_price,
            stop_loss,
            take_profit,
        )
        return LedgerResult(ok=True, position=position, quantity=quantity)

    # ---- 出场 ----
    def _trade(self, position: Position, quantity: float, exit_price: float, reason: str, now: datetime) -> TradeRecord:
        profit = position.gross_return(exit_price) - self.cfg.fee_rate_round_trip
        return TradeRecord(
            symbol=position.symbol,
            side="SELL",
            quantity=quantity,
            price=exit_price,
            timestamp=now,
            profit=profit,
            pnl=profit * position.entry_price * quantity,
            reason=reason,
        )

    def close(
        self,
        symbol: str,
        reason: str,
        fill: OrderFill | None = None,
        price: float | None = None,
        now: datetime | None = None,
    ) -> LedgerResult:
        position = self._positions.get(symbol)
        if position is None:
            return LedgerResult.fail(LedgerError.POSITION_NOT_FOUND, f"no position for {symbol}")
        exit_price = fill.price if fill is not None and fill.price > 0 else price
        if exit_price is None or exit_price <= 0:
            return LedgerResult.fail(LedgerError.INVALID_SIZE, f"invalid exit price {exit_price}")

        del self._positions[symbol]
        trade = self._trade(position, position.quantity, exit_price, reason, now or _utc_now())
        logger.info(
            "CLOSE %s qty=%s exit=%.8f profit=%.2f%% reason=%s",
            symbol,
            position.quantity,
            exit_price,
            trade.profit * 100,
            reason,
        )
        return LedgerResult(ok=True, position=position, trade=trade, quantity=position.quantity)

    def scale_out_quantity(self, symbol: str, fraction: float, price: float) -> LedgerResult:
        """计算分批止盈的卖出数量。

        剩余数量低于交易所最小数量/名义时返回 REMAINDER_TOO_SMALL，调用方应改为全部平仓。
        """
        position = self._positions.get(symbol)
        if position is None:
            return LedgerResult.fail(LedgerError.POSITION_NOT_FOUND, f"no position for {symbol}")
        if not 0 < fraction < 1:
            return LedgerResult.fail(LedgerError.INVALID_SIZE, f"invalid fraction {fraction}")
        filters = self.filters_for(symbol)
        qty = floor_to_step(position.quantity * fraction, filters.step_size)
        if qty <= 0 or (filters.min_qty > 0 and qty < filters.min_qty):
            return LedgerResult.fail(LedgerError.INVALID_SIZE, f"scale-out qty {qty} too small")
        if filters.min_notional > 0 and qty * price < filters.min_notional:
            return LedgerResult.fail(LedgerError.INVALID_SIZE, f"scale-out notional {qty * price:.4f} too small")

        remainder = position.quantity - qty
        if (filters.min_qty > 0 and remainder < filters.min_qty) or (
            filters.min_notional > 0 and remainder * price < filters.min_notional
        ):
            return LedgerResult(
                ok=False,
                error=LedgerError.REMAINDER_TOO_SMALL,
                message=f"remainder {remainder} of {symbol} below exchange minimum",
                position=position,
                quantity=position.quantity,
            )
        return LedgerResult(ok=True, position=position, quantity=qty)

    def scale_out(
        self,
        symbol: str,
        fraction: float,
        reason: str,
        fill: OrderFill | None = None,
        price: float | None = None,
        level: int | None = None,
        now: datetime | None = None,
    ) -> LedgerResult:
        """减仓落账。数量以 fill 为准，无 fill 时按 fraction 计算。"""
        position = self._positions.get(symbol)
        if position is None:
            return LedgerResult.fail(LedgerError.POSITION_NOT_FOUND, f"no position for {symbol}")
        exit_price = fill.price if fill is not None and fill.price > 0 else price
        if exit_price is None or exit_price <= 0:
            return LedgerResult.fail(LedgerError.INVALID_SIZE, f"invalid exit price {exit_price}")

        if fill is not None and fill.quantity > 0:
            qty = fill.quantity
        else:
            planned = self.scale_out_quantity(symbol, fraction, exit_price)
            if not planned.ok:
                return planned
            qty = planned.quantity
        if qty >= position.quantity:
            return self.close(symbol, reason, fill=fill, price=exit_price, now=now)

        position.quantity = position.quantity - qty
        if level is not None:
            position.scale_out_level = max(position.scale_out_level, level)
        trade = self._trade(position, qty, exit_price, reason, now or _utc_now())
        logger.info(
            "SCALE_OUT %s sold=%s remaining=%s price=%.8f reason=%s",
            symbol,
            qty,
            position.quantity,
            exit_price,
            reason,
        )
        return LedgerResult(ok=True, position=replace(position), trade=trade, quantity=qty)

    def update_trailing_stop(self, symbol: str, price: float) -> Optional[Position]:
        """更新峰值与跟踪止损（只上移）。"""
        position = self._positions.get(symbol)
        if position is None or price <= 0:
            return None
        position.peak_price = max(position.peak_price, price)
        new_stop = self.exit_machine.trailing_stop(position, price)
        if new_stop > position.trailing_stop:
            logger.debug("%s trailing stop %.8f -> %.8f", symbol, position.trailing_stop, new_stop)
            position.trailing_stop = new_stop
        return position
