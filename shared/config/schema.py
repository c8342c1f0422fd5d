"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在实盘中“隐蔽爆炸”；
- 所有阈值都能在 YAML 中覆盖，默认值即线上默认门槛。
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ExchangeConfig(BaseModel):
    """交易所配置。"""
    name: str = "binance"
    base_url: str = "https://api.binance.com"
    ws_url: str = "wss://stream.binance.com:9443"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    allow_live: bool = False
    quote_asset: str = "USDT"
    interval: str = "1m"
    recv_window: int = 5000
    timeout_s: float = 10.0

    model_config = ConfigDict(extra="forbid")


class IndicatorConfig(BaseModel):
    """指标周期配置。"""
    rsi_period: int = Field(14, gt=0)
    williams_period: int = Field(14, gt=0)
    cci_period: int = Field(20, gt=0)
    roc_period: int = Field(10, gt=0)
    rvi_period: int = Field(10, gt=0)
    stoch_k_period: int = Field(14, gt=0)
    stoch_d_period: int = Field(3, gt=0)
    macd_fast: int = Field(12, gt=0)
    macd_slow: int = Field(26, gt=0)
    macd_signal: int = Field(9, gt=0)
    atr_period: int = Field(14, gt=0)
    atr_percentile_lookback: int = Field(100, gt=1)
    bb_period: int = Field(20, gt=0)
    bb_std: float = Field(2.0, gt=0)
    bb_squeeze_ratio: float = Field(0.8, gt=0)
    keltner_period: int = Field(20, gt=0)
    keltner_multiplier: float = Field(2.0, gt=0)
    mfi_period: int = Field(14, gt=0)
    volume_sma_period: int = Field(20, gt=0)
    sar_step: float = Field(0.02, gt=0)
    sar_max: float = Field(0.2, gt=0)
    ichimoku_tenkan: int = Field(9, gt=0)
    ichimoku_kijun: int = Field(26, gt=0)
    ichimoku_senkou_b: int = Field(52, gt=0)
    volume_profile_bins: int = Field(24, gt=1)
    value_area_pct: float = Field(0.70, gt=0, le=1)
    smart_money_lookback: int = Field(10, gt=0)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_macd(self) -> "IndicatorConfig":
        if self.macd_fast >= self.macd_slow:
            raise ValueError("indicators.macd_fast must be < indicators.macd_slow")
        return self


class EntryConfig(BaseModel):
    """入场评分门槛（total 的分段阈值）。"""
    entry_threshold: float = 70.0
    confidence_medium: float = 70.0
    confidence_high: float = 80.0
    confidence_very_high: float = 90.0
    timing_wait: float = 70.0
    timing_immediate: float = 80.0

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_breakpoints(self) -> "EntryConfig":
        if not (self.confidence_medium <= self.confidence_high <= self.confidence_very_high):
            raise ValueError("entry confidence breakpoints must be non-decreasing")
        if self.timing_wait > self.timing_immediate:
            raise ValueError("entry.timing_wait must be <= entry.timing_immediate")
        return self


class ExitConfig(BaseModel):
    """出场状态机参数。"""
    fee_round_trip: float = Field(0.002, ge=0)
    min_net_profit: float = 0.003
    williams_overbought: float = -20.0
    cci_overbought: float = 100.0
    roc_negative: float = -1.0
    volume_exhaustion_ratio: float = 0.5
    atr_contraction_ratio: float = 0.7
    max_hold_minutes: float = 30.0
    rsi_overbought: float = 80.0
    uo_overbought: float = 70.0
    immediate_max_priority: int = Field(8, ge=1, le=8)
    # 分批止盈：两档（净收益阈值 -> 减仓比例）
    scale_out_min_hold_minutes: float = 10.0
    scale_out_tier1_profit: float = 0.008
    scale_out_tier1_fraction: float = Field(0.3, gt=0, lt=1)
    scale_out_tier2_profit: float = 0.012
    scale_out_tier2_fraction: float = Field(0.5, gt=0, lt=1)
    # 跟踪止损：毛收益阈值 -> 回撤比例，从高到低
    trailing_tiers: list[tuple[float, float]] = Field(
        default_factory=lambda: [(0.015, 0.008), (0.010, 0.005), (0.005, 0.003)]
    )

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_tiers(self) -> "ExitConfig":
        if self.scale_out_tier1_profit > self.scale_out_tier2_profit:
            raise ValueError("exit.scale_out_tier1_profit must be <= exit.scale_out_tier2_profit")
        self.trailing_tiers = sorted(self.trailing_tiers, key=lambda t: t[0], reverse=True)
        return self


class PositionConfig(BaseModel):
    """仓位与止损/止盈配置。"""
    max_positions: int = Field(5, gt=0)
    max_portfolio_usdt: float = Field(200.0, gt=0)
    max_risk_per_trade: float = Field(0.02, gt=0, lt=1)
    max_position_pct: float = Field(0.2, gt=0, le=1)
    fee_rate_round_trip: float = Field(0.002, ge=0)
    atr_stop_multiplier: float = 2.0
    pct_stop: float = Field(0.02, gt=0, lt=1)
    atr_target_multiplier: float = 3.0
    pct_target: float = Field(0.015, gt=0)
    # 交易所规则缺失时的兜底（正常情况由 exchangeInfo 提供）
    default_step_size: float = 0.001
    default_min_qty: float = 0.0
    default_min_notional: float = 5.0

    model_config = ConfigDict(extra="forbid")


class RiskConfig(BaseModel):
    """组合风控配置。"""
    max_portfolio_risk: float = Field(0.10, gt=0, lt=1)
    max_drawdown: float = Field(0.05, gt=0, lt=1)
    trade_history_size: int = Field(100, gt=0)
    reduce_risk_factor: float = Field(0.5, gt=0, le=1)

    model_config = ConfigDict(extra="forbid")


class EngineConfig(BaseModel):
    """编排器（TradingEngine）运行参数。"""
    window_capacity: int = Field(200, gt=0)
    min_window: int = Field(50, gt=0)
    warmup_klines: int = Field(200, ge=0)
    health_check_interval_s: float = Field(30.0, gt=0)
    silence_window_s: float = Field(60.0, gt=0)
    status_log_interval_s: float = Field(300.0, gt=0)
    shutdown_timeout_s: float = Field(10.0, gt=0)
    paper_balance: float = Field(200.0, ge=0)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_window(self) -> "EngineConfig":
        if self.min_window > self.window_capacity:
            raise ValueError("engine.min_window must be <= engine.window_capacity")
        return self


class SymbolsConfig(BaseModel):
    """每日币种列表存储。"""
    data_dir: str = "data"
    max_daily_coins: int = Field(5, gt=0)
    symbols: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class MainConfig(BaseModel):
    """应用总配置。"""
    mode: Literal["dry-run", "paper", "live"] = "dry-run"

    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    indicators: IndicatorConfig = Field(default_factory=IndicatorConfig)
    entry: EntryConfig = Field(default_factory=EntryConfig)
    exit: ExitConfig = Field(default_factory=ExitConfig)
    position: PositionConfig = Field(default_factory=PositionConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    symbols: SymbolsConfig = Field(default_factory=SymbolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @model_validator(mode="before")
    @classmethod
    def _normalize_mode(cls, data):
        if isinstance(data, dict) and isinstance(data.get("mode"), str):
            data = dict(data)
            data["mode"] = data["mode"].replace("_", "-").strip().lower()
        return data


AppConfig = MainConfig
