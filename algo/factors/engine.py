"""指标引擎：窗口 -> IndicatorSnapshot。

设计约定：
- 纯函数：同一窗口内容永远得到同一快照，没有跨调用的累加器；
- 窗口不足 `min_window` 时返回中性快照；
- 任何非有限值（NaN/Inf）在最后一步替换为该字段的中性值。
"""

from __future__ import annotations

import math
from dataclasses import fields, is_dataclass, replace
from enum import Enum
from typing import Any, Sequence

from algo.factors import complexity, liquidity, momentum, trend, volatility, volume
from algo.factors.snapshot import IndicatorSnapshot, Stochastic, neutral_snapshot
from market.window import window_to_frame
from shared.config.schema import IndicatorConfig
from shared.models.models import PriceTick
from shared.utils.logging import setup_logger

logger = setup_logger("indicator-engine")

DEFAULT_MIN_WINDOW = 50


def _sanitize(value: Any, neutral: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return replace(
            value,
            **{f.name: _sanitize(getattr(value, f.name), getattr(neutral, f.name)) for f in fields(value)},
        )
    if isinstance(value, (bool, Enum, int)) and not isinstance(value, float):
        return value
    if isinstance(value, float):
        return float(value) if math.isfinite(value) else neutral
    return value


class IndicatorEngine:
    """按配置的周期计算全部指标。"""

    def __init__(self, cfg: IndicatorConfig | None = None, min_window: int = DEFAULT_MIN_WINDOW):
        self.cfg = cfg or IndicatorConfig()
        self.min_window = min_window

    def compute(self, window: Sequence[PriceTick]) -> IndicatorSnapshot:
        ticks = list(window)
        n = len(ticks)
        price = ticks[-1].close if ticks else 0.0
        if n < self.min_window:
            return neutral_snapshot(price, n)

        cfg = self.cfg
        df = window_to_frame(ticks)
        o, h, lo, c, v = df["open"], df["high"], df["low"], df["close"], df["volume"]

        atr_series = volatility.atr_series(h, lo, c, cfg.atr_period)
        atr_value = volatility.atr(h, lo, c, cfg.atr_period)
        stoch_k, stoch_d = momentum.stochastic(h, lo, c, cfg.stoch_k_period, cfg.stoch_d_period)
        rvi_value, rvi_signal = momentum.rvi(o, h, lo, c, cfg.rvi_period)
        current_volume, volume_sma, volume_ratio = volume.volume_stats(v, cfg.volume_sma_period)

        snapshot = IndicatorSnapshot(
            price=float(price),
            rsi=momentum.rsi(c, cfg.rsi_period),
            williams_r=momentum.williams_r(h, lo, c, cfg.williams_period),
            cci=momentum.cci(h, lo, c, cfg.cci_period),
            roc=momentum.roc(c, cfg.roc_period),
            rvi=rvi_value,
            rvi_signal=rvi_signal,
            uo=momentum.ultimate_oscillator(h, lo, c),
            stochastic=Stochastic(k=stoch_k, d=stoch_d),
            macd=trend.macd(c, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal),
            atr=atr_value,
            atr_percentile=volatility.atr_percentile(atr_series, cfg.atr_percentile_lookback),
            bb_squeeze=volatility.bollinger_squeeze(c, cfg.bb_period, cfg.bb_std, cfg.bb_squeeze_ratio),
            keltner_touch=volatility.keltner_touch(h, lo, c, cfg.keltner_period, cfg.keltner_multiplier),
            parabolic_sar=trend.parabolic_sar(h, lo, cfg.sar_step, cfg.sar_max),
            garch_volatility=volatility.garch_volatility(c),
            obv=volume.obv(c, v),
            vpt=volume.vpt(c, v),
            ad_line=volume.ad_line(h, lo, c, v),
            mfi=volume.mfi(h, lo, c, v, cfg.mfi_period),
            volume=current_volume,
            volume_sma=volume_sma,
            volume_ratio=volume_ratio,
            ichimoku=trend.ichimoku(
                h, lo, c, cfg.ichimoku_tenkan, cfg.ichimoku_kijun, cfg.ichimoku_senkou_b
            ),
            volume_profile=volume.volume_profile(h, lo, c, v, cfg.volume_profile_bins, cfg.value_area_pct),
            fractal_dimension=complexity.fractal_dimension(c),
            hurst_exponent=complexity.hurst_exponent(c),
            smart_money=liquidity.smart_money(o, h, lo, c, v, cfg.smart_money_lookback),
            liquidity=liquidity.liquidity(atr_value, float(price), volume_sma),
            window_size=n,
            is_neutral=False,
        )
        return _sanitize(snapshot, IndicatorSnapshot(price=float(price), window_size=n))


_DEFAULT_ENGINE = IndicatorEngine()


def compute(window: Sequence[PriceTick]) -> IndicatorSnapshot:
    """使用默认周期计算快照。"""
    return _DEFAULT_ENGINE.compute(window)
