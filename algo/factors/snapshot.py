"""指标快照（IndicatorSnapshot）与中性默认值。

快照是窗口内容的纯函数结果；窗口不足最小长度时返回 `neutral_snapshot()`，
其取值保证下游评分视为“无信号”。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class CloudSignal(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class MACD:
    macd: float = 0.0
    signal: float = 0.0
    histogram: float = 0.0


@dataclass(frozen=True)
class Stochastic:
    k: float = 50.0
    d: float = 50.0


@dataclass(frozen=True)
class IchimokuCloud:
    tenkan: float = 0.0
    kijun: float = 0.0
    senkou_a: float = 0.0
    senkou_b: float = 0.0
    chikou: float = 0.0
    signal: CloudSignal = CloudSignal.NEUTRAL


@dataclass(frozen=True)
class VolumeProfile:
    point_of_control: float = 0.0
    value_area_high: float = 0.0
    value_area_low: float = 0.0


@dataclass(frozen=True)
class SmartMoney:
    """基于 OHLCV 的资金流代理（没有真实订单簿）。"""

    cvd: float = 0.0
    delta: float = 0.0
    order_flow: float = 0.0
    imbalance_ratio: float = 1.0


@dataclass(frozen=True)
class Liquidity:
    """由 ATR 与成交量统计估算的价差/深度/效率。"""

    spread: float = 0.0
    depth: float = 0.0
    efficiency: float = 1.0


@dataclass(frozen=True)
class IndicatorSnapshot:
    price: float = 0.0

    # 动量
    rsi: float = 50.0
    williams_r: float = -50.0
    cci: float = 0.0
    roc: float = 0.0
    rvi: float = 0.0
    rvi_signal: float = 0.0
    uo: float = 50.0
    stochastic: Stochastic = field(default_factory=Stochastic)

    # 趋势 / 波动
    macd: MACD = field(default_factory=MACD)
    atr: float = 0.0
    atr_percentile: float = 50.0
    bb_squeeze: bool = False
    keltner_touch: bool = False
    parabolic_sar: float = 0.0
    garch_volatility: float = 0.0

    # 量能
    obv: float = 0.0
    vpt: float = 0.0
    ad_line: float = 0.0
    mfi: float = 50.0
    volume: float = 0.0
    volume_sma: float = 0.0
    volume_ratio: float = 1.0

    # 结构
    ichimoku: IchimokuCloud = field(default_factory=IchimokuCloud)
    volume_profile: VolumeProfile = field(default_factory=VolumeProfile)
    fractal_dimension: float = 1.5
    hurst_exponent: float = 0.5
    smart_money: SmartMoney = field(default_factory=SmartMoney)
    liquidity: Liquidity = field(default_factory=Liquidity)

    window_size: int = 0
    is_neutral: bool = False


def neutral_snapshot(price: float = 0.0, window_size: int = 0) -> IndicatorSnapshot:
    """窗口不足时的中性快照（固定取值，无随机性）。"""
    return IndicatorSnapshot(price=float(price), window_size=int(window_size), is_neutral=True)
