"""精度与步进工具（用于 LOT_SIZE 数量裁剪与下单参数格式化）。"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal, InvalidOperation


def decimals_from_step(step: float) -> int:
    """根据 step（通常是 10 的负次幂，如 0.001）推导小数位数。"""
    try:
        d = Decimal(str(step)).normalize()
    except InvalidOperation:
        return 0
    if d == 0:
        return 0
    exp = d.as_tuple().exponent
    return max(0, -int(exp))


def _round_to_step(value: float, step: float | None, rounding: str) -> float:
    if step is None or float(step) <= 0:
        return float(value)
    v = Decimal(str(value))
    sd = Decimal(str(step))
    n = (v / sd).to_integral_value(rounding=rounding)
    out = n * sd
    decs = decimals_from_step(float(step))
    out = out.quantize(Decimal(1).scaleb(-decs)) if decs > 0 else out.quantize(Decimal(1))
    return float(out)


def floor_to_step(value: float, step: float | None) -> float:
    """把 value 向下裁剪到 step 的整数倍（避免 float 精度噪声）。"""
    return _round_to_step(value, step, ROUND_FLOOR)


def ceil_to_step(value: float, step: float | None) -> float:
    """把 value 向上取整到 step 的整数倍。"""
    return _round_to_step(value, step, ROUND_CEILING)


def format_qty(value: float, step: float | None = None) -> str:
    """格式化下单数量：按 step 的小数位输出，去掉多余的 0。"""
    if step:
        decs = decimals_from_step(float(step))
        text = f"{float(value):.{decs}f}"
    else:
        text = f"{float(value):.8f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
