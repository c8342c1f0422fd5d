"""订单幂等 ID（newClientOrderId）生成。

要求：
- 同一交易意图在重放/重启后可重建（deterministic）。
- 长度可控，Binance 限制 36 字符以内（用 hash 缩短）。
"""

from __future__ import annotations

import hashlib
from datetime import datetime


def make_client_order_id(
    *,
    symbol: str,
    side: str,
    action: str,
    intent_ts: datetime,
    seq: int,
) -> str:
    raw = "|".join(
        [
            str(symbol),
            str(side).upper(),
            str(action),
            intent_ts.isoformat(),
            str(int(seq)),
        ]
    )
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:24]
    return f"vc_{digest}"
