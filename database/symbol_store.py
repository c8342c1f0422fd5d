"""每日交易币种列表（DailySymbolStore）。

存储格式：`<data_dir>/daily-coins-YYYY-MM-DD.json`

    {"date": "2026-10-19",
     "coins": [{"symbol": "BTCUSDT", "volatility": "high", "addedDate": "2026-10-19", "isActive": true}]}

移除只标记 isActive=false，不从文件中删除。
"""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

from shared.models.models import Coin, VolatilityTier
from shared.utils.logging import setup_logger

logger = setup_logger("symbol-store")


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _coin_from_json(raw: dict[str, Any]) -> Coin:
    added = raw.get("addedDate")
    return Coin(
        symbol=str(raw["symbol"]).upper(),
        volatility_tier=VolatilityTier(str(raw.get("volatility") or "medium").lower()),
        is_active=bool(raw.get("isActive", True)),
        added_date=date.fromisoformat(added) if added else None,
    )


def _coin_to_json(coin: Coin) -> dict[str, Any]:
    return {
        "symbol": coin.symbol,
        "volatility": coin.volatility_tier.value,
        "addedDate": coin.added_date.isoformat() if coin.added_date else None,
        "isActive": coin.is_active,
    }


class DailySymbolStore:
    """按日期管理交易币种；每天最多 max_daily_coins 个有效币种。"""

    def __init__(self, data_dir: str | Path = "data", max_daily_coins: int = 5, day: date | None = None):
        self.data_dir = Path(data_dir)
        self.max_daily_coins = max_daily_coins
        self.day = day or _today()
        self._coins: list[Coin] = []
        self._loaded = False

    def path_for(self, day: date) -> Path:
        return self.data_dir / f"daily-coins-{day.isoformat()}.json"

    @property
    def path(self) -> Path:
        return self.path_for(self.day)

    def load(self, day: date | None = None) -> list[Coin]:
        """加载某日列表；文件不存在时为空列表。格式错误直接抛出 ValueError。"""
        if day is not None:
            self.day = day
        path = self.path
        self._loaded = True
        if not path.exists():
            logger.info("No daily coins file for %s, starting with empty list", self.day)
            self._coins = []
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            self._coins = [_coin_from_json(c) for c in data.get("coins", [])]
        except (json.JSONDecodeError, KeyError, ValueError) as exc:
            raise ValueError(f"invalid daily coins file {path}: {exc}") from exc
        logger.info("Loaded %d daily coins for %s", len(self.get_active_symbols()), self.day)
        return list(self._coins)

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def save(self) -> Path:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        payload = {"date": self.day.isoformat(), "coins": [_coin_to_json(c) for c in self._coins]}
        self.path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        logger.debug("Saved daily coins to %s", self.path)
        return self.path

    def get_active_symbols(self) -> list[Coin]:
        self._ensure_loaded()
        return [c for c in self._coins if c.is_active]

    def get_all(self) -> list[Coin]:
        self._ensure_loaded()
        return list(self._coins)

    def get(self, symbol: str) -> Coin | None:
        self._ensure_loaded()
        symbol = symbol.upper()
        return next((c for c in self._coins if c.symbol == symbol), None)

    def add(self, symbol: str, volatility: VolatilityTier | str = VolatilityTier.MEDIUM) -> bool:
        self._ensure_loaded()
        symbol = symbol.upper()
        tier = VolatilityTier(volatility) if not isinstance(volatility, VolatilityTier) else volatility
        if len(self.get_active_symbols()) >= self.max_daily_coins:
            logger.warning("Maximum daily coins reached (%d)", self.max_daily_coins)
            return False
        existing = self.get(symbol)
        if existing is not None and existing.is_active:
            logger.warning("Coin %s already exists in daily list", symbol)
            return False
        if existing is not None:
            existing.is_active = True
            existing.volatility_tier = tier
        else:
            self._coins.append(Coin(symbol=symbol, volatility_tier=tier, is_active=True, added_date=self.day))
        self.save()
        logger.info("Added daily coin: %s (%s volatility)", symbol, tier.value)
        return True

    def remove(self, symbol: str) -> bool:
        coin = self.get(symbol)
        if coin is None or not coin.is_active:
            logger.warning("Coin %s not found in daily list", symbol)
            return False
        coin.is_active = False
        self.save()
        logger.info("Removed daily coin: %s", coin.symbol)
        return True

    def update_volatility(self, symbol: str, volatility: VolatilityTier | str) -> bool:
        coin = self.get(symbol)
        if coin is None:
            logger.warning("Coin %s not found in daily list", symbol)
            return False
        coin.volatility_tier = VolatilityTier(volatility)
        self.save()
        logger.info("Updated volatility for %s: %s", coin.symbol, coin.volatility_tier.value)
        return True

    def by_volatility(self, volatility: VolatilityTier | str) -> list[Coin]:
        tier = VolatilityTier(volatility)
        return [c for c in self.get_active_symbols() if c.volatility_tier == tier]

    def daily_stats(self) -> dict[str, Any]:
        active = self.get_active_symbols()
        return {
            "total_coins": len(active),
            "max_coins": self.max_daily_coins,
            "high_volatility": len(self.by_volatility(VolatilityTier.HIGH)),
            "medium_volatility": len(self.by_volatility(VolatilityTier.MEDIUM)),
            "low_volatility": len(self.by_volatility(VolatilityTier.LOW)),
            "utilization": len(active) / self.max_daily_coins * 100.0,
        }
