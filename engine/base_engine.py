"""引擎基类。

约定：异步生命周期 `start()` / `stop()`，同步入口 `run() -> EngineResult`
（CLI 使用），状态面 `get_system_status()` 只暴露计数与指标，不暴露异常栈。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class EngineResult:
    """引擎运行结果（统一出口）。"""

    summary: dict[str, Any]
    artifacts: dict[str, Any] | None = None


class BaseEngine(ABC):
    @abstractmethod
    async def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_system_status(self) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def run(self) -> EngineResult:
        raise NotImplementedError
