"""配置键校验：在 pydantic 之前给出带“did you mean”提示的错误。

pydantic 的 extra="forbid" 只会报 “Extra inputs are not permitted”，
对 YAML 里的拼写错误不够友好；这里按 schema 字段名做一次预检查。
"""

from __future__ import annotations

import difflib
from typing import Any, Iterable

from pydantic import BaseModel

from shared.config.schema import MainConfig


def _suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def _ensure_allowed_keys(block: dict[str, Any], *, allowed: set[str], ctx: str) -> None:
    unknown = [k for k in block.keys() if k not in allowed]
    if not unknown:
        return
    parts = []
    for k in sorted(unknown):
        suggestion = _suggest_key(k, allowed)
        if suggestion:
            parts.append(f"{k} (did you mean '{suggestion}'?)")
        else:
            parts.append(k)
    raise ValueError(f"{ctx} contains unknown keys: {', '.join(parts)}")


def _section_model(field_info) -> type[BaseModel] | None:
    ann = field_info.annotation
    if isinstance(ann, type) and issubclass(ann, BaseModel):
        return ann
    return None


def validate_raw_config(cfg: dict[str, Any]) -> None:
    """校验 raw config dict（来自 YAML + env 展开后）。"""
    if not isinstance(cfg, dict):
        raise ValueError("Config root must be a dict")

    fields = MainConfig.model_fields
    _ensure_allowed_keys(cfg, allowed=set(fields), ctx="config")

    for name, info in fields.items():
        block = cfg.get(name)
        model = _section_model(info)
        if model is None or block is None:
            continue
        if not isinstance(block, dict):
            raise ValueError(f"{name} must be a dict")
        _ensure_allowed_keys(block, allowed=set(model.model_fields), ctx=name)
