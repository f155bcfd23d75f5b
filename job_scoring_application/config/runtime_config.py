from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

import yaml

from .paths import resolve_config_path


@dataclass
class RuntimeConfig:
    scoring_batch_size: int
    scoring_batch_delay_seconds: float
    default_daily_ai_limit: int
    default_monthly_ai_limit: int
    high_score_threshold: int
    quota_commit_max_attempts: int
    model_http_timeout_seconds: int
    model_temperature: float


def _load_runtime_yaml() -> Dict[str, Any]:
    path = resolve_config_path("runtime.yaml")
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text()) or {}
    return data if isinstance(data, dict) else {}


def _coerce_int(config: Dict[str, Any], key: str, default: int) -> int:
    value = config.get(key)
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    return default


def _coerce_float(config: Dict[str, Any], key: str, default: float) -> float:
    value = config.get(key)
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    return default


def build_runtime_config(raw: Dict[str, Any]) -> RuntimeConfig:
    return RuntimeConfig(
        scoring_batch_size=max(1, _coerce_int(raw, "scoring_batch_size", 5)),
        scoring_batch_delay_seconds=_coerce_float(raw, "scoring_batch_delay_seconds", 1.0),
        default_daily_ai_limit=_coerce_int(raw, "default_daily_ai_limit", 100),
        default_monthly_ai_limit=_coerce_int(raw, "default_monthly_ai_limit", 1000),
        high_score_threshold=_coerce_int(raw, "high_score_threshold", 6),
        quota_commit_max_attempts=max(1, _coerce_int(raw, "quota_commit_max_attempts", 5)),
        model_http_timeout_seconds=_coerce_int(raw, "model_http_timeout_seconds", 60),
        model_temperature=_coerce_float(raw, "model_temperature", 0.3),
    )


runtime_config = build_runtime_config(_load_runtime_yaml())
