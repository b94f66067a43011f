# sched_balance/config.py
from __future__ import annotations

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .types import CRIO_MIN_MEM_LIMIT

ENV_PREFIX = "SCHED_BALANCE_"

# Общий набор лейблов всех balance-подов: по нему их можно найти и удалить пачкой
BALANCE_POD_LABELS: Dict[str, str] = {"podname": "priority-balanced-memory"}


class BalanceSettings(BaseModel):
    """
    Настройки балансировщика.

    Всё, что можно задать через env, читается из SCHED_BALANCE_<FIELD>
    (например SCHED_BALANCE_FLOOR_RATIO=0.6).
    """
    namespace: str = "default"
    kube_context: Optional[str] = None
    kubeconfig: Optional[str] = None
    in_cluster: bool = False

    floor_ratio: float = 0.5
    mem_floor_b: int = int(CRIO_MIN_MEM_LIMIT)
    pause_image: str = "registry.k8s.io/pause:3.9"

    poll_interval_s: float = 2.0
    cleanup_timeout_s: float = 60.0
    pod_start_timeout_s: float = 300.0

    balance_labels: Dict[str, str] = Field(default_factory=lambda: dict(BALANCE_POD_LABELS))

    @field_validator("floor_ratio")
    @classmethod
    def _check_ratio(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"floor_ratio must be within [0, 1], got {v}")
        return v

    @field_validator("poll_interval_s", "cleanup_timeout_s", "pod_start_timeout_s")
    @classmethod
    def _check_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts and intervals must be positive")
        return v

    @field_validator("mem_floor_b")
    @classmethod
    def _check_floor(cls, v: int) -> int:
        if v < 0:
            raise ValueError("mem_floor_b must not be negative")
        return v

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None, **overrides: Any) -> "BalanceSettings":
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {}
        for name in cls.model_fields:
            if name == "balance_labels":
                continue
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                data[name] = raw
        # явные параметры (флаги CLI) важнее env; None означает "не задано"
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)
