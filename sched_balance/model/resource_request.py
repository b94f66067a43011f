# sched_balance/model/resource_request.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from ..types import CpuMillis, Bytes, MiB
from .quantity import format_cpu, format_memory


@dataclass(frozen=True)
class WorkloadRequest:
    """
    Форма ресурсов пода.

    Всё в тех же единицах, что и в snapshot:
      - CPU: milliCPU
      - RAM: байты

    Используется и как baseline (эталонный тестовый под, которым
    "засевается" доля ноды), и как размер balance-пода.
    """
    cpu_m: CpuMillis
    mem_b: Bytes

    limit_cpu_m: Optional[CpuMillis] = None
    limit_mem_b: Optional[Bytes] = None

    def __post_init__(self) -> None:
        if int(self.cpu_m) < 0 or int(self.mem_b) < 0:
            raise ValueError(f"negative resource request: cpu={self.cpu_m}m mem={self.mem_b}")

    def to_resources(self) -> Dict[str, Dict[str, str]]:
        """Блок resources для манифеста контейнера."""
        resources: Dict[str, Dict[str, str]] = {
            "requests": {"cpu": format_cpu(self.cpu_m), "memory": format_memory(self.mem_b)},
        }
        limits: Dict[str, str] = {}
        if self.limit_cpu_m is not None:
            limits["cpu"] = format_cpu(self.limit_cpu_m)
        if self.limit_mem_b is not None:
            limits["memory"] = format_memory(self.limit_mem_b)
        if limits:
            resources["limits"] = limits
        return resources


# эталонный тестовый под: 100m / 100Mi, requests == limits
DEFAULT_BASELINE = WorkloadRequest(
    cpu_m=CpuMillis(100),
    mem_b=Bytes(100 * MiB),
    limit_cpu_m=CpuMillis(100),
    limit_mem_b=Bytes(100 * MiB),
)
