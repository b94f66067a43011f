# sched_balance/balance/planner.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List

from ..model.resource_request import WorkloadRequest
from ..types import CpuMillis, Bytes
from .fraction import NodeFraction

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeTopUp:
    """Сколько надо досыпать на ноду, чтобы выйти на target."""
    node: str
    extra_cpu_m: int
    extra_mem_b: int      # уже включает mem_floor_b
    before: NodeFraction

    @property
    def projected_cpu_fraction(self) -> float:
        return self.before.cpu_fraction + self.extra_cpu_m / float(self.before.alloc_cpu_m)

    @property
    def projected_mem_fraction(self) -> float:
        return self.before.mem_fraction + self.extra_mem_b / float(self.before.alloc_mem_b)

    def as_request(self) -> WorkloadRequest:
        return WorkloadRequest(cpu_m=CpuMillis(self.extra_cpu_m), mem_b=Bytes(self.extra_mem_b))


@dataclass(frozen=True)
class BalancePlan:
    target: float
    floor_ratio: float
    max_observed: float
    mem_floor_b: int
    top_ups: List[NodeTopUp]

    def for_node(self, node: str) -> NodeTopUp:
        for t in self.top_ups:
            if t.node == node:
                return t
        raise KeyError(node)


def max_observed_fraction(fractions: Iterable[NodeFraction]) -> float:
    return max((max(f.cpu_fraction, f.mem_fraction) for f in fractions), default=0.0)


def select_target(fractions: Iterable[NodeFraction], floor_ratio: float) -> float:
    """
    Общая доля, к которой тянем все ноды.

    Берём максимум по всем нодам и обоим ресурсам: опустить загрузку
    мы не можем (чужие поды не трогаем), только поднять.
    """
    return max(floor_ratio, max_observed_fraction(fractions))


def plan_balance(fractions: Dict[str, NodeFraction], floor_ratio: float, mem_floor_b: int) -> BalancePlan:
    if not 0.0 <= floor_ratio <= 1.0:
        raise ValueError(f"floor_ratio must be within [0, 1], got {floor_ratio}")

    observed = max_observed_fraction(fractions.values())
    target = select_target(fractions.values(), floor_ratio)
    log.info(f"Balancing target ratio: {target:.4f} (floor {floor_ratio}, max observed {observed:.4f})")

    top_ups: List[NodeTopUp] = []
    for name, f in fractions.items():
        # отрицательный request невалиден: если нода уже выше target по одному
        # из ресурсов (target задан другим ресурсом), добавляем 0
        extra_cpu = max(0, int((target - f.cpu_fraction) * f.alloc_cpu_m))
        extra_mem = max(0, int((target - f.mem_fraction) * f.alloc_mem_b)) + int(mem_floor_b)
        top_ups.append(NodeTopUp(node=name, extra_cpu_m=extra_cpu, extra_mem_b=extra_mem, before=f))
        log.info(f"Node: {name}, extra cpu: {extra_cpu}m, extra mem: {extra_mem}")

    return BalancePlan(
        target=target,
        floor_ratio=floor_ratio,
        max_observed=observed,
        mem_floor_b=int(mem_floor_b),
        top_ups=top_ups,
    )
