# sched_balance/balance/fraction.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

from ..errors import InsufficientHeadroomError, MissingCapacityError
from ..model.entities import ContainerResources, Node, Pod
from ..model.qos import QOS_BEST_EFFORT, is_best_effort_on, pod_qos_class
from ..model.resource_request import WorkloadRequest
from ..types import (
    RESOURCE_CPU, RESOURCE_MEMORY, DEFAULT_MILLI_CPU_REQUEST, DEFAULT_MEMORY_REQUEST,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeFraction:
    """
    Доля занятых requests на ноде, по CPU и памяти.
    0.0..1.0; перегруженная нода == ровно 1.0.
    """
    node: str
    cpu_fraction: float
    mem_fraction: float
    alloc_cpu_m: int
    alloc_mem_b: int
    requested_cpu_m: int
    requested_mem_b: int

    @property
    def free_mem_b(self) -> float:
        return self.alloc_mem_b - self.mem_fraction * self.alloc_mem_b


def _nonzero_cpu(c: ContainerResources) -> int:
    return int(c.req_cpu_m) if int(c.req_cpu_m) > 0 else int(DEFAULT_MILLI_CPU_REQUEST)


def _nonzero_mem(c: ContainerResources) -> int:
    return int(c.req_mem_b) if int(c.req_mem_b) > 0 else int(DEFAULT_MEMORY_REQUEST)


def pod_accounted_requests(pod: Pod) -> tuple[int, int]:
    """
    Сколько под "весит" для шедулера (cpu_m, mem_b).

    BestEffort-поды шедулер не учитывает вовсе; по измерению, где у пода
    нет ни requests, ни limits, он тоже ничего не добавляет. Иначе
    суммируем non-zero requests контейнеров (0 -> дефолт шедулера).
    """
    if pod_qos_class(pod) == QOS_BEST_EFFORT:
        return 0, 0
    cpu = 0 if is_best_effort_on(pod, RESOURCE_CPU) else sum(_nonzero_cpu(c) for c in pod.containers)
    mem = 0 if is_best_effort_on(pod, RESOURCE_MEMORY) else sum(_nonzero_mem(c) for c in pod.containers)
    return cpu, mem


def _capacity(node: Node) -> tuple[int, int]:
    if node.alloc_cpu_m is None or int(node.alloc_cpu_m) <= 0:
        raise MissingCapacityError(node.name, RESOURCE_CPU)
    if node.alloc_mem_b is None or int(node.alloc_mem_b) <= 0:
        raise MissingCapacityError(node.name, RESOURCE_MEMORY)
    return int(node.alloc_cpu_m), int(node.alloc_mem_b)


def compute_fraction(node: Node, baseline: WorkloadRequest, pods: Iterable[Pod]) -> NodeFraction:
    """
    Доля CPU/памяти ноды, занятая requests подов на ней.

    Отсчёт начинается с baseline: эталонный тестовый под учитывается один раз,
    даже если на ноде ещё ничего нет. pods: весь листинг кластера,
    фильтрация по ноде здесь.
    """
    log.info(f"Computing CPU/memory fraction for node: {node.name}")
    alloc_cpu_m, alloc_mem_b = _capacity(node)

    total_cpu = int(baseline.cpu_m)
    total_mem = int(baseline.mem_b)
    for pod in pods:
        if pod.node != node.name:
            continue
        cpu, mem = pod_accounted_requests(pod)
        log.debug(f"Pod on node {node.name}: {pod.id}, cpu: {cpu}m, mem: {mem}")
        total_cpu += cpu
        total_mem += mem

    cpu_fraction = min(1.0, float(total_cpu) / float(alloc_cpu_m))
    mem_fraction = min(1.0, float(total_mem) / float(alloc_mem_b))

    log.info(
        f"Node: {node.name}, requested cpu: {total_cpu}m / {alloc_cpu_m}m ({cpu_fraction:.4f}), "
        f"requested mem: {total_mem} / {alloc_mem_b} ({mem_fraction:.4f})"
    )
    return NodeFraction(
        node=node.name,
        cpu_fraction=cpu_fraction,
        mem_fraction=mem_fraction,
        alloc_cpu_m=alloc_cpu_m,
        alloc_mem_b=alloc_mem_b,
        requested_cpu_m=total_cpu,
        requested_mem_b=total_mem,
    )


def compute_fractions(nodes: Sequence[Node], baseline: WorkloadRequest, pods: Sequence[Pod]) -> Dict[str, NodeFraction]:
    """Таблица node -> NodeFraction; порядок как у nodes."""
    return {node.name: compute_fraction(node, baseline, pods) for node in nodes}


# ---------------------------------------------------------------------------
# Проверка запаса памяти перед балансировкой
# ---------------------------------------------------------------------------


def find_overutilized_nodes(fractions: Iterable[NodeFraction], mem_floor_b: int) -> List[str]:
    """
    Ноды, где свободной памяти меньше 2 * mem_floor_b.

    Двойной запас: на ноду должен влезть и balance-под (минимум mem_floor_b),
    и реальный тестовый под после выравнивания.
    """
    required = 2 * mem_floor_b
    return [f.node for f in fractions if f.free_mem_b < required]


def ensure_headroom(fractions: Iterable[NodeFraction], mem_floor_b: int) -> None:
    offending = find_overutilized_nodes(fractions, mem_floor_b)
    if offending:
        raise InsufficientHeadroomError(offending, 2 * mem_floor_b)
