# sched_balance/model/qos.py
from __future__ import annotations

from typing import Dict, Iterable

from ..types import RESOURCE_CPU, RESOURCE_MEMORY
from .entities import ContainerResources, Pod

QOS_BEST_EFFORT = "BestEffort"
QOS_BURSTABLE = "Burstable"
QOS_GUARANTEED = "Guaranteed"

_DIMENSIONS = (RESOURCE_CPU, RESOURCE_MEMORY)


def _request(c: ContainerResources, dim: str) -> int:
    return int(c.req_cpu_m) if dim == RESOURCE_CPU else int(c.req_mem_b)


def _limit(c: ContainerResources, dim: str) -> int:
    return int(c.limit_cpu_m) if dim == RESOURCE_CPU else int(c.limit_mem_b)


def _all_containers(pod: Pod) -> Iterable[ContainerResources]:
    yield from pod.containers
    yield from pod.init_containers


def compute_qos_class(pod: Pod) -> str:
    """
    QoS-класс пода по правилам Kubernetes (учитываются и init-контейнеры):
      - ни одного ненулевого request/limit по cpu/memory -> BestEffort;
      - у каждого контейнера заданы оба лимита и суммарные requests == limits -> Guaranteed;
      - иначе Burstable.
    """
    requests: Dict[str, int] = {}
    limits: Dict[str, int] = {}
    is_guaranteed = True

    for c in _all_containers(pod):
        found_limits = 0
        for dim in _DIMENSIONS:
            req = _request(c, dim)
            lim = _limit(c, dim)
            if req > 0:
                requests[dim] = requests.get(dim, 0) + req
            if lim > 0:
                limits[dim] = limits.get(dim, 0) + lim
                found_limits += 1
        if found_limits != len(_DIMENSIONS):
            is_guaranteed = False

    if not requests and not limits:
        return QOS_BEST_EFFORT

    if is_guaranteed:
        # request не задан == request по умолчанию равен лимиту
        for dim, req in requests.items():
            if limits.get(dim) != req:
                is_guaranteed = False
                break
    if is_guaranteed and len(limits) == len(_DIMENSIONS):
        return QOS_GUARANTEED
    return QOS_BURSTABLE


def pod_qos_class(pod: Pod) -> str:
    return pod.qos_class or compute_qos_class(pod)


def is_best_effort_on(pod: Pod, dim: str) -> bool:
    """Ни один контейнер пода не просит и не лимитирует ресурс dim."""
    for c in _all_containers(pod):
        if _request(c, dim) > 0 or _limit(c, dim) > 0:
            return False
    return True
