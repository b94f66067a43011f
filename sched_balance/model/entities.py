# sched_balance/model/entities.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..types import NodeId, PodId, Namespace, CpuMillis, Bytes


@dataclass(frozen=True)
class Node:
    """
    Снимок ноды на момент балансировки.

    alloc_* == None означает, что в status.allocatable ресурса нет вообще.
    """
    id: NodeId
    name: str
    alloc_cpu_m: Optional[CpuMillis]
    alloc_mem_b: Optional[Bytes]
    labels: Dict[str, str] = field(default_factory=dict)
    unschedulable: bool = False


@dataclass(frozen=True)
class ContainerResources:
    name: str
    req_cpu_m: CpuMillis = CpuMillis(0)
    req_mem_b: Bytes = Bytes(0)
    limit_cpu_m: CpuMillis = CpuMillis(0)
    limit_mem_b: Bytes = Bytes(0)


@dataclass
class Pod:
    id: PodId
    name: str
    namespace: Namespace
    node: Optional[NodeId]
    containers: List[ContainerResources] = field(default_factory=list)
    init_containers: List[ContainerResources] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    phase: Optional[str] = None
    # status.qosClass, если API его уже посчитал
    qos_class: Optional[str] = None

    @property
    def req_cpu_m(self) -> int:
        return sum(int(c.req_cpu_m) for c in self.containers)

    @property
    def req_mem_b(self) -> int:
        return sum(int(c.req_mem_b) for c in self.containers)


@dataclass
class ClusterSnapshot:
    nodes: Dict[NodeId, Node]
    pods: Dict[PodId, Pod]
    captured_at: Optional[float] = None

    def pods_on(self, node_name: str) -> List[Pod]:
        return [p for p in self.pods.values() if p.node == node_name]
