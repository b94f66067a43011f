"""
Shared pytest fixtures: in-memory cluster, node/pod factories and a fake clock.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional, Tuple

import pytest

from sched_balance.config import BalanceSettings
from sched_balance.errors import ClusterApiError
from sched_balance.model.entities import ContainerResources, Node, Pod
from sched_balance.snapshot.collector import pod_from_manifest
from sched_balance.types import Bytes, CpuMillis, Namespace, NodeId, PodId

MiB = 1024 ** 2
GiB = 1024 ** 3


def make_node(name: str, cpu_m: Optional[int] = 2000, mem_b: Optional[int] = 4 * GiB) -> Node:
    return Node(
        id=NodeId(name),
        name=name,
        alloc_cpu_m=CpuMillis(cpu_m) if cpu_m is not None else None,
        alloc_mem_b=Bytes(mem_b) if mem_b is not None else None,
    )


def make_pod(
    name: str,
    node: Optional[str],
    cpu_m: int = 0,
    mem_b: int = 0,
    limit_cpu_m: int = 0,
    limit_mem_b: int = 0,
    namespace: str = "default",
    labels: Optional[Dict[str, str]] = None,
    phase: str = "Running",
    containers: Optional[List[ContainerResources]] = None,
) -> Pod:
    if containers is None:
        containers = [
            ContainerResources(
                name="main",
                req_cpu_m=CpuMillis(cpu_m),
                req_mem_b=Bytes(mem_b),
                limit_cpu_m=CpuMillis(limit_cpu_m),
                limit_mem_b=Bytes(limit_mem_b),
            )
        ]
    return Pod(
        id=PodId(f"{namespace}/{name}"),
        name=name,
        namespace=Namespace(namespace),
        node=NodeId(node) if node else None,
        containers=containers,
        labels=dict(labels or {}),
        phase=phase,
    )


def pinned_node(manifest: Dict[str, Any]) -> str:
    terms = manifest["spec"]["affinity"]["nodeAffinity"]["requiredDuringSchedulingIgnoredDuringExecution"]
    return terms["nodeSelectorTerms"][0]["matchFields"][0]["values"][0]


class FakeCluster:
    """
    Минимальная in-memory реализация поверхности ClusterClient.

    Поды, созданные через create_pod, сразу "садятся" на ноду из node affinity
    с фазой start_phase.
    """

    def __init__(self, nodes: Optional[List[Node]] = None, pods: Optional[List[Pod]] = None):
        self.nodes: List[Node] = list(nodes or [])
        self.pods: Dict[str, Pod] = {p.id: p for p in (pods or [])}
        self.created: List[Tuple[str, Dict[str, Any]]] = []
        self.fail_create_on: Optional[int] = None
        self.create_error: Exception = ClusterApiError("create pod failed: 500 Internal Server Error", status=500)
        self.start_phase = "Running"
        self.sticky = False
        self.fail_delete_by_label = False
        self.list_pods_calls = 0

    def add_pod(self, pod: Pod) -> None:
        self.pods[pod.id] = pod

    def list_nodes(self, label_selector=None, names=None) -> List[Node]:
        if names is None:
            return list(self.nodes)
        by_name = {n.name: n for n in self.nodes}
        missing = [n for n in names if n not in by_name]
        if missing:
            raise ClusterApiError(f"nodes not found: {', '.join(missing)}", status=404)
        return [by_name[n] for n in names]

    def list_pods(self) -> List[Pod]:
        self.list_pods_calls += 1
        return list(self.pods.values())

    def create_pod(self, namespace: str, manifest: Dict[str, Any]) -> str:
        if self.fail_create_on is not None and len(self.created) + 1 == self.fail_create_on:
            raise self.create_error
        self.created.append((namespace, manifest))
        m = copy.deepcopy(manifest)
        m["metadata"]["namespace"] = namespace
        m["spec"]["nodeName"] = pinned_node(manifest)
        m["status"] = {"phase": self.start_phase}
        pod = pod_from_manifest(m)
        self.pods[pod.id] = pod
        return pod.name

    def get_pod_phase(self, namespace: str, name: str) -> Optional[str]:
        pod = self.pods.get(f"{namespace}/{name}")
        return pod.phase if pod else None

    def delete_pod(self, namespace: str, name: str) -> bool:
        key = f"{namespace}/{name}"
        if key not in self.pods:
            return False
        if not self.sticky:
            del self.pods[key]
        return True

    def _labelled(self, namespace: str, labels: Dict[str, str]) -> List[Pod]:
        return [
            p for p in self.pods.values()
            if p.namespace == namespace and all(p.labels.get(k) == v for k, v in labels.items())
        ]

    def delete_pods_by_label(self, namespace: str, labels: Dict[str, str]) -> None:
        if self.fail_delete_by_label:
            raise ClusterApiError("delete labelled pods failed: 503", status=503)
        if self.sticky:
            return
        for p in self._labelled(namespace, labels):
            del self.pods[p.id]

    def list_pods_by_label(self, namespace: str, labels: Dict[str, str]) -> List[str]:
        return [p.name for p in self._labelled(namespace, labels)]


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> BalanceSettings:
    return BalanceSettings(namespace="e2e", floor_ratio=0.5, pod_start_timeout_s=10.0)


@pytest.fixture
def two_nodes() -> FakeCluster:
    """Пример из описания: A с подом 500m/1Gi, B пустая; обе 2000m/4Gi."""
    return FakeCluster(
        nodes=[make_node("node-a"), make_node("node-b")],
        pods=[make_pod("busy", "node-a", cpu_m=500, mem_b=1 * GiB)],
    )
