# sched_balance/snapshot/collector.py
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..model.entities import ClusterSnapshot, ContainerResources, Node, Pod
from ..model.quantity import parse_cpu, parse_memory, parse_optional_cpu, parse_optional_memory
from ..types import NodeId, PodId, Namespace

if TYPE_CHECKING:
    from ..cluster.client import ClusterClient

log = logging.getLogger(__name__)


def _container_from_manifest(c: Dict[str, Any]) -> ContainerResources:
    resources = c.get("resources") or {}
    requests = resources.get("requests") or {}
    limits = resources.get("limits") or {}
    return ContainerResources(
        name=c.get("name") or "",
        req_cpu_m=parse_cpu(requests.get("cpu")),
        req_mem_b=parse_memory(requests.get("memory")),
        limit_cpu_m=parse_cpu(limits.get("cpu")),
        limit_mem_b=parse_memory(limits.get("memory")),
    )


def node_from_manifest(kn: Dict[str, Any]) -> Node:
    meta = kn.get("metadata") or {}
    spec = kn.get("spec") or {}
    status = kn.get("status") or {}
    alloc = status.get("allocatable") or {}
    name = meta.get("name")
    return Node(
        id=NodeId(name),
        name=name,
        alloc_cpu_m=parse_optional_cpu(alloc.get("cpu")),
        alloc_mem_b=parse_optional_memory(alloc.get("memory")),
        labels=dict(meta.get("labels") or {}),
        unschedulable=bool(spec.get("unschedulable", False)),
    )


def pod_from_manifest(kp: Dict[str, Any]) -> Pod:
    meta = kp.get("metadata") or {}
    spec = kp.get("spec") or {}
    status = kp.get("status") or {}
    namespace = meta.get("namespace") or "default"
    name = meta.get("name")
    node_name = spec.get("nodeName")
    return Pod(
        id=PodId(f"{namespace}/{name}"),
        name=name,
        namespace=Namespace(namespace),
        node=NodeId(node_name) if node_name else None,
        containers=[_container_from_manifest(c) for c in spec.get("containers") or []],
        init_containers=[_container_from_manifest(c) for c in spec.get("initContainers") or []],
        labels=dict(meta.get("labels") or {}),
        phase=status.get("phase"),
        qos_class=status.get("qosClass"),
    )


def collect_cluster_snapshot(cluster: "ClusterClient", node_names: Optional[List[str]] = None) -> ClusterSnapshot:
    log.info("Fetching nodes...")
    nodes = {n.id: n for n in cluster.list_nodes(names=node_names)}
    log.info("Fetching pods...")
    pods = {p.id: p for p in cluster.list_pods()}
    log.info(f"Snapshot: {len(nodes)} nodes, {len(pods)} pods")
    return ClusterSnapshot(nodes=nodes, pods=pods, captured_at=time.time())
