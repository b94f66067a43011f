# sched_balance/snapshot/io.py
from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict

from ..model.entities import ClusterSnapshot, ContainerResources, Node, Pod
from ..types import NodeId, PodId, Namespace, CpuMillis, Bytes


def snapshot_to_dict(snap: ClusterSnapshot) -> Dict[str, Any]:
    nodes_dict = {}
    for n in snap.nodes.values():
        nodes_dict[n.name] = {
            "name": n.name,
            "alloc_cpu_m": int(n.alloc_cpu_m) if n.alloc_cpu_m is not None else None,
            "alloc_mem_b": int(n.alloc_mem_b) if n.alloc_mem_b is not None else None,
            "labels": n.labels,
            "unschedulable": n.unschedulable,
        }

    pods_dict = {}
    for p in snap.pods.values():
        pods_dict[p.id] = {
            "name": p.name,
            "namespace": p.namespace,
            "node": p.node,
            "containers": [asdict(c) for c in p.containers],
            "init_containers": [asdict(c) for c in p.init_containers],
            "labels": p.labels,
            "phase": p.phase,
            "qos_class": p.qos_class,
        }

    return {"nodes": nodes_dict, "pods": pods_dict, "captured_at": snap.captured_at}


def _container_from_dict(v: Dict[str, Any]) -> ContainerResources:
    return ContainerResources(
        name=v.get("name", ""),
        req_cpu_m=CpuMillis(v.get("req_cpu_m", 0)),
        req_mem_b=Bytes(v.get("req_mem_b", 0)),
        limit_cpu_m=CpuMillis(v.get("limit_cpu_m", 0)),
        limit_mem_b=Bytes(v.get("limit_mem_b", 0)),
    )


def snapshot_from_dict(data: Dict[str, Any]) -> ClusterSnapshot:
    nodes = {}
    for v in (data.get("nodes") or {}).values():
        name = v.get("name")
        cpu = v.get("alloc_cpu_m")
        mem = v.get("alloc_mem_b")
        nodes[NodeId(name)] = Node(
            id=NodeId(name),
            name=name,
            alloc_cpu_m=CpuMillis(cpu) if cpu is not None else None,
            alloc_mem_b=Bytes(mem) if mem is not None else None,
            labels=v.get("labels", {}),
            unschedulable=v.get("unschedulable", False),
        )

    pods = {}
    for k, v in (data.get("pods") or {}).items():
        node = v.get("node")
        pods[PodId(k)] = Pod(
            id=PodId(k),
            name=v.get("name"),
            namespace=Namespace(v.get("namespace")),
            node=NodeId(node) if node else None,
            containers=[_container_from_dict(c) for c in v.get("containers", [])],
            init_containers=[_container_from_dict(c) for c in v.get("init_containers", [])],
            labels=v.get("labels", {}),
            phase=v.get("phase"),
            qos_class=v.get("qos_class"),
        )

    return ClusterSnapshot(nodes=nodes, pods=pods, captured_at=data.get("captured_at"))


def save_snapshot_to_file(snap: ClusterSnapshot, path: Path) -> None:
    data = snapshot_to_dict(snap)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)


def load_snapshot_from_file(path: Path) -> ClusterSnapshot:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return snapshot_from_dict(data)
