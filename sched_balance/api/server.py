# sched_balance/api/server.py
from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException

from ..balance.fraction import NodeFraction, compute_fractions, find_overutilized_nodes
from ..balance.injector import BalanceHandle, Balancer
from ..balance.planner import BalancePlan, plan_balance
from ..cluster.client import ClusterClient
from ..config import BalanceSettings
from ..errors import (
    BalanceError, ConfigurationError, PreconditionFailure, TransientAPIError, WorkloadCreationError,
)
from ..model.entities import ClusterSnapshot, Node
from ..model.resource_request import WorkloadRequest
from ..snapshot.collector import collect_cluster_snapshot
from ..snapshot.io import load_snapshot_from_file, save_snapshot_to_file
from ..types import CpuMillis, Bytes
from .schema import (
    BaselineModel, BalanceRequest, BalanceSessionModel, CleanupResponse, CreateSnapshotResponse,
    FractionsResponse, NodeFractionModel, NodeTopUpModel, PlanRequest, PlanResponse, SnapshotListItem,
)

app = FastAPI(title="sched-balance")

log = logging.getLogger("uvicorn")

# --- PATHS ---
MODULE_ROOT = Path(__file__).resolve().parent.parent
PROJECT_ROOT = MODULE_ROOT.parent
SNAPSHOTS_DIR = PROJECT_ROOT / "snapshots"


# --- STATE ---

class ServiceState:
    def __init__(self):
        self.settings: Optional[BalanceSettings] = None
        self.cluster = None
        # живые балансировки: session_id -> handle
        self.sessions: Dict[str, BalanceHandle] = {}
        self.snapshots: Dict[str, ClusterSnapshot] = {}
        # balance/cleanup и правки sessions только под lock
        self.lock = threading.Lock()

    def get_settings(self) -> BalanceSettings:
        if self.settings is None:
            self.settings = BalanceSettings.from_env()
        return self.settings

    def get_cluster(self):
        if self.cluster is None:
            self.cluster = ClusterClient.from_settings(self.get_settings())
        return self.cluster

    def balancer(self) -> Balancer:
        return Balancer(self.get_cluster(), self.get_settings())


state = ServiceState()


# --- Helpers ---

def _http_error(e: BalanceError) -> HTTPException:
    if isinstance(e, PreconditionFailure):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, (TransientAPIError, WorkloadCreationError)):
        status = getattr(e, "status", None)
        if status == 404:
            return HTTPException(status_code=404, detail=str(e))
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _baseline(m: BaselineModel) -> WorkloadRequest:
    return WorkloadRequest(cpu_m=CpuMillis(m.cpu_m), mem_b=Bytes(m.mem_b))


def _fraction_model(f: NodeFraction, too_utilized: bool = False) -> NodeFractionModel:
    return NodeFractionModel(
        node=f.node,
        cpu_fraction=f.cpu_fraction,
        mem_fraction=f.mem_fraction,
        alloc_cpu_m=f.alloc_cpu_m,
        alloc_mem_b=f.alloc_mem_b,
        requested_cpu_m=f.requested_cpu_m,
        requested_mem_b=f.requested_mem_b,
        too_utilized=too_utilized,
    )


def _plan_model(plan: BalancePlan) -> PlanResponse:
    return PlanResponse(
        target=plan.target,
        floor_ratio=plan.floor_ratio,
        max_observed=plan.max_observed,
        mem_floor_b=plan.mem_floor_b,
        top_ups=[
            NodeTopUpModel(
                node=t.node,
                extra_cpu_m=t.extra_cpu_m,
                extra_mem_b=t.extra_mem_b,
                cpu_fraction=t.before.cpu_fraction,
                mem_fraction=t.before.mem_fraction,
                projected_cpu_fraction=t.projected_cpu_fraction,
                projected_mem_fraction=t.projected_mem_fraction,
            )
            for t in plan.top_ups
        ],
    )


def _session_model(session_id: str, handle: BalanceHandle) -> BalanceSessionModel:
    return BalanceSessionModel(
        session_id=session_id,
        namespace=handle.namespace,
        target=handle.target,
        pods_by_node=dict(handle.pods_by_node),
        plan=_plan_model(handle.plan) if handle.plan else None,
        after=[_fraction_model(f) for f in handle.after.values()],
    )


def _select_nodes(nodes: List[Node], names: List[str]) -> List[Node]:
    if not names:
        return nodes
    by_name = {n.name: n for n in nodes}
    missing = [n for n in names if n not in by_name]
    if missing:
        raise HTTPException(status_code=404, detail=f"Nodes not found: {', '.join(missing)}")
    return [by_name[n] for n in names]


def _get_snapshot(snapshot_id: str) -> ClusterSnapshot:
    snap = state.snapshots.get(snapshot_id)
    if snap is None:
        path = SNAPSHOTS_DIR / f"{snapshot_id}.json"
        if not path.exists():
            raise HTTPException(status_code=404, detail=f"Snapshot {snapshot_id} not found")
        snap = load_snapshot_from_file(path)
        state.snapshots[snapshot_id] = snap
    return snap


# --- Endpoints ---

@app.get("/health")
def health() -> dict:
    return {"status": "ok", "sessions": len(state.sessions)}


@app.get("/fractions", response_model=FractionsResponse)
def fractions(cpu_m: int = 100, mem_b: int = 100 * 1024 * 1024) -> FractionsResponse:
    settings = state.get_settings()
    cluster = state.get_cluster()
    try:
        table = compute_fractions(
            cluster.list_nodes(), _baseline(BaselineModel(cpu_m=cpu_m, mem_b=mem_b)), cluster.list_pods()
        )
    except BalanceError as e:
        raise _http_error(e)
    offending = set(find_overutilized_nodes(table.values(), settings.mem_floor_b))
    return FractionsResponse(
        nodes=[_fraction_model(f, f.node in offending) for f in table.values()],
        headroom_ok=not offending,
    )


@app.post("/plan", response_model=PlanResponse)
def plan(req: PlanRequest) -> PlanResponse:
    settings = state.get_settings()
    ratio = settings.floor_ratio if req.floor_ratio is None else req.floor_ratio
    try:
        if req.snapshot_id:
            snap = _get_snapshot(req.snapshot_id)
            nodes = _select_nodes(list(snap.nodes.values()), req.nodes)
            pods = list(snap.pods.values())
        else:
            cluster = state.get_cluster()
            nodes = _select_nodes(cluster.list_nodes(), req.nodes)
            pods = cluster.list_pods()
        table = compute_fractions(nodes, _baseline(req.baseline), pods)
        return _plan_model(plan_balance(table, ratio, settings.mem_floor_b))
    except BalanceError as e:
        raise _http_error(e)


@app.post("/balance", response_model=BalanceSessionModel)
def balance(req: BalanceRequest) -> BalanceSessionModel:
    balancer = state.balancer()
    with state.lock:
        try:
            nodes = _select_nodes(balancer.cluster.list_nodes(), req.nodes)
            handle = balancer.balance(
                nodes,
                baseline=_baseline(req.baseline),
                floor_ratio=req.floor_ratio,
                namespace=req.namespace,
                check_headroom=req.check_headroom,
            )
        except WorkloadCreationError as e:
            if e.handle is not None:
                e.handle.cleanup()
            raise _http_error(e)
        except BalanceError as e:
            raise _http_error(e)

        session_id = handle.run_id or f"run-{int(time.time())}"
        state.sessions[session_id] = handle
    log.info(f"Balance session {session_id}: target {handle.target}, {len(handle.pod_names)} pods")
    return _session_model(session_id, handle)


@app.get("/balance", response_model=List[BalanceSessionModel])
def list_sessions() -> List[BalanceSessionModel]:
    with state.lock:
        sessions = sorted(state.sessions.items())
    return [_session_model(sid, h) for sid, h in sessions]


@app.delete("/balance/{session_id}", response_model=CleanupResponse)
def cleanup(session_id: str) -> CleanupResponse:
    with state.lock:
        handle = state.sessions.get(session_id)
        if handle is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        clean = handle.cleanup()
        if clean:
            state.sessions.pop(session_id, None)
    return CleanupResponse(session_id=session_id, clean=clean)


@app.get("/snapshots", response_model=List[SnapshotListItem])
def list_snapshots() -> List[SnapshotListItem]:
    if SNAPSHOTS_DIR.exists():
        for path in SNAPSHOTS_DIR.glob("*.json"):
            if path.stem not in state.snapshots:
                try:
                    state.snapshots[path.stem] = load_snapshot_from_file(path)
                except (OSError, ValueError) as e:
                    log.error(f"Failed to load {path}: {e}")
    return [
        SnapshotListItem(id=sid, nodes_count=len(snap.nodes), pods_count=len(snap.pods))
        for sid, snap in sorted(state.snapshots.items())
    ]


@app.post("/snapshots/capture", response_model=CreateSnapshotResponse)
def capture_snapshot() -> CreateSnapshotResponse:
    try:
        snap = collect_cluster_snapshot(state.get_cluster())
    except BalanceError as e:
        raise _http_error(e)
    new_id = f"k8s-{int(time.time())}"
    SNAPSHOTS_DIR.mkdir(parents=True, exist_ok=True)
    save_snapshot_to_file(snap, SNAPSHOTS_DIR / f"{new_id}.json")
    state.snapshots[new_id] = snap
    return CreateSnapshotResponse(id=new_id, message=f"Captured {new_id}")
