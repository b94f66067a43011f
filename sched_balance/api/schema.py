# sched_balance/api/schema.py
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class BaselineModel(BaseModel):
    cpu_m: int = Field(100, ge=0)
    mem_b: int = Field(100 * 1024 * 1024, ge=0)


class NodeFractionModel(BaseModel):
    node: str
    cpu_fraction: float
    mem_fraction: float
    alloc_cpu_m: int
    alloc_mem_b: int
    requested_cpu_m: int
    requested_mem_b: int
    too_utilized: bool = False


class FractionsResponse(BaseModel):
    nodes: List[NodeFractionModel]
    headroom_ok: bool


class NodeTopUpModel(BaseModel):
    node: str
    extra_cpu_m: int
    extra_mem_b: int
    cpu_fraction: float
    mem_fraction: float
    projected_cpu_fraction: float
    projected_mem_fraction: float


class PlanRequest(BaseModel):
    floor_ratio: Optional[float] = Field(None, ge=0.0, le=1.0)
    baseline: BaselineModel = Field(default_factory=BaselineModel)
    # пусто == все ноды
    nodes: List[str] = Field(default_factory=list)
    # план по сохранённому снапшоту вместо живого кластера
    snapshot_id: Optional[str] = None


class PlanResponse(BaseModel):
    target: float
    floor_ratio: float
    max_observed: float
    mem_floor_b: int
    top_ups: List[NodeTopUpModel]


class BalanceRequest(BaseModel):
    floor_ratio: Optional[float] = Field(None, ge=0.0, le=1.0)
    baseline: BaselineModel = Field(default_factory=BaselineModel)
    nodes: List[str] = Field(default_factory=list)
    namespace: Optional[str] = None
    check_headroom: bool = True


class BalanceSessionModel(BaseModel):
    session_id: str
    namespace: str
    target: Optional[float]
    pods_by_node: Dict[str, str]
    plan: Optional[PlanResponse] = None
    after: List[NodeFractionModel] = Field(default_factory=list)


class CleanupResponse(BaseModel):
    session_id: str
    clean: bool


class SnapshotListItem(BaseModel):
    id: str
    nodes_count: int
    pods_count: int


class CreateSnapshotResponse(BaseModel):
    id: str
    message: str
