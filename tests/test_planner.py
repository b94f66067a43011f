from __future__ import annotations

import pytest

from conftest import GiB, MiB, make_node, make_pod

from sched_balance.balance.fraction import NodeFraction, compute_fractions
from sched_balance.balance.planner import plan_balance, select_target
from sched_balance.model.resource_request import DEFAULT_BASELINE
from sched_balance.types import CRIO_MIN_MEM_LIMIT

FLOOR = int(CRIO_MIN_MEM_LIMIT)


def _fraction(name, cpu, mem, alloc_cpu=2000, alloc_mem=4 * GiB) -> NodeFraction:
    return NodeFraction(
        node=name,
        cpu_fraction=cpu,
        mem_fraction=mem,
        alloc_cpu_m=alloc_cpu,
        alloc_mem_b=alloc_mem,
        requested_cpu_m=int(cpu * alloc_cpu),
        requested_mem_b=int(mem * alloc_mem),
    )


def _example_table():
    nodes = [make_node("node-a"), make_node("node-b")]
    pods = [make_pod("busy", "node-a", cpu_m=500, mem_b=1 * GiB)]
    return compute_fractions(nodes, DEFAULT_BASELINE, pods)


def test_example_scenario_plan():
    plan = plan_balance(_example_table(), 0.5, FLOOR)
    assert plan.target == 0.5
    assert plan.max_observed == pytest.approx(0.30)

    a, b = plan.for_node("node-a"), plan.for_node("node-b")
    assert a.extra_cpu_m == pytest.approx(400, abs=1)
    assert b.extra_cpu_m == pytest.approx(900, abs=1)
    # (0.5 - 1124/4096) * 4Gi + 12Mi
    assert a.extra_mem_b == 968884224 + FLOOR
    assert b.extra_mem_b == 2042626048 + FLOOR


def test_target_follows_most_loaded_node():
    table = {
        "a": _fraction("a", 0.2, 0.7),
        "b": _fraction("b", 0.1, 0.1),
    }
    assert select_target(table.values(), 0.5) == 0.7
    assert select_target(table.values(), 0.9) == 0.9


@pytest.mark.parametrize("floor_ratio", [0.0, 0.3, 0.5, 0.95])
def test_target_is_never_below_floor_or_any_fraction(floor_ratio):
    table = {
        "a": _fraction("a", 0.42, 0.11),
        "b": _fraction("b", 0.05, 0.61),
        "c": _fraction("c", 0.33, 0.33),
    }
    plan = plan_balance(table, floor_ratio, FLOOR)
    assert plan.target >= floor_ratio
    for f in table.values():
        assert plan.target >= f.cpu_fraction
        assert plan.target >= f.mem_fraction


def test_all_nodes_converge_to_target():
    table = {
        "a": _fraction("a", 0.42, 0.11, alloc_cpu=3900, alloc_mem=15 * GiB),
        "b": _fraction("b", 0.05, 0.61, alloc_cpu=1930, alloc_mem=7 * GiB),
        "c": _fraction("c", 0.0, 0.0),
    }
    plan = plan_balance(table, 0.5, FLOOR)
    for t in plan.top_ups:
        f = t.before
        assert f.cpu_fraction + t.extra_cpu_m / f.alloc_cpu_m == pytest.approx(plan.target, abs=1.0 / f.alloc_cpu_m)
        mem_topup = t.extra_mem_b - FLOOR
        assert f.mem_fraction + mem_topup / f.alloc_mem_b == pytest.approx(plan.target, abs=1.0 / f.alloc_mem_b)


def test_dimension_that_sets_the_target_gets_nothing_but_the_floor():
    table = {"hot": _fraction("hot", 0.9, 0.9), "cold": _fraction("cold", 0.1, 0.2)}
    plan = plan_balance(table, 0.5, FLOOR)
    hot = plan.for_node("hot")
    assert plan.target == 0.9
    assert hot.extra_cpu_m == 0
    assert hot.extra_mem_b == FLOOR


def test_requests_are_never_negative_and_memory_carries_the_floor():
    table = {
        "a": _fraction("a", 1.0, 0.3),
        "b": _fraction("b", 0.2, 1.0),
    }
    plan = plan_balance(table, 0.0, FLOOR)
    for t in plan.top_ups:
        assert t.extra_cpu_m >= 0
        assert t.extra_mem_b >= FLOOR
    assert plan.for_node("a").extra_cpu_m == 0
    assert plan.for_node("b").extra_mem_b == FLOOR


def test_top_up_request_shape():
    plan = plan_balance(_example_table(), 0.5, FLOOR)
    req = plan.for_node("node-a").as_request()
    assert req.to_resources() == {
        "requests": {"cpu": f"{req.cpu_m}m", "memory": str(req.mem_b)},
    }


def test_invalid_floor_ratio():
    with pytest.raises(ValueError):
        plan_balance(_example_table(), 1.5, FLOOR)
    with pytest.raises(ValueError):
        plan_balance(_example_table(), -0.1, FLOOR)


def test_empty_node_set():
    plan = plan_balance({}, 0.5, FLOOR)
    assert plan.target == 0.5
    assert plan.top_ups == []


def test_projected_fractions_include_floor():
    plan = plan_balance(_example_table(), 0.5, FLOOR)
    b = plan.for_node("node-b")
    assert b.projected_cpu_fraction == pytest.approx(0.5, abs=1e-3)
    assert b.projected_mem_fraction == pytest.approx(0.5 + FLOOR / (4 * GiB), abs=1e-6)
