# sched_balance/cli.py
from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from .balance.fraction import NodeFraction, compute_fractions, find_overutilized_nodes
from .balance.injector import Balancer, balanced
from .balance.planner import BalancePlan, plan_balance
from .cluster.client import ClusterClient
from .config import BalanceSettings
from .errors import BalanceError, PreconditionFailure
from .model.quantity import parse_cpu, parse_memory
from .model.resource_request import DEFAULT_BASELINE, WorkloadRequest
from .snapshot.collector import collect_cluster_snapshot
from .snapshot.io import load_snapshot_from_file, save_snapshot_to_file

log = logging.getLogger("sched_balance")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SKIPPED = 2

GiB = 1024 ** 3


def _fmt_mem(b: int) -> str:
    return f"{b / GiB:.3f}Gi"


def _print_fractions(table: List[NodeFraction], offending: List[str]) -> None:
    print(f"{'NODE':<40} {'CPU':>8} {'MEM':>8} {'ALLOC CPU':>10} {'ALLOC MEM':>12}")
    for f in table:
        flag = "  (too utilized)" if f.node in offending else ""
        print(
            f"{f.node:<40} {f.cpu_fraction:>8.4f} {f.mem_fraction:>8.4f} "
            f"{f.alloc_cpu_m:>9}m {_fmt_mem(f.alloc_mem_b):>12}{flag}"
        )


def _print_plan(plan: BalancePlan) -> None:
    print(f"target: {plan.target:.4f} (floor {plan.floor_ratio}, max observed {plan.max_observed:.4f})")
    print(f"{'NODE':<40} {'+CPU':>8} {'+MEM':>12} {'CPU->':>8} {'MEM->':>8}")
    for t in plan.top_ups:
        print(
            f"{t.node:<40} {t.extra_cpu_m:>7}m {_fmt_mem(t.extra_mem_b):>12} "
            f"{t.projected_cpu_fraction:>8.4f} {t.projected_mem_fraction:>8.4f}"
        )


def _baseline(args) -> WorkloadRequest:
    if args.baseline_cpu is None and args.baseline_mem is None:
        return DEFAULT_BASELINE
    cpu = parse_cpu(args.baseline_cpu) if args.baseline_cpu is not None else DEFAULT_BASELINE.cpu_m
    mem = parse_memory(args.baseline_mem) if args.baseline_mem is not None else DEFAULT_BASELINE.mem_b
    return WorkloadRequest(cpu_m=cpu, mem_b=mem)


def _node_names(args) -> Optional[List[str]]:
    if not args.nodes:
        return None
    return [n.strip() for n in args.nodes.split(",") if n.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sched-balance",
        description="Equalize CPU/memory request ratio across nodes with pinned balance pods",
    )
    parser.add_argument("--namespace", default=None, help="Namespace for balance pods")
    parser.add_argument("--context", default=None, help="kubeconfig context")
    parser.add_argument("--kubeconfig", default=None, help="Path to kubeconfig")
    parser.add_argument("--in-cluster", action="store_true", default=None, help="Use in-cluster config")
    parser.add_argument("--floor-ratio", type=float, default=None, help="Minimal target ratio (0..1)")
    parser.add_argument("--baseline-cpu", default=None, help="Baseline pod CPU request, e.g. 100m")
    parser.add_argument("--baseline-mem", default=None, help="Baseline pod memory request, e.g. 100Mi")
    parser.add_argument("--nodes", default=None, help="Comma separated node names (default: all)")
    parser.add_argument("--log-level", default="INFO")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("fractions", help="Show current CPU/memory fractions per node")

    p_plan = sub.add_parser("plan", help="Compute balance pods without creating them")
    p_plan.add_argument("--snapshot", type=Path, default=None, help="Plan from a saved snapshot file")

    p_bal = sub.add_parser("balance", help="Create balance pods, hold, then clean up")
    p_bal.add_argument("--hold", type=float, default=0.0, help="Seconds to keep the balance pods")
    p_bal.add_argument("--no-check-headroom", action="store_true", help="Skip the free memory pre-check")

    sub.add_parser("cleanup", help="Remove leftover balance pods by label")

    p_snap = sub.add_parser("snapshot", help="Save the cluster nodes/pods to a JSON file")
    p_snap.add_argument("output", type=Path)
    return parser


def main(argv: Optional[List[str]] = None, cluster=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))

    try:
        settings = BalanceSettings.from_env(
            namespace=args.namespace,
            kube_context=args.context,
            kubeconfig=args.kubeconfig,
            in_cluster=args.in_cluster,
            floor_ratio=args.floor_ratio,
        )
    except ValueError as e:
        log.error(f"Invalid settings: {e}")
        return EXIT_FAILED

    baseline = _baseline(args)
    names = _node_names(args)

    try:
        if args.command == "plan" and args.snapshot is not None:
            snap = load_snapshot_from_file(args.snapshot)
            nodes = list(snap.nodes.values())
            if names is not None:
                nodes = [n for n in nodes if n.name in set(names)]
            table = compute_fractions(nodes, baseline, list(snap.pods.values()))
            _print_plan(plan_balance(table, settings.floor_ratio, settings.mem_floor_b))
            return EXIT_OK

        if cluster is None:
            cluster = ClusterClient.from_settings(settings)
        balancer = Balancer(cluster, settings)

        if args.command == "fractions":
            table = balancer.survey(cluster.list_nodes(names=names), baseline)
            offending = find_overutilized_nodes(table.values(), settings.mem_floor_b)
            _print_fractions(list(table.values()), offending)
        elif args.command == "plan":
            _print_plan(balancer.plan(cluster.list_nodes(names=names), baseline))
        elif args.command == "balance":
            nodes = cluster.list_nodes(names=names)
            with balanced(balancer, nodes, baseline=baseline, check_headroom=not args.no_check_headroom) as handle:
                _print_plan(handle.plan)
                for node, pod in handle.pods_by_node.items():
                    print(f"{node}: {handle.namespace}/{pod}")
                if args.hold > 0:
                    log.info(f"Holding balance pods for {args.hold}s")
                    time.sleep(args.hold)
        elif args.command == "cleanup":
            if not balancer.new_handle().cleanup():
                return EXIT_FAILED
        elif args.command == "snapshot":
            save_snapshot_to_file(collect_cluster_snapshot(cluster, names), args.output)
            print(f"Snapshot saved to {args.output}")
    except PreconditionFailure as e:
        log.warning(f"Skipping: {e}")
        return EXIT_SKIPPED
    except BalanceError as e:
        log.error(f"{type(e).__name__}: {e}")
        return EXIT_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
