# check_backend.py
from __future__ import annotations

import argparse
from pathlib import Path

import requests

from sched_balance.balance.fraction import compute_fractions
from sched_balance.balance.planner import plan_balance
from sched_balance.config import BalanceSettings
from sched_balance.model.resource_request import DEFAULT_BASELINE
from sched_balance.snapshot.io import load_snapshot_from_file


BASE_URL = "http://localhost:8000"


def load_cli_plan(snapshot_path: Path, floor_ratio: float):
    """Считаем план напрямую по файлу снапшота (без HTTP)."""
    settings = BalanceSettings.from_env()
    snap = load_snapshot_from_file(snapshot_path)
    table = compute_fractions(list(snap.nodes.values()), DEFAULT_BASELINE, list(snap.pods.values()))
    return plan_balance(table, floor_ratio, settings.mem_floor_b)


def fetch_api_plan(snapshot_id: str, floor_ratio: float):
    """Получаем план от бекенда по POST /plan для того же снапшота."""
    resp = requests.post(
        f"{BASE_URL}/plan",
        json={"floor_ratio": floor_ratio, "snapshot_id": snapshot_id},
        timeout=30,
    )
    resp.raise_for_status()
    return resp.json()


def compare_plans(cli_plan, api_json) -> bool:
    print("=== TARGET ===")
    print(f"CLI target: {cli_plan.target:.6f}")
    print(f"API target: {api_json['target']:.6f}")

    def close(a, b, eps=1e-9):
        return abs(a - b) <= eps

    ok = close(cli_plan.target, api_json["target"])

    print()
    print("=== NODES ===")
    api_nodes = {t["node"]: t for t in api_json["top_ups"]}
    cli_nodes = {t.node: t for t in cli_plan.top_ups}

    missing_in_api = sorted(set(cli_nodes) - set(api_nodes))
    missing_in_cli = sorted(set(api_nodes) - set(cli_nodes))
    if missing_in_api:
        print("Nodes present in CLI but missing in API:", missing_in_api)
    if missing_in_cli:
        print("Nodes present in API but missing in CLI:", missing_in_cli)
    ok = ok and not missing_in_api and not missing_in_cli

    for name in sorted(set(cli_nodes) & set(api_nodes)):
        c, a = cli_nodes[name], api_nodes[name]
        same = c.extra_cpu_m == a["extra_cpu_m"] and c.extra_mem_b == a["extra_mem_b"]
        ok = ok and same
        print(f"- {name}")
        print(f"  cpu: CLI={c.extra_cpu_m}m, API={a['extra_cpu_m']}m")
        print(f"  mem: CLI={c.extra_mem_b}, API={a['extra_mem_b']}")

    print()
    print("PLAN OK:", ok)
    return ok


def main():
    parser = argparse.ArgumentParser(description="Compare CLI and API balance plans for a snapshot")
    parser.add_argument("snapshot", type=Path, help="Snapshot file inside snapshots/")
    parser.add_argument("--floor-ratio", type=float, default=0.5)
    args = parser.parse_args()

    print("Computing CLI plan...")
    cli_plan = load_cli_plan(args.snapshot, args.floor_ratio)
    print("Fetching API plan...")
    api_json = fetch_api_plan(args.snapshot.stem, args.floor_ratio)

    compare_plans(cli_plan, api_json)


if __name__ == "__main__":
    main()
