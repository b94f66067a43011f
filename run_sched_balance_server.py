import argparse
import logging
import time
import uvicorn
from pathlib import Path

# Импортируем функции для создания и сохранения снапшота
from sched_balance.cluster.client import ClusterClient
from sched_balance.config import BalanceSettings
from sched_balance.errors import BalanceError
from sched_balance.snapshot.collector import collect_cluster_snapshot
from sched_balance.snapshot.io import save_snapshot_to_file

# Настраиваем логирование для лаунчера
logging.basicConfig(level=logging.INFO)
log = logging.getLogger("launcher")

def capture_new_snapshot():
    """
    Снимает ноды/поды кластера и сохраняет их в папку snapshots/.
    """
    log.info("Capturing new snapshot on startup...")
    try:
        cluster = ClusterClient.from_settings(BalanceSettings.from_env())
        snap = collect_cluster_snapshot(cluster)

        filename = f"k8s-{int(time.time())}.json"

        root_dir = Path(__file__).resolve().parent
        snapshots_dir = root_dir / "snapshots"
        snapshots_dir.mkdir(parents=True, exist_ok=True)

        file_path = snapshots_dir / filename
        save_snapshot_to_file(snap, file_path)
        log.info(f"Snapshot successfully saved to: {file_path}")

    except (BalanceError, OSError) as e:
        log.error(f"Failed to capture snapshot: {e}")
        # Не прерываем выполнение, чтобы сервер мог запуститься даже если сбор упал

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="sched-balance server launcher")

    # Флаг для создания снапшота при старте
    parser.add_argument(
        "--capture",
        action="store_true",
        help="Capture a new K8s snapshot immediately upon startup"
    )

    # Стандартные настройки uvicorn
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    if args.capture:
        capture_new_snapshot()

    uvicorn.run(
        "sched_balance.api.server:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
