# sched_balance/types.py
from __future__ import annotations

from typing import NewType


# ID-шники / имена
NodeId = NewType("NodeId", str)
PodId = NewType("PodId", str)      # "<namespace>/<name>"
Namespace = NewType("Namespace", str)

# Ресурсы
CpuMillis = NewType("CpuMillis", int)  # milliCPU
Bytes = NewType("Bytes", int)          # байты

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"

MiB = 1024 * 1024

# Минимальный memory limit, который принимает cri-o.
# Под не может выставить лимит меньше этого значения.
CRIO_MIN_MEM_LIMIT = Bytes(12 * MiB)

# Дефолты шедулера для контейнеров без requests (schedutil.GetNonzeroRequests)
DEFAULT_MILLI_CPU_REQUEST = CpuMillis(100)
DEFAULT_MEMORY_REQUEST = Bytes(200 * MiB)
