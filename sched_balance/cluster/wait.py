# sched_balance/cluster/wait.py
from __future__ import annotations

import time
from typing import Callable


def poll_until(
    condition: Callable[[], bool],
    interval_s: float,
    timeout_s: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """
    Проверяет condition сразу и затем каждые interval_s секунд,
    пока не станет True или не выйдет timeout_s.

    Возвращает True, если условие выполнилось, False по таймауту.
    Исключения из condition пробрасываются как есть.
    """
    deadline = clock() + timeout_s
    while True:
        if condition():
            return True
        if clock() + interval_s > deadline:
            return False
        sleep(interval_s)
