# sched_balance/errors.py
from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from .balance.injector import BalanceHandle


class BalanceError(Exception):
    """Базовая ошибка балансировки."""


# ---------------------------------------------------------------------------
# Фатальные ошибки конфигурации (не ретраим)
# ---------------------------------------------------------------------------


class ConfigurationError(BalanceError):
    pass


class MissingCapacityError(ConfigurationError):
    """У ноды в status.allocatable нет нужного ресурса (нода битая / не готова)."""

    def __init__(self, node: str, resource: str):
        super().__init__(f"node {node} does not advertise allocatable {resource}")
        self.node = node
        self.resource = resource


# ---------------------------------------------------------------------------
# Ошибки API кластера
# ---------------------------------------------------------------------------


class TransientAPIError(BalanceError):
    pass


class ClusterApiError(TransientAPIError):
    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class WorkloadCreationError(BalanceError):
    """
    Не удалось создать (или дождаться) balance-под.

    handle: частично заполненный BalanceHandle, всё, что успели создать,
    по-прежнему удаляется через handle.cleanup().
    """

    def __init__(self, message: str, handle: Optional["BalanceHandle"] = None, node: Optional[str] = None):
        super().__init__(message)
        self.handle = handle
        self.node = node


# ---------------------------------------------------------------------------
# Предусловия: сигнал "пропусти сценарий", а не падение
# ---------------------------------------------------------------------------


class PreconditionFailure(BalanceError):
    pass


class InsufficientHeadroomError(PreconditionFailure):
    def __init__(self, nodes: List[str], required_b: int):
        super().__init__(
            f"nodes are too utilized to schedule test pods "
            f"(free memory < {required_b} bytes): {', '.join(nodes)}"
        )
        self.nodes = list(nodes)
        self.required_b = required_b


class CleanupIncompleteWarning(UserWarning):
    """Удаление balance-подов не сошлось к пустому списку за таймаут."""
