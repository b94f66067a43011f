# sched_balance/model/quantity.py
from __future__ import annotations

import math
from decimal import Decimal
from typing import Optional, Union

from kubernetes.utils import parse_quantity as _k8s_parse_quantity

from ..types import CpuMillis, Bytes

QuantityLike = Union[str, int, float, None]


def parse_quantity(quantity: QuantityLike) -> Decimal:
    """
    Kubernetes resource.Quantity -> Decimal в базовых единицах
    (ядра для CPU, байты для памяти).

    Пустое значение == 0. Непонятный суффикс -> ValueError.
    """
    if quantity is None or quantity == "":
        return Decimal(0)
    if isinstance(quantity, (int, float)):
        # через str: Decimal(0.1) != Decimal("0.1")
        return Decimal(str(quantity))
    return _k8s_parse_quantity(str(quantity).strip())


def parse_cpu(quantity: QuantityLike) -> CpuMillis:
    # как Quantity.MilliValue(): округление вверх
    return CpuMillis(int(math.ceil(parse_quantity(quantity) * 1000)))


def parse_memory(quantity: QuantityLike) -> Bytes:
    return Bytes(int(math.ceil(parse_quantity(quantity))))


def parse_optional_cpu(quantity: QuantityLike) -> Optional[CpuMillis]:
    if quantity is None:
        return None
    return parse_cpu(quantity)


def parse_optional_memory(quantity: QuantityLike) -> Optional[Bytes]:
    if quantity is None:
        return None
    return parse_memory(quantity)


def format_cpu(cpu_m: int) -> str:
    return f"{int(cpu_m)}m"


def format_memory(mem_b: int) -> str:
    return str(int(mem_b))
