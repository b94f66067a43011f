# sched_balance/balance/injector.py
from __future__ import annotations

import logging
import time
import uuid
import warnings
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from ..config import BalanceSettings
from ..errors import BalanceError, CleanupIncompleteWarning, TransientAPIError, WorkloadCreationError
from ..model.entities import Node
from ..model.resource_request import DEFAULT_BASELINE, WorkloadRequest
from ..cluster.wait import poll_until
from .fraction import NodeFraction, compute_fractions, ensure_headroom
from .planner import BalancePlan, NodeTopUp, plan_balance

log = logging.getLogger(__name__)

RUN_LABEL = "sched-balance/run"
POD_NAME_PREFIX = "balanced-pod"

# "Clock"/"Sleep" подменяются в тестах
Sleep = Callable[[float], None]
Clock = Callable[[], float]


def build_balance_pod(
    name: str,
    node_name: str,
    request: WorkloadRequest,
    labels: Dict[str, str],
    image: str,
) -> Dict[str, Any]:
    """
    Манифест balance-пода.

    Привязка к ноде через matchFields по metadata.name, а не через лейблы:
    лейблы нод могут быть предметом теста.
    """
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": name, "labels": dict(labels)},
        "spec": {
            "containers": [
                {
                    "name": "pause",
                    "image": image,
                    "resources": request.to_resources(),
                }
            ],
            "affinity": {
                "nodeAffinity": {
                    "requiredDuringSchedulingIgnoredDuringExecution": {
                        "nodeSelectorTerms": [
                            {
                                "matchFields": [
                                    {"key": "metadata.name", "operator": "In", "values": [node_name]},
                                ]
                            }
                        ]
                    }
                }
            },
            "terminationGracePeriodSeconds": 0,
        },
    }


class BalanceHandle:
    """
    Результат одной балансировки и ручка для уборки.

    pod_names: явный список созданных подов. cleanup удаляет их по именам,
    а затем по лейблам owned_labels: общий набор плюс RUN_LABEL этого запуска.
    Без run_id (ручка из new_handle для уборки хвостов) под снос идёт всё
    с общим набором лейблов в namespace.
    """

    def __init__(
        self,
        cluster,
        namespace: str,
        labels: Dict[str, str],
        run_id: Optional[str],
        poll_interval_s: float,
        cleanup_timeout_s: float,
        sleep: Sleep = time.sleep,
        clock: Clock = time.monotonic,
    ):
        self.cluster = cluster
        self.namespace = namespace
        self.labels = dict(labels)
        self.run_id = run_id
        self.poll_interval_s = poll_interval_s
        self.cleanup_timeout_s = cleanup_timeout_s
        self._sleep = sleep
        self._clock = clock

        self.pod_names: List[str] = []
        self.pods_by_node: Dict[str, str] = {}
        self.plan: Optional[BalancePlan] = None
        self.after: Dict[str, NodeFraction] = {}

    @property
    def target(self) -> Optional[float]:
        return self.plan.target if self.plan else None

    @property
    def owned_labels(self) -> Dict[str, str]:
        if not self.run_id:
            return dict(self.labels)
        return {**self.labels, RUN_LABEL: self.run_id}

    def _remaining(self) -> List[str]:
        return self.cluster.list_pods_by_label(self.namespace, self.owned_labels)

    def cleanup(self) -> bool:
        """
        Удаляет balance-поды и ждёт, пока листинг по лейблам опустеет.

        Никогда не бросает: ошибки API и таймаут только логируются.
        Возвращает True, если подов не осталось.
        """
        for name in self.pod_names:
            try:
                self.cluster.delete_pod(self.namespace, name)
            except TransientAPIError as e:
                log.warning(f"Failed to delete balanced pod {self.namespace}/{name}: {e}")

        try:
            self.cluster.delete_pods_by_label(self.namespace, self.owned_labels)
        except TransientAPIError as e:
            log.warning(f"Failed to delete balanced pods by label: {e}")

        def _gone() -> bool:
            try:
                return not self._remaining()
            except TransientAPIError as e:
                log.warning(f"Failed to list balanced pods: {e}")
                return False

        if poll_until(_gone, self.poll_interval_s, self.cleanup_timeout_s, self._sleep, self._clock):
            log.info(f"Balanced pods removed from namespace {self.namespace}")
            return True

        msg = (
            f"Failed to wait until all balanced pods are deleted from {self.namespace} "
            f"within {self.cleanup_timeout_s}s"
        )
        log.warning(msg)
        warnings.warn(msg, CleanupIncompleteWarning, stacklevel=2)
        return False

    def __enter__(self) -> "BalanceHandle":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()


class Balancer:
    """
    Выравнивает загрузку нод: по одному пришпиленному balance-поду на ноду,
    чтобы у всех нод была одинаковая доля CPU и памяти.
    """

    def __init__(
        self,
        cluster,
        settings: Optional[BalanceSettings] = None,
        sleep: Sleep = time.sleep,
        clock: Clock = time.monotonic,
    ):
        self.cluster = cluster
        self.settings = settings or BalanceSettings()
        self._sleep = sleep
        self._clock = clock

    def new_handle(self, namespace: Optional[str] = None, run_id: Optional[str] = None) -> BalanceHandle:
        return BalanceHandle(
            self.cluster,
            namespace or self.settings.namespace,
            self.settings.balance_labels,
            run_id,
            self.settings.poll_interval_s,
            self.settings.cleanup_timeout_s,
            self._sleep,
            self._clock,
        )

    def survey(self, nodes: Sequence[Node], baseline: WorkloadRequest = DEFAULT_BASELINE) -> Dict[str, NodeFraction]:
        return compute_fractions(nodes, baseline, self.cluster.list_pods())

    def plan(
        self,
        nodes: Sequence[Node],
        baseline: WorkloadRequest = DEFAULT_BASELINE,
        floor_ratio: Optional[float] = None,
    ) -> BalancePlan:
        ratio = self.settings.floor_ratio if floor_ratio is None else floor_ratio
        return plan_balance(self.survey(nodes, baseline), ratio, self.settings.mem_floor_b)

    def balance(
        self,
        nodes: Sequence[Node],
        baseline: WorkloadRequest = DEFAULT_BASELINE,
        floor_ratio: Optional[float] = None,
        namespace: Optional[str] = None,
        check_headroom: bool = False,
    ) -> BalanceHandle:
        """
        Создаёт по balance-поду на каждую ноду из nodes.

        MissingCapacityError / InsufficientHeadroomError вылетают до создания
        чего-либо. WorkloadCreationError несёт в себе handle, через который
        можно убрать уже созданные поды.
        """
        ratio = self.settings.floor_ratio if floor_ratio is None else floor_ratio
        handle = self.new_handle(namespace, run_id=uuid.uuid4().hex[:10])

        fractions = self.survey(nodes, baseline)
        if check_headroom:
            ensure_headroom(fractions.values(), self.settings.mem_floor_b)
        handle.plan = plan_balance(fractions, ratio, self.settings.mem_floor_b)

        try:
            for top_up in handle.plan.top_ups:
                self._create_for_node(handle, top_up)
        except WorkloadCreationError:
            raise
        except Exception as e:
            # всё, что уже создано, должно остаться доступным для handle.cleanup()
            raise WorkloadCreationError(
                f"balancing aborted after {len(handle.pod_names)} balanced pods: {e}", handle=handle
            ) from e

        handle.after = self._verify(nodes, baseline)
        return handle

    def _create_for_node(self, handle: BalanceHandle, top_up: NodeTopUp) -> None:
        manifest = build_balance_pod(
            name=f"{POD_NAME_PREFIX}-{uuid.uuid4()}",
            node_name=top_up.node,
            request=top_up.as_request(),
            labels=handle.owned_labels,
            image=self.settings.pause_image,
        )
        try:
            name = self.cluster.create_pod(handle.namespace, manifest)
        except TransientAPIError as e:
            raise WorkloadCreationError(
                f"failed to create balanced pod for node {top_up.node}: {e}", handle=handle, node=top_up.node
            ) from e

        handle.pod_names.append(name)
        handle.pods_by_node[top_up.node] = name
        log.info(
            f"Created balanced pod {handle.namespace}/{name} on node {top_up.node} "
            f"(cpu {top_up.extra_cpu_m}m, mem {top_up.extra_mem_b})"
        )
        self._wait_running(handle, name, top_up.node)

    def _wait_running(self, handle: BalanceHandle, name: str, node: str) -> None:
        def _running() -> bool:
            phase = self.cluster.get_pod_phase(handle.namespace, name)
            if phase in ("Failed", "Succeeded"):
                raise WorkloadCreationError(
                    f"balanced pod {handle.namespace}/{name} on node {node} terminated with phase {phase}",
                    handle=handle, node=node,
                )
            return phase == "Running"

        try:
            ok = poll_until(
                _running, self.settings.poll_interval_s, self.settings.pod_start_timeout_s, self._sleep, self._clock
            )
        except TransientAPIError as e:
            raise WorkloadCreationError(
                f"failed to watch balanced pod {handle.namespace}/{name}: {e}", handle=handle, node=node
            ) from e
        if not ok:
            raise WorkloadCreationError(
                f"balanced pod {handle.namespace}/{name} is not running on node {node} "
                f"after {self.settings.pod_start_timeout_s}s",
                handle=handle, node=node,
            )

    def _verify(self, nodes: Sequence[Node], baseline: WorkloadRequest) -> Dict[str, NodeFraction]:
        """Только для диагностики: на успех балансировки не влияет."""
        log.info("Computing CPU/memory fractions after creating balanced pods")
        try:
            return self.survey(nodes, baseline)
        except BalanceError as e:
            log.warning(f"Post-balance verification failed: {e}")
            return {}


@contextmanager
def balanced(balancer: Balancer, nodes: Sequence[Node], **kwargs: Any) -> Iterator[BalanceHandle]:
    """
    with balanced(balancer, nodes, floor_ratio=0.5) as handle: ...

    Уборка выполняется всегда, в том числе если создание упало на середине.
    """
    try:
        handle = balancer.balance(nodes, **kwargs)
    except WorkloadCreationError as e:
        if e.handle is not None:
            e.handle.cleanup()
        raise
    try:
        yield handle
    finally:
        handle.cleanup()
