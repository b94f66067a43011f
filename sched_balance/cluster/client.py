# sched_balance/cluster/client.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..config import BalanceSettings
from ..errors import ClusterApiError
from ..model.entities import Node, Pod
from ..snapshot.collector import node_from_manifest, pod_from_manifest

log = logging.getLogger(__name__)


def selector_for(labels: Dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def _api_error(action: str, e: ApiException) -> ClusterApiError:
    return ClusterApiError(f"{action} failed: {e.status} {e.reason}", status=e.status, reason=e.reason)


class ClusterClient:
    """
    Тонкая обёртка над CoreV1Api: всё, что нужно балансировщику,
    и ничего сверх. Объекты API сразу превращаем в наши entities.
    """

    def __init__(self, core_v1: client.CoreV1Api, api_client: Optional[client.ApiClient] = None):
        self.core_v1 = core_v1
        self.api_client = api_client or core_v1.api_client

    @classmethod
    def from_settings(cls, settings: BalanceSettings) -> "ClusterClient":
        if settings.in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=settings.kubeconfig, context=settings.kube_context)
        api_client = client.ApiClient()
        return cls(client.CoreV1Api(api_client), api_client)

    def _to_manifest(self, obj: Any) -> Dict[str, Any]:
        return self.api_client.sanitize_for_serialization(obj)

    # --- чтение ---

    def list_nodes(self, label_selector: Optional[str] = None, names: Optional[List[str]] = None) -> List[Node]:
        try:
            kwargs = {"label_selector": label_selector} if label_selector else {}
            items = self.core_v1.list_node(**kwargs).items
        except ApiException as e:
            raise _api_error("list nodes", e) from e
        nodes = [node_from_manifest(self._to_manifest(item)) for item in items]
        if names is not None:
            wanted = set(names)
            missing = wanted - {n.name for n in nodes}
            if missing:
                raise ClusterApiError(f"nodes not found: {', '.join(sorted(missing))}", status=404)
            # порядок как у вызывающего
            by_name = {n.name: n for n in nodes}
            nodes = [by_name[name] for name in names]
        return nodes

    def list_pods(self) -> List[Pod]:
        try:
            items = self.core_v1.list_pod_for_all_namespaces().items
        except ApiException as e:
            raise _api_error("list pods", e) from e
        return [pod_from_manifest(self._to_manifest(item)) for item in items]

    def get_pod_phase(self, namespace: str, name: str) -> Optional[str]:
        try:
            pod = self.core_v1.read_namespaced_pod(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            raise _api_error(f"read pod {namespace}/{name}", e) from e
        return pod.status.phase if pod.status else None

    def list_pods_by_label(self, namespace: str, labels: Dict[str, str]) -> List[str]:
        try:
            items = self.core_v1.list_namespaced_pod(namespace, label_selector=selector_for(labels)).items
        except ApiException as e:
            raise _api_error("list labelled pods", e) from e
        return [item.metadata.name for item in items]

    # --- запись ---

    def create_pod(self, namespace: str, manifest: Dict[str, Any]) -> str:
        log.debug(f"Creating pod in {namespace}: {(manifest.get('metadata') or {}).get('name')}")
        try:
            created = self.core_v1.create_namespaced_pod(namespace=namespace, body=manifest)
        except ApiException as e:
            name = (manifest.get("metadata") or {}).get("name")
            raise _api_error(f"create pod {namespace}/{name}", e) from e
        return created.metadata.name

    def delete_pod(self, namespace: str, name: str) -> bool:
        """False, если пода уже нет."""
        try:
            log.debug(f"Deleting pod {namespace}/{name}")
            self.core_v1.delete_namespaced_pod(name=name, namespace=namespace, grace_period_seconds=0)
        except ApiException as e:
            if e.status == 404:
                return False
            raise _api_error(f"delete pod {namespace}/{name}", e) from e
        return True

    def delete_pods_by_label(self, namespace: str, labels: Dict[str, str]) -> None:
        try:
            self.core_v1.delete_collection_namespaced_pod(
                namespace, label_selector=selector_for(labels), grace_period_seconds=0
            )
        except ApiException as e:
            raise _api_error("delete labelled pods", e) from e
