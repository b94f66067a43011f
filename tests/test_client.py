from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from sched_balance.cluster.client import ClusterClient, selector_for
from sched_balance.errors import ClusterApiError, TransientAPIError


def _node(name: str, cpu: str = "2", memory: str = "4Gi") -> client.V1Node:
    return client.V1Node(
        metadata=client.V1ObjectMeta(name=name),
        status=client.V1NodeStatus(allocatable={"cpu": cpu, "memory": memory}),
    )


@pytest.fixture
def core_v1():
    return MagicMock()


@pytest.fixture
def cluster(core_v1) -> ClusterClient:
    return ClusterClient(core_v1, client.ApiClient())


def test_selector_for_is_sorted():
    assert selector_for({"b": "2", "a": "1"}) == "a=1,b=2"


def test_list_nodes_converts_objects(cluster, core_v1):
    core_v1.list_node.return_value = client.V1NodeList(items=[_node("n1"), _node("n2", cpu="3500m")])
    nodes = cluster.list_nodes()
    assert [(n.name, n.alloc_cpu_m, n.alloc_mem_b) for n in nodes] == [
        ("n1", 2000, 4 * 1024 ** 3),
        ("n2", 3500, 4 * 1024 ** 3),
    ]


def test_list_nodes_by_name_keeps_caller_order(cluster, core_v1):
    core_v1.list_node.return_value = client.V1NodeList(items=[_node("n1"), _node("n2")])
    assert [n.name for n in cluster.list_nodes(names=["n2", "n1"])] == ["n2", "n1"]
    with pytest.raises(ClusterApiError) as exc:
        cluster.list_nodes(names=["n3"])
    assert exc.value.status == 404


def test_list_pods_converts_objects(cluster, core_v1):
    pod = client.V1Pod(
        metadata=client.V1ObjectMeta(name="p", namespace="ns"),
        spec=client.V1PodSpec(
            node_name="n1",
            containers=[client.V1Container(
                name="c",
                resources=client.V1ResourceRequirements(requests={"cpu": "100m", "memory": "64Mi"}),
            )],
        ),
        status=client.V1PodStatus(phase="Running", qos_class="Burstable"),
    )
    core_v1.list_pod_for_all_namespaces.return_value = client.V1PodList(items=[pod])
    [converted] = cluster.list_pods()
    assert converted.id == "ns/p"
    assert converted.node == "n1"
    assert converted.req_cpu_m == 100
    assert converted.qos_class == "Burstable"


def test_api_errors_are_wrapped(cluster, core_v1):
    core_v1.list_pod_for_all_namespaces.side_effect = ApiException(status=500, reason="boom")
    with pytest.raises(TransientAPIError) as exc:
        cluster.list_pods()
    assert exc.value.status == 500


def test_create_pod_returns_name(cluster, core_v1):
    core_v1.create_namespaced_pod.return_value = client.V1Pod(metadata=client.V1ObjectMeta(name="balanced-pod-1"))
    assert cluster.create_pod("e2e", {"metadata": {"name": "balanced-pod-1"}}) == "balanced-pod-1"
    core_v1.create_namespaced_pod.assert_called_once_with(namespace="e2e", body={"metadata": {"name": "balanced-pod-1"}})


def test_create_conflict_is_wrapped(cluster, core_v1):
    core_v1.create_namespaced_pod.side_effect = ApiException(status=409, reason="Conflict")
    with pytest.raises(ClusterApiError) as exc:
        cluster.create_pod("e2e", {"metadata": {"name": "x"}})
    assert exc.value.status == 409


def test_delete_missing_pod_is_not_an_error(cluster, core_v1):
    core_v1.delete_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")
    assert cluster.delete_pod("e2e", "gone") is False


def test_get_pod_phase(cluster, core_v1):
    core_v1.read_namespaced_pod.return_value = client.V1Pod(status=client.V1PodStatus(phase="Pending"))
    assert cluster.get_pod_phase("e2e", "p") == "Pending"
    core_v1.read_namespaced_pod.side_effect = ApiException(status=404, reason="Not Found")
    assert cluster.get_pod_phase("e2e", "p") is None


def test_label_operations_use_selector(cluster, core_v1):
    core_v1.list_namespaced_pod.return_value = client.V1PodList(
        items=[client.V1Pod(metadata=client.V1ObjectMeta(name="a")), client.V1Pod(metadata=client.V1ObjectMeta(name="b"))]
    )
    labels = {"podname": "priority-balanced-memory"}
    assert cluster.list_pods_by_label("e2e", labels) == ["a", "b"]
    core_v1.list_namespaced_pod.assert_called_once_with("e2e", label_selector="podname=priority-balanced-memory")

    cluster.delete_pods_by_label("e2e", labels)
    core_v1.delete_collection_namespaced_pod.assert_called_once_with(
        "e2e", label_selector="podname=priority-balanced-memory", grace_period_seconds=0
    )
