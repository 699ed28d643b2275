import json
import threading

import pytest

from clusteretcd.envvar_controller import EnvVarController
from clusteretcd.envvars import BOOTSTRAP_IP_ANNOTATION_KEY, EnvVarContext, get_etcd_env_vars
from clusteretcd.resources import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    NODE_INTERNAL_IP,
    TARGET_NAMESPACE,
    ConfigMap,
    EventRecorder,
    Infrastructure,
    Network,
    Node,
    NodeStatus,
    NotFoundError,
    ObjectStore,
    StaticPodOperatorClient,
    StaticPodOperatorSpec,
    StaticPodOperatorStatus,
)


class Listener:
    def __init__(self):
        self.calls = 0
        self.called = threading.Event()

    def enqueue(self):
        self.calls += 1
        self.called.set()


def make_store(with_network=True):
    objects = [
        Node(name="master-0", addresses=[(NODE_INTERNAL_IP, "10.0.0.1")]),
        ConfigMap(
            name="etcd-endpoints",
            namespace=TARGET_NAMESPACE,
            annotations={BOOTSTRAP_IP_ANNOTATION_KEY: "10.0.0.9"},
            data={"a": "10.0.0.1"},
        ),
        ConfigMap(
            name="cluster-config-v1",
            namespace=TARGET_NAMESPACE,
            data={"install-config": "controlPlane:\n  replicas: 3\n"},
        ),
        Infrastructure(name="cluster"),
    ]
    if with_network:
        objects.append(Network(name="cluster"))
    return ObjectStore(objects)


def make_operator_client():
    spec = StaticPodOperatorSpec(
        observed_config=json.dumps({"servingInfo": {"cipherSuites": ["TLS_AES_128_GCM_SHA256"]}})
    )
    status = StaticPodOperatorStatus(node_statuses=[NodeStatus("master-0")])
    return StaticPodOperatorClient(spec, status)


def degraded(client):
    _, status = client.get_static_pod_operator_state()
    return next(c for c in status.conditions if c.type == "EnvVarControllerDegraded")


def test_starts_empty():
    controller = EnvVarController("img", make_operator_client(), make_store(), EventRecorder())
    assert controller.get_env_vars() == {}


def test_check_env_vars_matches_direct_computation_and_notifies():
    client = make_operator_client()
    store = make_store()
    controller = EnvVarController("img", client, store, EventRecorder())
    listener = Listener()
    controller.add_listener(listener)
    controller.check_env_vars()
    spec, status = client.get_static_pod_operator_state()
    expected = get_etcd_env_vars(
        EnvVarContext(spec=spec, status=status, store=store, target_image_pull_spec="img")
    )
    assert controller.get_env_vars() == expected
    assert listener.calls == 1


def test_get_env_vars_returns_copy():
    controller = EnvVarController("img", make_operator_client(), make_store(), EventRecorder())
    controller.check_env_vars()
    copy = controller.get_env_vars()
    copy["ETCD_IMAGE"] = "changed"
    assert controller.get_env_vars()["ETCD_IMAGE"] == "img"


def test_sync_success_sets_condition_false():
    client = make_operator_client()
    controller = EnvVarController("img", client, make_store(), EventRecorder())
    controller.sync()
    condition = degraded(client)
    assert condition.status == CONDITION_FALSE
    assert condition.reason == "AsExpected"


def test_sync_failure_sets_condition_true_and_raises():
    client = make_operator_client()
    controller = EnvVarController("img", client, make_store(with_network=False), EventRecorder())
    with pytest.raises(NotFoundError):
        controller.sync()
    condition = degraded(client)
    assert condition.status == CONDITION_TRUE
    assert condition.reason == "Error"
    assert "networks" in condition.message
    assert controller.get_env_vars() == {}


def test_run_syncs_and_stops():
    client = make_operator_client()
    controller = EnvVarController("img", client, make_store(), EventRecorder())
    listener = Listener()
    controller.add_listener(listener)
    stop = threading.Event()
    thread = threading.Thread(target=controller.run, args=(stop,))
    thread.start()
    try:
        assert listener.called.wait(5)
        listener.called.clear()
        controller.enqueue()
        assert listener.called.wait(5)
    finally:
        stop.set()
        thread.join(5)
    assert not thread.is_alive()
    assert listener.calls >= 2
    assert degraded(client).status == CONDITION_FALSE