"""Environment variables rendered into the etcd static pods."""

from __future__ import annotations

import ipaddress
import logging
import platform
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import yaml

from .resources import (
    NODE_INTERNAL_IP,
    TARGET_NAMESPACE,
    ConfigMap,
    Infrastructure,
    Network,
    Node,
    ObjectStore,
    StaticPodOperatorSpec,
    StaticPodOperatorStatus,
    join_host_port,
)

logger = logging.getLogger(__name__)

FIXED_ETCD_ENV_VARS: dict[str, str] = {
    "ETCD_DATA_DIR": "/var/lib/etcd",
    "ETCD_QUOTA_BACKEND_BYTES": "8589934592",  # 8 GB
    "ETCD_INITIAL_CLUSTER_STATE": "existing",
    "ETCD_ENABLE_PPROF": "true",
    "ETCD_EXPERIMENTAL_WATCH_PROGRESS_NOTIFY_INTERVAL": "5s",
    "ETCD_SOCKET_REUSE_ADDRESS": "true",
    "ETCD_EXPERIMENTAL_WARNING_APPLY_DURATION": "200ms",
}

ETCD_ENDPOINT_NAME = "etcd-endpoints"
CLUSTER_CONFIG_NAME = "cluster-config-v1"
CLUSTER_CONFIG_KEY = "install-config"
BOOTSTRAP_IP_ANNOTATION_KEY = "alpha.installer.openshift.io/etcd-bootstrap"
ETCD_CLIENT_PORT = "2379"

IBM_CLOUD_PROVIDER_TYPE_VPC = "VPC"

_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "s390x": "s390x",
    "ppc64le": "ppc64le",
}
_UNSUPPORTED_ARCHES = {"arm64", "s390x"}
_INTEGER = re.compile(r"[+-]?[0-9]+")


def _host_arch() -> str:
    machine = platform.machine().lower()
    return _ARCH_NAMES.get(machine, machine)


def default_escaped_internal_ip(network: Network, node: Node) -> str:
    """First internal IP of the node, bracketed when it is IPv6."""
    for address_type, address in node.addresses:
        if address_type == NODE_INTERNAL_IP:
            return f"[{address}]" if ":" in address else address
    raise LookupError(f"node {node.name} has no internal IP address")


class Enqueueable(Protocol):
    def enqueue(self) -> None: ...


@dataclass
class EnvVarContext:
    """Everything the env var functions read."""

    spec: StaticPodOperatorSpec
    status: StaticPodOperatorStatus
    store: ObjectStore
    target_image_pull_spec: str = ""
    resolve_internal_ip: Callable[[Network, Node], str] | None = None
    arch: str = field(default_factory=_host_arch)
    # narrows the observed cipher suites to those etcd supports
    supported_ciphers: Callable[[list[str]], list[str]] | None = None


def env_var_safe(node_name: str) -> str:
    """Make a node name usable inside an environment variable name."""
    return node_name.replace("-", "_").replace(".", "_")


def _https_endpoint(host: str) -> str:
    return f"https://{join_host_port(host, ETCD_CLIENT_PORT)}"


def _is_ip(address: str) -> bool:
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


def get_etcd_endpoints(store: ObjectStore, skip_bootstrap: bool) -> str:
    """Comma separated, sorted client URLs from the etcd-endpoints config map."""
    configmap = store.get(ConfigMap, ETCD_ENDPOINT_NAME, TARGET_NAMESPACE)
    urls: list[str] = []
    bootstrap_address = configmap.annotations.get(BOOTSTRAP_IP_ANNOTATION_KEY, "")
    # the ephemeral bootstrap member is left out where asked
    if not skip_bootstrap and bootstrap_address:
        if not _is_ip(bootstrap_address):
            raise ValueError(
                f"configmaps/{ETCD_ENDPOINT_NAME} contains invalid bootstrap ip address: {bootstrap_address}"
            )
        urls.append(_https_endpoint(bootstrap_address))
    for address in configmap.data.values():
        if not _is_ip(address):
            raise ValueError(f"configmaps/{ETCD_ENDPOINT_NAME} contains invalid ip address: {address}")
        urls.append(_https_endpoint(address))
    return ",".join(sorted(urls))


def _load_mapping(raw: bytes | str | None, what: str) -> dict[str, Any]:
    if raw is None:
        return {}
    text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to unmarshal the {what}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"failed to unmarshal the {what}: expected a mapping, got {type(data).__name__}")
    return data


def _fixed(_: EnvVarContext) -> dict[str, str]:
    return dict(FIXED_ETCD_ENV_VARS)


def _etcdctl(context: EnvVarContext) -> dict[str, str]:
    return {
        "ETCDCTL_API": "3",
        "ETCDCTL_CACERT": "/etc/kubernetes/static-pod-certs/configmaps/etcd-serving-ca/ca-bundle.crt",
        "ETCDCTL_CERT": "/etc/kubernetes/static-pod-certs/secrets/etcd-all-certs/etcd-peer-NODE_NAME.crt",
        "ETCDCTL_KEY": "/etc/kubernetes/static-pod-certs/secrets/etcd-all-certs/etcd-peer-NODE_NAME.key",
        "ETCDCTL_ENDPOINTS": get_etcd_endpoints(context.store, True),
        "ETCD_IMAGE": context.target_image_pull_spec,
    }


def _all_endpoints(context: EnvVarContext) -> dict[str, str]:
    return {"ALL_ETCD_ENDPOINTS": get_etcd_endpoints(context.store, False)}


def _etcd_name(context: EnvVarContext) -> dict[str, str]:
    return {
        f"NODE_{env_var_safe(node.node_name)}_ETCD_NAME": node.node_name
        for node in context.status.node_statuses
    }


def _per_node_address(context: EnvVarContext, key_format: str) -> dict[str, str]:
    resolve = context.resolve_internal_ip or default_escaped_internal_ip
    network = context.store.get(Network, "cluster")
    result: dict[str, str] = {}
    for node_status in context.status.node_statuses:
        node = context.store.get(Node, node_status.node_name)
        result[key_format.format(env_var_safe(node_status.node_name))] = resolve(network, node)
    return result


def _escaped_ip(context: EnvVarContext) -> dict[str, str]:
    return _per_node_address(context, "NODE_{}_IP")


def _url_host(context: EnvVarContext) -> dict[str, str]:
    return _per_node_address(context, "NODE_{}_ETCD_URL_HOST")


def _slow_platform(context: EnvVarContext) -> bool:
    infra = context.store.get(Infrastructure, "cluster")
    if infra.platform == "Azure":
        return True
    if infra.platform == "IBMCloud":
        return infra.ibm_cloud_provider_type == IBM_CLOUD_PROVIDER_TYPE_VPC
    return False


def _heartbeat(context: EnvVarContext) -> dict[str, str]:
    heartbeat = "100"  # etcd default
    if _slow_platform(context):
        heartbeat = "500"
    return {"ETCD_HEARTBEAT_INTERVAL": heartbeat}


def _election_timeout(context: EnvVarContext) -> dict[str, str]:
    timeout = "1000"  # etcd default
    if _slow_platform(context):
        timeout = "2500"
    return {"ETCD_ELECTION_TIMEOUT": timeout}


def _unsupported_arch(context: EnvVarContext) -> dict[str, str] | None:
    if context.arch not in _UNSUPPORTED_ARCHES:
        return None
    return {"ETCD_UNSUPPORTED_ARCH": context.arch}


def _cipher_suites(context: EnvVarContext) -> dict[str, str]:
    observed = _load_mapping(context.spec.observed_config, "observedConfig")
    serving_info = observed.get("servingInfo", {})
    if not isinstance(serving_info, dict):
        raise ValueError("couldn't get cipherSuites from observedConfig: servingInfo is not a map")
    suites = serving_info.get("cipherSuites", [])
    if suites is None:
        suites = []
    if not isinstance(suites, list) or not all(isinstance(s, str) for s in suites):
        raise ValueError("couldn't get cipherSuites from observedConfig: expected a list of strings")
    actual = context.supported_ciphers(list(suites)) if context.supported_ciphers else list(suites)
    if not actual:
        raise ValueError("no supported cipherSuites not found in observedConfig")
    return {"ETCD_CIPHER_SUITES": ",".join(actual)}


def _max_learners(context: EnvVarContext) -> dict[str, str]:
    """Learners up to the desired control plane replicas, so the admin can surge N x 2."""
    location = f"{TARGET_NAMESPACE}/{CLUSTER_CONFIG_NAME}"
    try:
        configmap = context.store.get(ConfigMap, CLUSTER_CONFIG_NAME, TARGET_NAMESPACE)
    except Exception as exc:
        logger.error("failed to get configmap %s :%s", location, exc)
        raise RuntimeError(f"failed to get configmap {location} :{exc}") from exc

    try:
        install_config = _load_mapping(configmap.data.get(CLUSTER_CONFIG_KEY, ""), CLUSTER_CONFIG_KEY)
    except ValueError as exc:
        logger.error("%s key doesn't exist in configmap %s :%s", CLUSTER_CONFIG_KEY, location, exc)
        raise ValueError(f"{CLUSTER_CONFIG_KEY} key doesn't exist in configmap {location} :{exc}") from exc

    control_plane = install_config.get("controlPlane") or {}
    replicas = control_plane.get("replicas", "") if isinstance(control_plane, dict) else ""
    replicas_text = "" if replicas is None else str(replicas)
    if not _INTEGER.fullmatch(replicas_text):
        logger.error("failed to convert replica %s", replicas_text)
        raise ValueError(f'failed to convert replica {replicas_text}: parsing "{replicas_text}": invalid syntax')
    return {"ETCD_EXPERIMENTAL_MAX_LEARNERS": str(int(replicas_text))}


_ENV_VAR_FUNCS: tuple[Callable[[EnvVarContext], dict[str, str] | None], ...] = (
    _escaped_ip,
    _url_host,
    _fixed,
    _etcd_name,
    _all_endpoints,
    _etcdctl,
    _heartbeat,
    _election_timeout,
    _unsupported_arch,
    _cipher_suites,
    _max_learners,
)


def get_etcd_env_vars(context: EnvVarContext) -> dict[str, str]:
    """All env vars for the etcd static pods; raises if two sources set the same key."""
    result: dict[str, str] = {}
    for func in _ENV_VAR_FUNCS:
        new_vars = func(context)
        if not new_vars:
            continue
        for key, value in new_vars.items():
            if key in result:
                raise ValueError(f"key {key!r} already set to {result[key]!r}")
            result[key] = value
    return result


@dataclass
class FakeEnvVar:
    """Fixed env vars for code that consumes an env var source."""

    env_vars: dict[str, str] = field(default_factory=dict)
    listeners: list[Enqueueable] = field(default_factory=list)

    def add_listener(self, listener: Enqueueable) -> None:
        self.listeners.append(listener)

    def get_env_vars(self) -> dict[str, str]:
        return self.env_vars