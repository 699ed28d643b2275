"""Bootstrap scaling strategies and the checks that guard scaling the etcd cluster."""

from __future__ import annotations

import logging
from enum import Enum

from .health import is_quorum_fault_tolerant_err
from .override import is_unsupported_unsafe_etcd
from .resources import TARGET_NAMESPACE, ConfigMap, Namespace, NotFoundError
from .topology import is_single_node_topology

logger = logging.getLogger(__name__)

# Presence of this annotation on the etcd namespace selects the delayed HA strategy.
DELAYED_HA_BOOTSTRAP_SCALING_STRATEGY_ANNOTATION = "openshift.io/delayed-ha-bootstrap"

BOOTSTRAP_CONFIGMAP_NAMESPACE = "kube-system"
BOOTSTRAP_CONFIGMAP_NAME = "bootstrap"


class BootstrapScalingStrategy(str, Enum):
    """Invariants enforced when scaling the etcd cluster."""

    # scale only with at least 3 nodes, during bootstrap and afterwards (default)
    HA = "HAScalingStrategy"
    # allow 2 members during bootstrap, then behave like HA
    DELAYED_HA = "DelayedHAScalingStrategy"
    # the bootstrap node never exists during the cluster's lifetime
    BOOTSTRAP_IN_PLACE = "BootstrapInPlaceStrategy"
    # scale without regard to nodes or quorum
    UNSAFE = "UnsafeScalingStrategy"

    def __str__(self) -> str:
        return self.value


class ScalingError(RuntimeError):
    """Scaling is unsafe or its safety cannot be determined."""


def get_bootstrap_scaling_strategy(operator_client, store) -> BootstrapScalingStrategy:
    """Determine the scaling strategy from overrides, namespace annotation and topology."""
    spec, _ = operator_client.get_static_pod_operator_state()

    try:
        unsafe = is_unsupported_unsafe_etcd(spec)
    except Exception as exc:
        raise ScalingError(
            "couldn't determine etcd unsupported override status, "
            f"assuming default HA scaling strategy: {exc}"
        ) from exc

    try:
        namespace = store.get(Namespace, TARGET_NAMESPACE)
    except NotFoundError as exc:
        raise ScalingError(f"failed to get {TARGET_NAMESPACE} namespace: {exc}") from exc
    delayed_ha = DELAYED_HA_BOOTSTRAP_SCALING_STRATEGY_ANNOTATION in namespace.annotations

    try:
        single_node = is_single_node_topology(store)
    except Exception as exc:
        raise ScalingError(f"failed to get control plane topology: {exc}") from exc

    if unsafe or single_node:
        return BootstrapScalingStrategy.UNSAFE
    if delayed_ha:
        return BootstrapScalingStrategy.DELAYED_HA
    return BootstrapScalingStrategy.HA


def is_bootstrap_complete(store, operator_client) -> bool:
    """True once bootstrap reported completion and every node runs the latest revision."""
    try:
        configmap = store.get(ConfigMap, BOOTSTRAP_CONFIGMAP_NAME, BOOTSTRAP_CONFIGMAP_NAMESPACE)
    except NotFoundError:
        # a configmap deleted after bootstrap finished gives a false negative here
        logger.debug(
            "bootstrap considered incomplete because the %s/%s configmap wasn't found",
            BOOTSTRAP_CONFIGMAP_NAMESPACE,
            BOOTSTRAP_CONFIGMAP_NAME,
        )
        return False
    except Exception as exc:
        raise ScalingError(
            f"failed to get configmap {BOOTSTRAP_CONFIGMAP_NAMESPACE}/{BOOTSTRAP_CONFIGMAP_NAME}: {exc}"
        ) from exc

    status_value = configmap.data.get("status", "")
    if status_value != "complete":
        logger.debug("bootstrap considered incomplete because status is %r", status_value)
        return False

    _, status = operator_client.get_static_pod_operator_state()
    latest = status.latest_available_revision
    if latest == 0:
        return False
    if any(node.current_revision != latest for node in status.node_statuses):
        logger.debug("bootstrap considered incomplete because revision %d is still in progress", latest)
        return False
    return True


def check_safe_to_scale_cluster(store, operator_client, etcd_client) -> None:
    """Raise unless the scaling strategy's invariants allow scaling the cluster now.

    Scaling is always allowed while bootstrapping. Afterwards it needs the
    strategy's minimum node count and a quorum that tolerates losing a member;
    a quorum violation raises QuorumError.
    """
    try:
        complete = is_bootstrap_complete(store, operator_client)
    except Exception as exc:
        raise ScalingError(f"CheckSafeToScaleCluster failed to determine bootstrap status: {exc}") from exc
    if not complete:
        return

    _, status = operator_client.get_static_pod_operator_state()

    try:
        strategy = get_bootstrap_scaling_strategy(operator_client, store)
    except Exception as exc:
        raise ScalingError(f"CheckSafeToScaleCluster failed to get bootstrap scaling strategy: {exc}") from exc

    if strategy is BootstrapScalingStrategy.UNSAFE:
        return
    if strategy in (BootstrapScalingStrategy.HA, BootstrapScalingStrategy.DELAYED_HA):
        minimum_nodes = 3
    else:
        raise ScalingError(f'CheckSafeToScaleCluster unrecognized scaling strategy "{strategy}"')

    node_count = len(status.node_statuses)
    if node_count < minimum_nodes:
        raise ScalingError(
            f"CheckSafeToScaleCluster {minimum_nodes} nodes are required, but only {node_count} are available"
        )

    try:
        member_health = etcd_client.member_health()
    except Exception as exc:
        raise ScalingError(f"CheckSafeToScaleCluster couldn't determine member health: {exc}") from exc

    is_quorum_fault_tolerant_err(member_health)
    logger.debug(
        "node count %d satisfies minimum of %d required by the %s bootstrap scaling strategy",
        node_count,
        minimum_nodes,
        strategy,
    )