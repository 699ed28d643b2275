"""Controller that removes the bootstrap etcd member once the cluster can do without it."""

from __future__ import annotations

import logging

from .bootstrap import BootstrapScalingStrategy, get_bootstrap_scaling_strategy
from .resources import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    ConfigMap,
    EventRecorder,
    NotFoundError,
    OperatorCondition,
)

logger = logging.getLogger(__name__)

BOOTSTRAP_MEMBER_NAME = "etcd-bootstrap"
BOOTSTRAP_CONFIGMAP_NAMESPACE = "kube-system"
BOOTSTRAP_CONFIGMAP_NAME = "bootstrap"


class BootstrapTeardownController:
    """Removes the etcd-bootstrap member when it is safe and bootstrap has finished."""

    def __init__(self, operator_client, store, etcd_client, recorder: EventRecorder) -> None:
        self._operator_client = operator_client
        self._store = store
        self._etcd_client = etcd_client
        self._recorder = recorder

    def _set_condition(self, type_: str, status: str, reason: str, message: str = "") -> None:
        self._operator_client.update_condition(
            OperatorCondition(type=type_, status=status, reason=reason, message=message)
        )

    def sync(self) -> None:
        """Run one reconciliation and record the degraded condition."""
        try:
            self.remove_bootstrap()
        except Exception as exc:
            try:
                self._set_condition("BootstrapTeardownDegraded", CONDITION_TRUE, "Error", str(exc))
            except Exception as update_exc:
                self._recorder.warning("BootstrapTeardownErrorUpdatingStatus", str(update_exc))
            raise
        self._set_condition("BootstrapTeardownDegraded", CONDITION_FALSE, "AsExpected")

    def remove_bootstrap(self) -> None:
        safe, has_bootstrap, bootstrap_id = self.can_remove_etcd_bootstrap()
        if not has_bootstrap:
            # already gone, so clearly available enough; avoids flapping
            self._set_condition(
                "EtcdRunningInCluster",
                CONDITION_TRUE,
                "BootstrapAlreadyRemoved",
                "etcd-bootstrap member is already removed",
            )
            return
        if not safe:
            self._set_condition(
                "EtcdRunningInCluster",
                CONDITION_FALSE,
                "NotEnoughEtcdMembers",
                "still waiting for three healthy etcd members",
            )
            return

        self._set_condition("EtcdRunningInCluster", CONDITION_TRUE, "EnoughEtcdMembers", "enough members found")

        try:
            configmap = self._store.get(ConfigMap, BOOTSTRAP_CONFIGMAP_NAME, BOOTSTRAP_CONFIGMAP_NAMESPACE)
        except NotFoundError:
            self._recorder.event(
                "DelayingBootstrapTeardown",
                "cluster-bootstrap is not yet finished - ConfigMap "
                f"'{BOOTSTRAP_CONFIGMAP_NAMESPACE}/{BOOTSTRAP_CONFIGMAP_NAME}' not found",
            )
            return
        if configmap.data.get("status") != "complete":
            self._recorder.event("DelayingBootstrapTeardown", "cluster-bootstrap is not yet finished")
            return

        self._recorder.event("RemoveBootstrapEtcd", "removing etcd-bootstrap member")
        self._etcd_client.member_remove(bootstrap_id)

    def can_remove_etcd_bootstrap(self) -> tuple[bool, bool, int]:
        """Return (safe to remove, bootstrap present, bootstrap member id)."""
        members = self._etcd_client.member_list()
        bootstrap = next((m for m in members if m.name == BOOTSTRAP_MEMBER_NAME), None)
        if bootstrap is None:
            return False, False, 0
        bootstrap_id = bootstrap.id

        try:
            strategy = get_bootstrap_scaling_strategy(self._operator_client, self._store)
        except Exception as exc:
            raise RuntimeError(f"failed to get bootstrap scaling strategy: {exc}") from exc

        if strategy is BootstrapScalingStrategy.HA:
            if len(members) < 4:
                return False, True, bootstrap_id
        elif strategy in (BootstrapScalingStrategy.DELAYED_HA, BootstrapScalingStrategy.UNSAFE):
            if len(members) < 2:
                return False, True, bootstrap_id

        try:
            unhealthy = self._etcd_client.unhealthy_members()
        except Exception as exc:
            logger.warning("could not determine unhealthy members: %s", exc)
            return False, True, bootstrap_id

        # the bootstrap member itself may be unhealthy and still be removed
        if not unhealthy:
            return True, True, bootstrap_id
        if len(unhealthy) > 1:
            return False, True, bootstrap_id
        if unhealthy[0].name == BOOTSTRAP_MEMBER_NAME:
            return True, True, unhealthy[0].id
        return False, True, bootstrap_id