"""Waiting for the etcd operator to report etcd running in the cluster."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from .resources import CONDITION_TRUE

logger = logging.getLogger(__name__)

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"

ETCD_RUNNING_IN_CLUSTER = "EtcdRunningInCluster"


@dataclass
class WatchEvent:
    """A change to the watched etcd operator resource."""

    type: str
    object: Any


def _conditions(etcd: Any):
    status = getattr(etcd, "status", None)
    return getattr(status, "conditions", None)


def done(etcd: Any) -> bool:
    """True if the etcd resource reports EtcdRunningInCluster as True."""
    conditions = _conditions(etcd) or []
    if any(c.type == ETCD_RUNNING_IN_CLUSTER and c.status == CONDITION_TRUE for c in conditions):
        logger.info("Cluster etcd operator bootstrapped successfully")
        return True
    logger.info(
        "waiting on condition %s in etcd CR %s/%s to be True.",
        ETCD_RUNNING_IN_CLUSTER,
        getattr(etcd, "namespace", ""),
        getattr(etcd, "name", ""),
    )
    return False


def wait_for_etcd_bootstrap(events: Iterable[WatchEvent]) -> Any:
    """Consume watch events until the etcd resource is bootstrapped and return it.

    Raises RuntimeError if the events end first.
    """
    for event in events:
        if event.type in (ADDED, MODIFIED):
            if _conditions(event.object) is None:
                logger.warning(
                    "Expected an Etcd object but got a %r object instead", type(event.object).__name__
                )
                continue
            if done(event.object):
                logger.info("cluster-etcd-operator bootstrap etcd")
                return event.object
            continue
        logger.info("Still waiting for the cluster-etcd-operator to bootstrap...")
    raise RuntimeError("error waiting for etcd CR: watch closed before etcd was bootstrapped")